"""
Configuracion central del servicio de sincronizacion.

Las variables de entorno se leen con pydantic-settings. A diferencia de una
instancia global reutilizada, cada invocacion (endpoint, cron, test) construye
su propio `Settings` via `get_settings()` y lo convierte a un `SyncSettings`
inmutable que se pasa explicitamente por toda la cadena de llamadas.
"""
import json
from dataclasses import dataclass
from typing import List

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings

from scouter_sync.shared.exceptions.sync import SyncConfigError


DEFAULT_TABLE_CANDIDATES = '["leads", "\\"Leads\\"", "Leads"]'


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Dos stores independientes:
    - Local (Gestão Scouter): PostgreSQL via DATABASE_URL
    - Remoto (TabuladorMax): API PostgREST via REMOTE_URL + REMOTE_SERVICE_KEY
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Gestão Scouter Sync")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    # Store local (Postgres)
    DATABASE_URL: str = Field(default="")
    LOCAL_LEADS_TABLE: str = Field(default="leads")

    # Store remoto (PostgREST / Supabase)
    REMOTE_URL: str = Field(default="")
    REMOTE_SERVICE_KEY: str = Field(default="")
    REMOTE_LEADS_TABLE: str = Field(default="leads")
    # Lista JSON ordenada de nombres a probar en el full resync
    REMOTE_TABLE_CANDIDATES: str = Field(default=DEFAULT_TABLE_CANDIDATES)

    # Etiquetas de procedencia
    LOCAL_SYSTEM_TAG: str = Field(default="gestao")
    REMOTE_SYSTEM_TAG: str = Field(default="tabulador")

    # Disparadores HTTP
    SYNC_SHARED_SECRET: str = Field(default="")

    # Parametros del motor
    # Ventana anti-eco: debe superar intervalo de cron + duracion de corrida
    SYNC_LOOP_WINDOW_MS: int = Field(default=600_000)
    SYNC_BATCH_SIZE: int = Field(default=500)
    SYNC_PAGE_SIZE: int = Field(default=1000)
    SYNC_MAX_RETRIES: int = Field(default=3)
    SYNC_QUEUE_BATCH: int = Field(default=100)
    SYNC_INITIAL_LOOKBACK_HOURS: int = Field(default=24)

    # Alertas externas (Telegram)
    SYNC_ALERTS_ENABLED: bool = Field(default=False)
    TELEGRAM_BOT_TOKEN: str = Field(default="")
    TELEGRAM_ALERT_CHAT_ID: str = Field(default="")

    # Geocodificacion (Nominatim)
    GEOCODER_URL: str = Field(default="https://nominatim.openstreetmap.org/search")
    GEOCODER_USER_AGENT: str = Field(default="GestaoScouter/1.0")
    GEOCODER_MIN_INTERVAL_S: float = Field(default=1.0)

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


@dataclass(frozen=True)
class SyncSettings:
    """
    Valor de configuracion del motor, construido por invocacion.

    Contiene URLs, credenciales y parametros ajustables; nada de clientes ni
    conexiones abiertas.
    """

    database_url: str
    local_table: str
    remote_url: str
    remote_service_key: str
    remote_table: str
    remote_table_candidates: tuple[str, ...]
    local_tag: str
    remote_tag: str
    loop_window_ms: int
    batch_size: int
    page_size: int
    max_retries: int
    queue_batch: int
    initial_lookback_hours: int
    alerts_enabled: bool
    telegram_bot_token: str
    telegram_alert_chat_id: str
    geocoder_url: str
    geocoder_user_agent: str
    geocoder_min_interval_s: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncSettings":
        return cls(
            database_url=settings.DATABASE_URL,
            local_table=settings.LOCAL_LEADS_TABLE,
            remote_url=settings.REMOTE_URL.rstrip("/"),
            remote_service_key=settings.REMOTE_SERVICE_KEY,
            remote_table=settings.REMOTE_LEADS_TABLE,
            remote_table_candidates=tuple(parse_table_candidates(settings.REMOTE_TABLE_CANDIDATES)),
            local_tag=settings.LOCAL_SYSTEM_TAG,
            remote_tag=settings.REMOTE_SYSTEM_TAG,
            loop_window_ms=settings.SYNC_LOOP_WINDOW_MS,
            batch_size=settings.SYNC_BATCH_SIZE,
            page_size=settings.SYNC_PAGE_SIZE,
            max_retries=settings.SYNC_MAX_RETRIES,
            queue_batch=settings.SYNC_QUEUE_BATCH,
            initial_lookback_hours=settings.SYNC_INITIAL_LOOKBACK_HOURS,
            alerts_enabled=settings.SYNC_ALERTS_ENABLED,
            telegram_bot_token=settings.TELEGRAM_BOT_TOKEN,
            telegram_alert_chat_id=settings.TELEGRAM_ALERT_CHAT_ID,
            geocoder_url=settings.GEOCODER_URL,
            geocoder_user_agent=settings.GEOCODER_USER_AGENT,
            geocoder_min_interval_s=settings.GEOCODER_MIN_INTERVAL_S,
        )

    def require_local(self) -> None:
        """Valida que el store local este configurado."""
        if not self.database_url:
            raise SyncConfigError("Store local no configurado", missing=["DATABASE_URL"])

    def require_remote(self) -> None:
        """Valida que el store remoto este configurado."""
        missing = []
        if not self.remote_url:
            missing.append("REMOTE_URL")
        if not self.remote_service_key:
            missing.append("REMOTE_SERVICE_KEY")
        if missing:
            raise SyncConfigError(
                f"Store remoto no configurado. Faltando: {', '.join(missing)}",
                missing=missing,
            )


def parse_table_candidates(raw: str) -> List[str]:
    """
    Parsea la lista de candidatos de nombre de tabla.
    Acepta una lista JSON o nombres separados por coma.
    """
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        values = raw.split(",")
    if isinstance(values, str):
        values = [values]
    return [str(v).strip() for v in values if str(v).strip()]


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


def get_settings() -> Settings:
    """Construye la configuracion desde el entorno (una vez por invocacion)."""
    return Settings()


def get_sync_settings() -> SyncSettings:
    """Atajo: Settings -> SyncSettings para el motor."""
    return SyncSettings.from_settings(get_settings())
