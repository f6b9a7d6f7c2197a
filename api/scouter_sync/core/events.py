"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from typing import Callable

from fastapi import FastAPI
from loguru import logger

from scouter_sync.core.config import Settings
from scouter_sync.shared.utils.audit_logger import AuditLogger


def startup_handler(app: FastAPI, settings: Settings) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI
        settings: Configuracion con la que se construyo la aplicacion

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Entorno: {settings.ENVIRONMENT}")

        # Validar configuracion critica
        _validate_config(settings)

        # Inicializar sistema de auditoria
        AuditLogger.initialize()
        logger.info("Sistema de auditoria inicializado")

        # Configurar logging adicional
        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL
        )

        logger.success("Aplicacion iniciada correctamente")
        _print_available_urls(settings)

    return startup


def _validate_config(settings: Settings) -> None:
    """
    Advierte sobre configuracion faltante.
    No aborta el arranque: cada corrida valida lo que necesita y falla en setup.
    """
    warnings = []

    if not settings.SYNC_SHARED_SECRET:
        warnings.append("SYNC_SHARED_SECRET no configurado - todos los disparadores responderan 403")
    if not settings.DATABASE_URL:
        warnings.append("DATABASE_URL no configurada - el store local no estara disponible")
    if not settings.REMOTE_URL or not settings.REMOTE_SERVICE_KEY:
        warnings.append("REMOTE_URL/REMOTE_SERVICE_KEY no configuradas - el store remoto no estara disponible")
    if settings.SYNC_ALERTS_ENABLED and not (settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_ALERT_CHAT_ID):
        warnings.append("Alertas habilitadas sin TELEGRAM_BOT_TOKEN/TELEGRAM_ALERT_CHAT_ID")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls(settings: Settings) -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync:        {base_url}/api/v1/sync</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Las corridas no mantienen conexiones abiertas entre invocaciones,
    asi que no hay recursos que liberar.
    """
    async def shutdown() -> None:
        logger.info("Cerrando aplicacion...")
        logger.success("Aplicacion cerrada correctamente")

    return shutdown
