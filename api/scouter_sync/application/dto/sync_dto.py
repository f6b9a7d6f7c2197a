"""
DTOs de respuesta de los disparadores de sincronización.

Todas las respuestas de corrida comparten el contrato:
`success`, conteos, `errors` y `processing_time_ms`. Un `failed > 0` con
`success = True` es un resultado parcial válido (HTTP 207), no un error.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncRunResponseDTO(BaseModel):
    """Resultado de una corrida incremental (pull/push)."""

    success: bool = Field(..., description="False solo si la corrida falló en setup")
    direction: str = Field(..., description="Par direccional: tabulador_to_gestao | gestao_to_tabulador")
    skipped: bool = Field(False, description="True si otra corrida del mismo par estaba en curso")
    records_read: int = Field(0, description="Registros leídos del origen")
    records_synced: int = Field(0, description="Registros aplicados en el destino")
    inserted: int = Field(0, description="Registros nuevos en el destino")
    suppressed: int = Field(0, description="Registros descartados por el filtro anti-eco")
    failed: int = Field(0, description="Registros fallidos (mapeo o lote)")
    errors: List[str] = Field(default_factory=list, description="Errores por registro/lote")
    checkpoint: Optional[datetime] = Field(None, description="Checkpoint tras la corrida")
    processing_time_ms: int = Field(0, description="Duración de la corrida")


class QueueProcessResponseDTO(BaseModel):
    """Resultado de un drenado de la cola de propagación."""

    success: bool = Field(..., description="False solo si el drenado falló en setup")
    processed: int = Field(0, description="Items reclamados en esta corrida")
    records_synced: int = Field(0, description="Items enviados al remoto")
    failed: int = Field(0, description="Intentos fallidos en esta corrida")
    errors: List[str] = Field(default_factory=list, description="Errores por item")
    processing_time_ms: int = Field(0, description="Duración del drenado")


class FullResyncResponseDTO(BaseModel):
    """Resultado de un full resync remoto -> local."""

    success: bool = Field(..., description="False si el descubrimiento o el setup fallaron")
    table_name: Optional[str] = Field(None, description="Nombre de tabla remota descubierto")
    total_leads: int = Field(0, description="Total de registros en la tabla remota")
    migrated: int = Field(0, description="Registros aplicados en el local")
    inserted: int = Field(0, description="Registros nuevos en el local")
    failed: int = Field(0, description="Registros fallidos")
    errors: List[str] = Field(default_factory=list, description="Errores por página/lote")
    attempts: List[Dict[str, Any]] = Field(default_factory=list, description="Intentos de descubrimiento de tabla")
    processing_time_ms: int = Field(0, description="Duración del resync")


class ProbeDTO(BaseModel):
    status: str = Field(..., description="ok | error")
    message: str
    latency_ms: Optional[int] = None
    record_count: Optional[int] = None


class HealthResponseDTO(BaseModel):
    """Estado de salud de la sincronización."""

    success: bool = Field(..., description="False solo si ningún store respondió")
    status: str = Field(..., description="ok | degraded | error")
    timestamp: datetime
    checks: Dict[str, ProbeDTO]
    queue: Dict[str, int] = Field(default_factory=dict, description="Items de la cola por estado")
    heartbeat_written: bool = False
    alert_sent: bool = False
    error: Optional[str] = None
    errors: List[str] = Field(default_factory=list, description="Un mensaje por chequeo fallido")
    processing_time_ms: int = Field(0, description="Duración del health check")


class GeoEnrichResponseDTO(BaseModel):
    """Resultado del enriquecimiento de coordenadas."""

    success: bool = True
    processed: int = Field(0, description="Leads actualizados con coordenadas")
    geocoded: int = Field(0, description="Coordenadas obtenidas por parseo o Nominatim")
    from_cache: int = Field(0, description="Coordenadas obtenidas del geocache")
    total: int = Field(0, description="Leads candidatos evaluados")
    errors: List[str] = Field(default_factory=list, description="Error de setup o de conexión")
    processing_time_ms: int = 0
