"""
Entidades del motor de sincronizacion.

Modelo:
- LeadRecord: representacion canonica de una ficha/lead, independiente del
  esquema de cada sistema. Lleva los campos de procedencia (source,
  last_synced_at) separados del reloj de deteccion de cambios (updated_at).
- SyncCheckpoint: una fila por par direccional, escrita al final de cada corrida.
- QueueItem: item de la cola de propagacion saliente.
- SyncLogEntry: fila de auditoria inmutable por corrida.
- SyncRunResult: acumulador de conteos y errores de una corrida.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncDirection(Enum):
    """Direccion de una corrida incremental."""
    PULL = "pull"   # remoto -> local
    PUSH = "push"   # local -> remoto


class QueueStatus(Enum):
    """
    Estados de un item de la cola.

    pending -> processing -> completed | pending (reintento) | failed (terminal)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class HealthStatus(Enum):
    """Clasificacion global del health check."""
    OK = "ok"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass(frozen=True)
class LeadRecord:
    """
    Lead canonico.

    `id` es la clave estable compartida por ambos sistemas. `raw` guarda el
    payload original cuando el destino lo persiste (solo el store local).
    """

    id: str
    updated_at: datetime
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    project: Optional[str] = None
    scouter: Optional[str] = None
    supervisor: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    approach_place: Optional[str] = None
    created_at: Optional[datetime] = None
    ficha_value: Optional[float] = None
    stage: Optional[str] = None
    confirmed: Optional[str] = None
    photo_url: Optional[str] = None
    deleted: bool = False
    source: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False)


@dataclass(frozen=True)
class SyncCheckpoint:
    """Estado persistido por par direccional (tabla sync_status)."""

    pair_id: str
    last_sync_at: datetime
    last_sync_success: Optional[bool] = None
    last_error: Optional[str] = None
    total_records: int = 0
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class QueueItem:
    """Item de la cola de propagacion local -> remoto (tabla sync_queue)."""

    id: int
    record_id: str
    operation: str
    payload: Dict[str, Any]
    status: QueueStatus
    retry_count: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SyncLogEntry:
    """Fila de auditoria. Nunca se modifica despues de insertarse."""

    sync_direction: str
    records_synced: int
    records_failed: int
    errors: List[str]
    started_at: datetime
    completed_at: datetime
    processing_time_ms: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncRunResult:
    """
    Resultado acumulado de una corrida.

    `fatal` solo se activa por fallas de setup (credenciales, store
    inaccesible); fallas por registro o por lote se cuentan en
    `records_failed` y se listan en `errors`.
    """

    direction: str
    started_at: datetime
    records_read: int = 0
    records_synced: int = 0
    records_inserted: int = 0
    records_suppressed: int = 0
    records_failed: int = 0
    errors: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    fatal: bool = False
    skipped: bool = False
    checkpoint: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return not self.fatal

    @property
    def processing_time_ms(self) -> int:
        if self.completed_at is None:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def http_status(self) -> int:
        """200 limpio, 207 parcial, 500 fatal."""
        if self.fatal:
            return 500
        if self.records_failed or self.errors:
            return 207
        return 200

    def to_log_entry(self, metadata: Optional[Dict[str, Any]] = None) -> SyncLogEntry:
        return SyncLogEntry(
            sync_direction=self.direction,
            records_synced=self.records_synced,
            records_failed=self.records_failed,
            errors=list(self.errors),
            started_at=self.started_at,
            completed_at=self.completed_at or self.started_at,
            processing_time_ms=self.processing_time_ms,
            metadata=metadata or {},
        )
