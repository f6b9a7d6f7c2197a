"""
Entidades del dominio.
"""
from scouter_sync.domain.entities.sync import (
    HealthStatus,
    LeadRecord,
    QueueItem,
    QueueStatus,
    SyncCheckpoint,
    SyncDirection,
    SyncLogEntry,
    SyncRunResult,
)

__all__ = [
    "HealthStatus",
    "LeadRecord",
    "QueueItem",
    "QueueStatus",
    "SyncCheckpoint",
    "SyncDirection",
    "SyncLogEntry",
    "SyncRunResult",
]
