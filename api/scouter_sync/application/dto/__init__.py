"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    FullResyncResponseDTO,
    GeoEnrichResponseDTO,
    HealthResponseDTO,
    ProbeDTO,
    QueueProcessResponseDTO,
    SyncRunResponseDTO,
)

__all__ = [
    "FullResyncResponseDTO",
    "GeoEnrichResponseDTO",
    "HealthResponseDTO",
    "ProbeDTO",
    "QueueProcessResponseDTO",
    "SyncRunResponseDTO",
]
