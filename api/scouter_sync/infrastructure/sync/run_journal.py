"""
Cierre común de corridas: fila en sync_logs + línea en el log de auditoría.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

import psycopg
from loguru import logger

from scouter_sync.domain.entities.sync import SyncRunResult
from scouter_sync.shared.utils.audit_logger import AuditLogger

from .pg_repository import PostgresSyncRepository
from .types import utc_now


def finish_run(
    result: SyncRunResult,
    *,
    pg_repo: Optional[PostgresSyncRepository] = None,
    conn: Optional[psycopg.Connection] = None,
    metadata: Optional[dict[str, Any]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> SyncRunResult:
    """
    Marca el fin de la corrida y la audita.

    Si el store local no está disponible (conn None) solo queda el log de
    archivo. Un fallo al insertar en sync_logs no cambia el resultado.
    """
    if result.completed_at is None:
        result.completed_at = clock()

    if pg_repo is not None and conn is not None and not result.skipped:
        try:
            pg_repo.insert_sync_log(conn, result.to_log_entry(metadata))
        except psycopg.Error as e:
            logger.error(f"No se pudo insertar en sync_logs ({result.direction}): {e}")

    AuditLogger.record_run(result, metadata=metadata)
    return result
