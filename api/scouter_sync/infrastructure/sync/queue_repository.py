"""
Acceso a la cola de propagación saliente (tabla sync_queue).

La única primitiva de concurrencia es el claim condicional:
`UPDATE ... SET status = 'processing' WHERE id = %s AND status = 'pending'`.
Si dos workers compiten por el mismo item, solo uno recibe la fila.
"""

from __future__ import annotations

from typing import Any, Optional

import psycopg
from psycopg.types.json import Jsonb

from scouter_sync.domain.entities.sync import QueueItem, QueueStatus

from .types import ensure_utc


_QUEUE_COLUMNS = (
    "id, record_id, operation, payload, status, retry_count, "
    "last_error, created_at, processed_at"
)


def row_to_queue_item(row: dict[str, Any]) -> QueueItem:
    return QueueItem(
        id=int(row["id"]),
        record_id=str(row["record_id"]),
        operation=row["operation"],
        payload=row.get("payload") or {},
        status=QueueStatus(row["status"]),
        retry_count=int(row.get("retry_count") or 0),
        last_error=row.get("last_error"),
        created_at=ensure_utc(row["created_at"]) if row.get("created_at") else None,
        processed_at=ensure_utc(row["processed_at"]) if row.get("processed_at") else None,
    )


class QueueRepository:
    def enqueue(
        self,
        conn: psycopg.Connection,
        *,
        record_id: str,
        operation: str,
        payload: dict[str, Any],
    ) -> QueueItem:
        """
        Encola un cambio local. Si ya hay un item activo (pending/processing)
        para el mismo registro, se refresca su payload en lugar de duplicarlo.
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO sync_queue (record_id, operation, payload, status)
                VALUES (%s, %s, %s, 'pending')
                ON CONFLICT (record_id) WHERE status IN ('pending', 'processing')
                DO UPDATE SET
                    operation = EXCLUDED.operation,
                    payload = EXCLUDED.payload,
                    updated_at = now()
                RETURNING {_QUEUE_COLUMNS}
                """,
                (record_id, operation, Jsonb(payload)),
            )
            return row_to_queue_item(cur.fetchone())

    def select_pending(
        self,
        conn: psycopg.Connection,
        *,
        max_retries: int,
        limit: int,
    ) -> list[QueueItem]:
        """
        Items pendientes, los más viejos primero.

        El borde es inclusivo: un item con retry_count == max_retries todavía
        tiene un último intento; si vuelve a fallar pasa a 'failed'.
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_QUEUE_COLUMNS}
                FROM sync_queue
                WHERE status = 'pending'
                  AND retry_count <= %s
                ORDER BY created_at ASC, id ASC
                LIMIT %s
                """,
                (max_retries, limit),
            )
            return [row_to_queue_item(r) for r in cur.fetchall()]

    def claim(self, conn: psycopg.Connection, item_id: int) -> Optional[QueueItem]:
        """Transición atómica pending -> processing. None si otro worker ganó."""
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE sync_queue
                SET status = 'processing',
                    updated_at = now()
                WHERE id = %s
                  AND status = 'pending'
                RETURNING {_QUEUE_COLUMNS}
                """,
                (item_id,),
            )
            row = cur.fetchone()
        return row_to_queue_item(row) if row else None

    def mark_completed(
        self,
        conn: psycopg.Connection,
        *,
        item_id: int,
        sent_payload: dict[str, Any],
    ) -> QueueStatus:
        """
        Cierra el item. Si el payload se refrescó mientras estaba en
        'processing', vuelve a 'pending' para enviar la versión nueva.
        """
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE sync_queue
                SET status = CASE WHEN payload = %s THEN 'completed' ELSE 'pending' END,
                    processed_at = now(),
                    last_error = NULL,
                    updated_at = now()
                WHERE id = %s
                  AND status = 'processing'
                RETURNING status
                """,
                (Jsonb(sent_payload), item_id),
            )
            row = cur.fetchone()
        return QueueStatus(row["status"]) if row else QueueStatus.COMPLETED

    def mark_failed(
        self,
        conn: psycopg.Connection,
        *,
        item_id: int,
        error: str,
        max_retries: int,
    ) -> Optional[QueueItem]:
        """
        Registra un intento fallido: retry_count + 1 y vuelta a 'pending',
        salvo que el item ya estuviera en su último intento (-> 'failed').
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE sync_queue
                SET status = CASE WHEN retry_count >= %s THEN 'failed' ELSE 'pending' END,
                    retry_count = retry_count + 1,
                    last_error = %s,
                    updated_at = now()
                WHERE id = %s
                  AND status = 'processing'
                RETURNING {_QUEUE_COLUMNS}
                """,
                (max_retries, error[:2000], item_id),
            )
            row = cur.fetchone()
        return row_to_queue_item(row) if row else None

    def count_by_status(self, conn: psycopg.Connection) -> dict[str, int]:
        with conn.cursor() as cur:
            cur.execute("SELECT status, count(*) AS total FROM sync_queue GROUP BY status")
            return {r["status"]: int(r["total"]) for r in cur.fetchall()}
