"""
Repositorio Postgres (psycopg) del store local (Gestão Scouter) para:
- tabla de leads (lectura incremental, UPSERT, procedencia)
- checkpoint por par direccional (sync_status)
- auditoría (sync_logs)
- cache de geocodificación (geocache)
- escrituras de la aplicación que encolan propagación saliente

Las conexiones se abren en autocommit; cada escritura multi-sentencia se
envuelve en `conn.transaction()` para que un lote fallido no arrastre a los
anteriores.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from functools import partial
from typing import Any, Iterable, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from scouter_sync.domain.entities.sync import QueueItem, SyncCheckpoint, SyncLogEntry
from scouter_sync.shared.exceptions.sync import ConnectivityError, UpsertConflictError

from .queue_repository import QueueRepository
from .types import HEARTBEAT_PAIR_ID, ensure_utc


STORE_NAME = "local"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Tipo no serializable a JSON: {type(value).__name__}")


json_dumps = partial(json.dumps, default=_json_default)


def to_jsonb(value: Any) -> Optional[Jsonb]:
    """Envuelve un valor para columnas jsonb (fechas y Decimal incluidos)."""
    if value is None:
        return None
    return Jsonb(value, dumps=json_dumps)


SYNC_TABLES_DDL = """
CREATE TABLE IF NOT EXISTS sync_status (
    id                  TEXT        PRIMARY KEY,
    last_sync_at        TIMESTAMPTZ NOT NULL,
    last_sync_success   BOOLEAN     NULL,
    last_error          TEXT        NULL,
    total_records       INTEGER     NOT NULL DEFAULT 0,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS sync_queue (
    id              BIGSERIAL   PRIMARY KEY,
    record_id       TEXT        NOT NULL,
    operation       TEXT        NOT NULL,
    payload         JSONB       NOT NULL,
    status          TEXT        NOT NULL DEFAULT 'pending',
    retry_count     INTEGER     NOT NULL DEFAULT 0,
    last_error      TEXT        NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    processed_at    TIMESTAMPTZ NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS sync_queue_active_record_idx
    ON sync_queue (record_id)
    WHERE status IN ('pending', 'processing');

CREATE INDEX IF NOT EXISTS sync_queue_pending_idx
    ON sync_queue (status, created_at);

CREATE TABLE IF NOT EXISTS sync_logs (
    id                  BIGSERIAL   PRIMARY KEY,
    sync_direction      TEXT        NOT NULL,
    records_synced      INTEGER     NOT NULL DEFAULT 0,
    records_failed      INTEGER     NOT NULL DEFAULT 0,
    errors              JSONB       NOT NULL DEFAULT '[]'::jsonb,
    started_at          TIMESTAMPTZ NOT NULL,
    completed_at        TIMESTAMPTZ NOT NULL,
    processing_time_ms  INTEGER     NOT NULL DEFAULT 0,
    metadata            JSONB       NOT NULL DEFAULT '{}'::jsonb,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS geocache (
    query       TEXT        PRIMARY KEY,
    lat         DOUBLE PRECISION NOT NULL,
    lng         DOUBLE PRECISION NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


def _row_to_checkpoint(row: dict[str, Any]) -> SyncCheckpoint:
    return SyncCheckpoint(
        pair_id=row["id"],
        last_sync_at=ensure_utc(row["last_sync_at"]),
        last_sync_success=row.get("last_sync_success"),
        last_error=row.get("last_error"),
        total_records=row.get("total_records") or 0,
        updated_at=ensure_utc(row["updated_at"]) if row.get("updated_at") else None,
    )


class PostgresSyncRepository:
    def __init__(self, dsn: str, *, leads_table: str = "leads") -> None:
        self._dsn = dsn
        self._leads_table = leads_table
        self.queue = QueueRepository()

    @property
    def leads_table(self) -> str:
        return self._leads_table

    def connect(self, *, autocommit: bool = True) -> psycopg.Connection:
        """
        Abre conexión con filas dict. Un fallo de red se traduce a
        ConnectivityError (fatal para la corrida).
        """
        try:
            return psycopg.connect(self._dsn, row_factory=dict_row, autocommit=autocommit)
        except psycopg.OperationalError as e:
            raise ConnectivityError(
                STORE_NAME,
                f"{e}. Verifica que DATABASE_URL sea accesible desde donde se ejecuta el sync.",
            ) from e

    def try_advisory_lock(self, conn: psycopg.Connection, lock_name: str) -> bool:
        """
        Evita ejecuciones simultáneas del mismo par direccional.
        El lock es de sesión: se libera con advisory_unlock o al cerrar la conexión.
        """
        with conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(hashtext(%s)) AS locked", (lock_name,))
            row = cur.fetchone()
            return bool(row and row.get("locked"))

    def advisory_unlock(self, conn: psycopg.Connection, lock_name: str) -> None:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (lock_name,))

    def ensure_sync_tables(self, conn: psycopg.Connection) -> None:
        with conn.cursor() as cur:
            cur.execute(SYNC_TABLES_DDL)

    # ------------------------------------------------------------------
    # Checkpoint
    # ------------------------------------------------------------------

    def load_or_init_checkpoint(
        self,
        conn: psycopg.Connection,
        *,
        pair_id: str,
        initial_sync_at: datetime,
    ) -> SyncCheckpoint:
        """Lee el checkpoint del par; si no existe lo crea con `initial_sync_at`."""
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sync_status (id, last_sync_at)
                VALUES (%s, %s)
                ON CONFLICT (id) DO NOTHING
                """,
                (pair_id, ensure_utc(initial_sync_at)),
            )
            cur.execute(
                """
                SELECT id, last_sync_at, last_sync_success, last_error,
                       total_records, updated_at
                FROM sync_status
                WHERE id = %s
                """,
                (pair_id,),
            )
            row = cur.fetchone()
        if not row:
            raise ConnectivityError(STORE_NAME, f"No se pudo inicializar sync_status para '{pair_id}'")
        return _row_to_checkpoint(row)

    def save_checkpoint(
        self,
        conn: psycopg.Connection,
        *,
        pair_id: str,
        last_sync_at: datetime,
        success: bool,
        error: Optional[str],
        total_records: int,
    ) -> None:
        """
        Escribe el resultado de la corrida. `last_sync_at` nunca retrocede:
        GREATEST protege contra corridas concurrentes o cursores viejos.
        """
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sync_status
                    (id, last_sync_at, last_sync_success, last_error, total_records, updated_at)
                VALUES (%s, %s, %s, %s, %s, now())
                ON CONFLICT (id) DO UPDATE SET
                    last_sync_at = GREATEST(sync_status.last_sync_at, EXCLUDED.last_sync_at),
                    last_sync_success = EXCLUDED.last_sync_success,
                    last_error = EXCLUDED.last_error,
                    total_records = EXCLUDED.total_records,
                    updated_at = now()
                """,
                (
                    pair_id,
                    ensure_utc(last_sync_at),
                    success,
                    error[:2000] if error else None,
                    total_records,
                ),
            )

    def write_heartbeat(
        self,
        conn: psycopg.Connection,
        *,
        status: str,
        error: Optional[str],
        checked_at: datetime,
        total_records: int = 0,
    ) -> None:
        self.save_checkpoint(
            conn,
            pair_id=HEARTBEAT_PAIR_ID,
            last_sync_at=checked_at,
            success=status == "ok",
            error=error,
            total_records=total_records,
        )

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def fetch_changed_leads(
        self,
        conn: psycopg.Connection,
        *,
        since: datetime,
        limit: int,
        after: Optional[tuple[datetime, str]] = None,
    ) -> list[dict[str, Any]]:
        """
        Leads con updated_at >= since, ordenados por (updated_at, id).

        `after` pide la página siguiente por keyset en vez de OFFSET.
        """
        where = "updated_at >= %s"
        params: list[Any] = [ensure_utc(since)]
        if after is not None:
            where += " AND (updated_at, id) > (%s, %s)"
            params.extend([ensure_utc(after[0]), after[1]])
        params.append(limit)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT *
                FROM "{self._leads_table}"
                WHERE {where}
                ORDER BY updated_at ASC, id ASC
                LIMIT %s
                """,
                params,
            )
            return list(cur.fetchall())

    def count_leads(self, conn: psycopg.Connection) -> int:
        with conn.cursor() as cur:
            cur.execute(f'SELECT count(*) AS total FROM "{self._leads_table}"')
            row = cur.fetchone()
            return int(row["total"]) if row else 0

    def upsert_leads(
        self,
        conn: psycopg.Connection,
        rows: Iterable[dict[str, Any]],
    ) -> list[str]:
        """
        UPSERT por id en una sola sentencia. Resuelve conflictos con regla:
        - solo actualiza si EXCLUDED.updated_at >= leads.updated_at

        Esto evita pisar con data vieja en ejecuciones concurrentes/reintentos.
        Retorna los ids que fueron insertados (no existían).
        """
        rows_list = list(rows)
        if not rows_list:
            return []

        # Columnas: asumimos que todas las filas traen el mismo conjunto.
        columns = list(rows_list[0].keys())
        if "id" not in columns:
            raise ValueError("Falta columna 'id' en row para UPSERT")
        if "updated_at" not in columns:
            raise ValueError("Falta columna 'updated_at' en row para UPSERT")

        table = self._leads_table
        insert_cols_sql = ", ".join(f'"{c}"' for c in columns)
        row_placeholder = "(" + ", ".join(["%s"] * len(columns)) + ")"
        values_sql = ", ".join([row_placeholder] * len(rows_list))
        set_sql = ", ".join(f'"{c}" = EXCLUDED."{c}"' for c in columns if c != "id")

        sql = f"""
            INSERT INTO "{table}" ({insert_cols_sql})
            VALUES {values_sql}
            ON CONFLICT ("id")
            DO UPDATE SET
                {set_sql}
            WHERE EXCLUDED."updated_at" >= "{table}"."updated_at"
            RETURNING "id", (xmax = 0) AS is_insert;
        """

        params: list[Any] = []
        for row in rows_list:
            for c in columns:
                value = row.get(c)
                params.append(to_jsonb(value) if c == "raw" else value)

        try:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    returned = cur.fetchall()
        except psycopg.OperationalError as e:
            raise ConnectivityError(STORE_NAME, str(e)) from e
        except psycopg.Error as e:
            sqlstate = getattr(e, "sqlstate", None)
            raise UpsertConflictError(STORE_NAME, str(e).strip(), code=sqlstate) from e

        return [str(r["id"]) for r in returned if r.get("is_insert")]

    def mark_leads_synced(
        self,
        conn: psycopg.Connection,
        *,
        record_ids: list[str],
        source_tag: str,
        synced_at: datetime,
    ) -> int:
        """
        Actualiza la procedencia de los leads locales ya propagados.
        No toca updated_at: esto no es un cambio de datos.
        """
        if not record_ids:
            return 0
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE "{self._leads_table}"
                SET sync_source = %s,
                    last_synced_at = %s
                WHERE id = ANY(%s)
                """,
                (source_tag, ensure_utc(synced_at), record_ids),
            )
            return cur.rowcount or 0

    def apply_local_mutation(
        self,
        conn: psycopg.Connection,
        row: dict[str, Any],
        *,
        local_tag: str,
        operation: str = "upsert",
    ) -> QueueItem:
        """
        Escritura de la aplicación (dashboard) sobre un lead local.

        En una misma transacción: guarda el lead con updated_at = now() y
        sync_source = etiqueta local, y encola su propagación al remoto.
        Un borrado es un soft delete (deleted = true).
        """
        if not row.get("id"):
            raise ValueError("apply_local_mutation requiere 'id'")

        data = {k: v for k, v in row.items() if k not in ("updated_at", "sync_source", "last_synced_at")}
        if operation == "delete":
            data["deleted"] = True

        columns = list(data.keys())
        table = self._leads_table
        insert_cols_sql = ", ".join(f'"{c}"' for c in columns)
        placeholders = ", ".join(["%s"] * len(columns))
        set_parts = [f'"{c}" = EXCLUDED."{c}"' for c in columns if c != "id"]
        set_parts += ['"sync_source" = EXCLUDED."sync_source"', '"updated_at" = now()']

        sql = f"""
            INSERT INTO "{table}" ({insert_cols_sql}, "sync_source", "updated_at")
            VALUES ({placeholders}, %s, now())
            ON CONFLICT ("id")
            DO UPDATE SET {", ".join(set_parts)}
            RETURNING *;
        """
        params = [to_jsonb(data[c]) if c == "raw" else data[c] for c in columns]
        params.append(local_tag)

        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(sql, params)
                stored = cur.fetchone()
            payload = {k: v for k, v in dict(stored).items() if k != "raw"}
            return self.queue.enqueue(
                conn,
                record_id=str(stored["id"]),
                operation=operation,
                payload=json.loads(json_dumps(payload)),
            )

    # ------------------------------------------------------------------
    # Auditoría
    # ------------------------------------------------------------------

    def insert_sync_log(self, conn: psycopg.Connection, entry: SyncLogEntry) -> None:
        """Inserta la fila de auditoría. Las filas de sync_logs no se actualizan nunca."""
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sync_logs
                    (sync_direction, records_synced, records_failed, errors,
                     started_at, completed_at, processing_time_ms, metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    entry.sync_direction,
                    entry.records_synced,
                    entry.records_failed,
                    to_jsonb(list(entry.errors)),
                    ensure_utc(entry.started_at),
                    ensure_utc(entry.completed_at),
                    entry.processing_time_ms,
                    to_jsonb(entry.metadata or {}),
                ),
            )

    # ------------------------------------------------------------------
    # Geocodificación
    # ------------------------------------------------------------------

    def fetch_leads_missing_coordinates(self, conn: psycopg.Connection, *, limit: int) -> list[dict[str, Any]]:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, localizacao
                FROM "{self._leads_table}"
                WHERE latitude IS NULL
                  AND localizacao IS NOT NULL
                  AND btrim(localizacao) <> ''
                  AND deleted IS NOT TRUE
                ORDER BY updated_at DESC
                LIMIT %s
                """,
                (limit,),
            )
            return list(cur.fetchall())

    def get_geocache(self, conn: psycopg.Connection, query: str) -> Optional[tuple[float, float]]:
        with conn.cursor() as cur:
            cur.execute("SELECT lat, lng FROM geocache WHERE query = %s", (query,))
            row = cur.fetchone()
        if not row:
            return None
        return float(row["lat"]), float(row["lng"])

    def put_geocache(self, conn: psycopg.Connection, query: str, lat: float, lng: float) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO geocache (query, lat, lng)
                VALUES (%s, %s, %s)
                ON CONFLICT (query) DO UPDATE SET lat = EXCLUDED.lat, lng = EXCLUDED.lng
                """,
                (query, lat, lng),
            )

    def update_lead_coordinates(
        self,
        conn: psycopg.Connection,
        *,
        record_id: str,
        lat: float,
        lng: float,
        local_tag: str,
    ) -> None:
        """Guarda coordenadas como cambio local para que el próximo push las propague."""
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE "{self._leads_table}"
                SET latitude = %s,
                    longitude = %s,
                    sync_source = %s,
                    updated_at = now()
                WHERE id = %s
                """,
                (lat, lng, local_tag, record_id),
            )
