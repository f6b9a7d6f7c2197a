"""
Full resync TabuladorMax -> Gestão (seed inicial o recuperación).

Pasos:
1. Descubrimiento de tabla: se prueba una lista ordenada de nombres
   candidatos con una consulta de existencia barata; gana el primero que
   responde sin error de esquema/acceso. Cada intento queda registrado.
2. Transferencia paginada por id asc, en páginas de tamaño fijo.
3. Conteo acumulado total/migrados/fallidos; una página fallida no corta
   las siguientes.

Idempotente: se puede re-ejecutar completo.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import psycopg
from loguru import logger

from scouter_sync.core.config import SyncSettings
from scouter_sync.domain.entities.sync import LeadRecord, SyncRunResult
from scouter_sync.shared.exceptions.sync import (
    RemoteAccessError,
    SchemaError,
    SyncException,
    TableDiscoveryError,
)

from .batch_upserter import BatchUpserter, LocalLeadDestination
from .pg_repository import PostgresSyncRepository
from .provenance import stamp_provenance
from .record_mapper import map_rows, remote_to_canonical
from .rest_client import RemoteLeadClient
from .run_journal import finish_run
from .sync_service import release_lock
from .types import FULL_RESYNC_PAIR_ID, isoformat_z, utc_now


@dataclass(frozen=True)
class DiscoveryAttempt:
    table_name: str
    success: bool
    latency_ms: int
    total: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "success": self.success,
            "latency_ms": self.latency_ms,
            "total": self.total,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class DiscoveryResult:
    table_name: str
    total: int
    attempts: list[DiscoveryAttempt] = field(default_factory=list)


def discover_table(client: RemoteLeadClient, candidates: Sequence[str]) -> DiscoveryResult:
    """
    Prueba cada candidato en orden y se queda con el primero que responde.

    Errores de esquema o de acceso pasan al siguiente candidato; un error de
    conectividad es fatal (ningún otro nombre va a responder). Si ninguno
    funciona se levanta TableDiscoveryError con todos los intentos.
    """
    attempts: list[DiscoveryAttempt] = []
    for name in candidates:
        started = time.monotonic()
        try:
            total = client.count(name)
        except (SchemaError, RemoteAccessError) as e:
            attempt = DiscoveryAttempt(
                table_name=name,
                success=False,
                latency_ms=int((time.monotonic() - started) * 1000),
                error=e.message,
                error_code=e.code,
            )
            attempts.append(attempt)
            logger.warning(f"Tabla candidata {name} no disponible ({e.code}): {e.message}")
            continue

        attempt = DiscoveryAttempt(
            table_name=name,
            success=True,
            latency_ms=int((time.monotonic() - started) * 1000),
            total=total,
        )
        attempts.append(attempt)
        logger.info(f"Tabla remota encontrada: {name} ({total} registros)")
        return DiscoveryResult(table_name=name, total=total, attempts=attempts)

    raise TableDiscoveryError([a.to_dict() for a in attempts])


class FullResyncCoordinator:
    """
    Copia completa del remoto al local en páginas ordenadas por id.
    """

    def __init__(
        self,
        *,
        settings: SyncSettings,
        pg_repo: PostgresSyncRepository,
        remote: RemoteLeadClient,
        clock: Callable = utc_now,
    ) -> None:
        self._settings = settings
        self._pg = pg_repo
        self._remote = remote
        self._clock = clock
        self.discovery: Optional[DiscoveryResult] = None
        self.attempts: list[dict[str, Any]] = []

    @property
    def total(self) -> int:
        return self.discovery.total if self.discovery else 0

    def run(self) -> SyncRunResult:
        """
        Ejecuta el resync completo.

        `records_synced` = migrados, `records_failed` = fallidos; el total
        descubierto queda en `self.total`.
        """
        result = SyncRunResult(direction=FULL_RESYNC_PAIR_ID, started_at=self._clock())

        try:
            self._settings.require_local()
            self._settings.require_remote()
            conn = self._pg.connect()
        except SyncException as e:
            logger.error(f"Full resync abortado en setup: {e.message}")
            result.fatal = True
            result.errors.append(e.message)
            return finish_run(result, clock=self._clock)

        with conn:
            try:
                self._pg.ensure_sync_tables(conn)
                locked = self._pg.try_advisory_lock(conn, FULL_RESYNC_PAIR_ID)
            except psycopg.Error as e:
                result.fatal = True
                result.errors.append(f"local: {e}")
                return finish_run(result, clock=self._clock)

            if not locked:
                logger.warning("Full resync ya está corriendo (advisory lock ocupado). Saliendo.")
                result.skipped = True
                return finish_run(result, clock=self._clock)

            try:
                self._run_locked(conn, result)
            finally:
                release_lock(self._pg, conn, FULL_RESYNC_PAIR_ID)

            return finish_run(result, pg_repo=self._pg, conn=conn, metadata=self._metadata(), clock=self._clock)

    def _metadata(self) -> dict[str, Any]:
        return {
            "table_name": self.discovery.table_name if self.discovery else None,
            "total": self.total,
            "attempts": self.attempts,
        }

    def _run_locked(self, conn: psycopg.Connection, result: SyncRunResult) -> None:
        try:
            try:
                self.discovery = discover_table(self._remote, self._settings.remote_table_candidates)
            except TableDiscoveryError as e:
                self.attempts = e.attempts
                raise
            self.attempts = [a.to_dict() for a in self.discovery.attempts]
            self._transfer(conn, result)
        except (SyncException, psycopg.Error) as e:
            message = e.message if isinstance(e, SyncException) else f"local: {e}"
            logger.error(f"Full resync falló: {message}")
            result.fatal = True
            result.errors.append(message)

        result.checkpoint = result.started_at
        try:
            self._pg.save_checkpoint(
                conn,
                pair_id=FULL_RESYNC_PAIR_ID,
                last_sync_at=result.started_at,
                success=not result.fatal,
                error="; ".join(result.errors[:5]) or None,
                total_records=result.records_synced,
            )
        except psycopg.Error as e:
            logger.error(f"No se pudo guardar el estado del full resync: {e}")
            result.fatal = True
            result.errors.append(f"checkpoint: {e}")

    def _transfer(self, conn: psycopg.Connection, result: SyncRunResult) -> None:
        table = self.discovery.table_name
        total = self.discovery.total
        page_size = self._settings.page_size
        upserter = BatchUpserter(
            LocalLeadDestination(self._pg, conn, tag=self._settings.local_tag),
            batch_size=self._settings.batch_size,
        )
        synced_at = self._clock()

        def convert(raw: dict[str, Any]) -> LeadRecord:
            # Registros sin updated_at entran con la hora de la migración
            if not raw.get("updated_at"):
                raw = {**raw, "updated_at": isoformat_z(synced_at)}
            return remote_to_canonical(raw)

        logger.info(f"Full resync: {total} registros desde {table} en páginas de {page_size}")

        for page_no, offset in enumerate(range(0, total, page_size), start=1):
            expected = min(page_size, total - offset)
            try:
                rows = self._remote.fetch_page(table, offset=offset, limit=page_size)
            except SyncException as e:
                logger.error(f"Página {page_no} (offset {offset}) falló: {e.message}")
                result.records_failed += expected
                result.errors.append(f"Página {page_no}: {e.message}")
                continue

            result.records_read += len(rows)
            mapped = map_rows(rows, convert)
            result.records_failed += mapped.failed
            result.errors.extend(mapped.errors)

            outgoing = [
                stamp_provenance(r, origin_tag=self._settings.remote_tag, synced_at=synced_at)
                for r in mapped.records
            ]
            report = upserter.upsert(outgoing)
            result.records_synced += report.succeeded
            result.records_inserted += report.inserted
            result.records_failed += report.failed
            result.errors.extend(report.errors)

            logger.info(
                f"Página {page_no}: {len(rows)} leídos, {report.succeeded} migrados, "
                f"{report.failed + mapped.failed} fallidos"
            )

        logger.info(
            f"Full resync completado: total={total}, migrados={result.records_synced}, "
            f"fallidos={result.records_failed}"
        )
