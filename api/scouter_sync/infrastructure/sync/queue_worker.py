"""
Worker de la cola de propagación local -> remoto.

Ciclo de un item:
    pending -> processing -> completed
                          -> pending (reintento, retry_count + 1)
                          -> failed  (terminal, requiere intervención manual)

Se ejecuta periódicamente (cron); dos invocaciones concurrentes no pueden
procesar el mismo item gracias al claim condicional.
"""

from __future__ import annotations

from typing import Callable

import psycopg
from loguru import logger

from scouter_sync.core.config import SyncSettings
from scouter_sync.domain.entities.sync import QueueItem, QueueStatus, SyncRunResult
from scouter_sync.shared.exceptions.sync import SyncException

from .batch_upserter import RemoteLeadDestination
from .pg_repository import PostgresSyncRepository
from .provenance import stamp_provenance
from .record_mapper import local_to_canonical
from .rest_client import RemoteLeadClient
from .run_journal import finish_run
from .types import utc_now

QUEUE_DIRECTION = "queue:gestao_to_tabulador"


class SyncQueueWorker:
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

    def drain(self) -> SyncRunResult:
        """
        Procesa hasta `queue_batch` items pendientes, los más viejos primero.

        `records_read` = items reclamados, `records_synced` = completados,
        `records_failed` = intentos fallidos en esta corrida.
        """
        result = SyncRunResult(direction=QUEUE_DIRECTION, started_at=self._clock())

        try:
            self._settings.require_local()
            self._settings.require_remote()
            conn = self._pg.connect()
        except SyncException as e:
            logger.error(f"Drenado de cola abortado en setup: {e.message}")
            result.fatal = True
            result.errors.append(e.message)
            return finish_run(result, clock=self._clock)

        with conn:
            try:
                self._pg.ensure_sync_tables(conn)
                # Con el remoto caído no se consumen reintentos
                self._remote.count(self._settings.remote_table)
                items = self._pg.queue.select_pending(
                    conn,
                    max_retries=self._settings.max_retries,
                    limit=self._settings.queue_batch,
                )
            except (SyncException, psycopg.Error) as e:
                message = e.message if isinstance(e, SyncException) else f"local: {e}"
                logger.error(f"Drenado de cola abortado: {message}")
                result.fatal = True
                result.errors.append(message)
                return finish_run(result, pg_repo=self._pg, conn=conn, clock=self._clock)

            logger.info(f"Cola: {len(items)} items pendientes seleccionados")
            destination = RemoteLeadDestination(
                self._remote, table=self._settings.remote_table, tag=self._settings.remote_tag
            )

            try:
                for item in items:
                    claimed = self._pg.queue.claim(conn, item.id)
                    if claimed is None:
                        logger.debug(f"Item {item.id} ya fue reclamado por otro worker")
                        continue
                    result.records_read += 1
                    self._process(conn, claimed, destination, result)
            except psycopg.Error as e:
                logger.error(f"Drenado de cola interrumpido por el store local: {e}")
                result.fatal = True
                result.errors.append(f"local: {e}")

            return finish_run(
                result,
                pg_repo=self._pg,
                conn=conn,
                metadata={"selected": len(items), "max_retries": self._settings.max_retries},
                clock=self._clock,
            )

    def _process(
        self,
        conn: psycopg.Connection,
        item: QueueItem,
        destination: RemoteLeadDestination,
        result: SyncRunResult,
    ) -> None:
        synced_at = self._clock()
        try:
            record = local_to_canonical(item.payload)
            outgoing = stamp_provenance(record, origin_tag=self._settings.local_tag, synced_at=synced_at)
            outcome = destination.write([destination.prepare(outgoing)])
        except SyncException as e:
            failed = self._pg.queue.mark_failed(
                conn,
                item_id=item.id,
                error=e.message,
                max_retries=self._settings.max_retries,
            )
            result.records_failed += 1
            result.errors.append(f"Item {item.id} ({item.record_id}): {e.message}")
            if failed is not None and failed.status is QueueStatus.FAILED:
                logger.error(
                    f"Item {item.id} ({item.record_id}) marcado como failed tras "
                    f"{failed.retry_count} intentos: {e.message}"
                )
            else:
                logger.warning(f"Item {item.id} ({item.record_id}) falló, se reintentará: {e.message}")
            return

        status = self._pg.queue.mark_completed(conn, item_id=item.id, sent_payload=item.payload)
        # Procedencia del lado origen: el filtro anti-eco la usa en el próximo pull
        self._pg.mark_leads_synced(
            conn,
            record_ids=[item.record_id],
            source_tag=self._settings.local_tag,
            synced_at=synced_at,
        )
        result.records_synced += 1
        result.records_inserted += outcome.inserted
        if status is QueueStatus.PENDING:
            logger.info(f"Item {item.id} ({item.record_id}) cambió durante el envío; queda pendiente")
