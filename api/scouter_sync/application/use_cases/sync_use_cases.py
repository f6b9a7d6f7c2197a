"""
Casos de uso de la sincronización Gestão <-> TabuladorMax.

Cada caso de uso construye sus colaboradores a partir de un SyncSettings
creado por invocación y ejecuta el trabajo bloqueante (psycopg/requests)
en un thread separado para no bloquear el event loop.
"""
import asyncio
import time
from typing import Optional, Tuple

from loguru import logger

from scouter_sync.application.dto.sync_dto import (
    FullResyncResponseDTO,
    GeoEnrichResponseDTO,
    HealthResponseDTO,
    ProbeDTO,
    QueueProcessResponseDTO,
    SyncRunResponseDTO,
)
from scouter_sync.core.config import SyncSettings
from scouter_sync.domain.entities.sync import HealthStatus, SyncDirection
from scouter_sync.infrastructure.sync.full_resync import FullResyncCoordinator
from scouter_sync.infrastructure.sync.geo_enrich import GeoEnricher, NominatimGeocoder, build_geocoder
from scouter_sync.infrastructure.sync.health import HealthMonitor
from scouter_sync.infrastructure.sync.notifier import AlertNotifier
from scouter_sync.infrastructure.sync.pg_repository import PostgresSyncRepository
from scouter_sync.infrastructure.sync.queue_worker import SyncQueueWorker
from scouter_sync.infrastructure.sync.rest_client import RemoteLeadClient
from scouter_sync.infrastructure.sync.sync_service import BidirectionalSync, build_from_settings
from scouter_sync.shared.exceptions.sync import SyncException


class SyncUseCases:
    """
    Orquesta las capacidades del motor de sync para la API y el cron.
    """

    def __init__(
        self,
        settings: SyncSettings,
        *,
        pg_repo: Optional[PostgresSyncRepository] = None,
        remote: Optional[RemoteLeadClient] = None,
        notifier: Optional[AlertNotifier] = None,
        geocoder: Optional[NominatimGeocoder] = None,
    ):
        self.settings = settings
        if pg_repo is None or remote is None:
            built_repo, built_remote = build_from_settings(settings)
            pg_repo = pg_repo or built_repo
            remote = remote or built_remote
        self.pg_repo = pg_repo
        self.remote = remote
        self.notifier = notifier or AlertNotifier(settings.telegram_bot_token, settings.telegram_alert_chat_id)
        self.geocoder = geocoder

    async def run_bidirectional(self, direction: SyncDirection) -> Tuple[SyncRunResponseDTO, int]:
        """Corrida incremental pull o push."""
        logger.info(f"Iniciando sync incremental ({direction.value})")
        service = BidirectionalSync(settings=self.settings, pg_repo=self.pg_repo, remote=self.remote)
        result = await asyncio.to_thread(service.run_once, direction)

        dto = SyncRunResponseDTO(
            success=result.success,
            direction=result.direction,
            skipped=result.skipped,
            records_read=result.records_read,
            records_synced=result.records_synced,
            inserted=result.records_inserted,
            suppressed=result.records_suppressed,
            failed=result.records_failed,
            errors=result.errors,
            checkpoint=result.checkpoint,
            processing_time_ms=result.processing_time_ms,
        )
        return dto, result.http_status()

    async def process_queue(self) -> Tuple[QueueProcessResponseDTO, int]:
        """Drena la cola de propagación local -> remoto."""
        worker = SyncQueueWorker(settings=self.settings, pg_repo=self.pg_repo, remote=self.remote)
        result = await asyncio.to_thread(worker.drain)

        dto = QueueProcessResponseDTO(
            success=result.success,
            processed=result.records_read,
            records_synced=result.records_synced,
            failed=result.records_failed,
            errors=result.errors,
            processing_time_ms=result.processing_time_ms,
        )
        return dto, result.http_status()

    async def full_resync(self) -> Tuple[FullResyncResponseDTO, int]:
        """Copia completa remoto -> local con descubrimiento de tabla."""
        logger.info("Iniciando full resync TabuladorMax -> Gestão")
        coordinator = FullResyncCoordinator(settings=self.settings, pg_repo=self.pg_repo, remote=self.remote)
        result = await asyncio.to_thread(coordinator.run)

        dto = FullResyncResponseDTO(
            success=result.success,
            table_name=coordinator.discovery.table_name if coordinator.discovery else None,
            total_leads=coordinator.total,
            migrated=result.records_synced,
            inserted=result.records_inserted,
            failed=result.records_failed,
            errors=result.errors,
            attempts=coordinator.attempts,
            processing_time_ms=result.processing_time_ms,
        )
        return dto, result.http_status()

    async def check_health(self) -> Tuple[HealthResponseDTO, int]:
        """Health check de ambos stores, heartbeat y alerta opcional."""
        monitor = HealthMonitor(
            settings=self.settings,
            pg_repo=self.pg_repo,
            remote=self.remote,
            notifier=self.notifier,
        )
        started = time.monotonic()
        report = await monitor.check()

        dto = HealthResponseDTO(
            success=report.status is not HealthStatus.ERROR,
            status=report.status.value,
            timestamp=report.checked_at,
            checks={name: ProbeDTO(**probe.to_dict()) for name, probe in report.checks.items()},
            queue=report.queue,
            heartbeat_written=report.heartbeat_written,
            alert_sent=report.alert_sent,
            error=report.error,
            errors=[f"{name}: {probe.message}" for name, probe in report.checks.items() if not probe.ok],
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        return dto, report.http_status()

    async def geo_enrich(self, limit: int) -> Tuple[GeoEnrichResponseDTO, int]:
        """
        Completa coordenadas de leads locales.

        Sin store local (configuración o conexión) la corrida falla en setup:
        success=False y status 500, con el mismo contrato que el resto.
        """
        started = time.monotonic()
        enricher = GeoEnricher(
            settings=self.settings,
            pg_repo=self.pg_repo,
            geocoder=self.geocoder or build_geocoder(self.settings),
        )
        try:
            result = await asyncio.to_thread(enricher.run, limit)
        except SyncException as e:
            logger.error(f"Geo-enrich falló en setup: {e.message}")
            dto = GeoEnrichResponseDTO(
                success=False,
                errors=[e.message],
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )
            return dto, 500

        dto = GeoEnrichResponseDTO(
            processed=result.processed,
            geocoded=result.geocoded,
            from_cache=result.from_cache,
            total=result.total,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        return dto, 200
