"""
Health check de la sincronización.

Prueba conectividad y latencia contra ambos stores con una consulta de
conteo barata, clasifica el estado global, escribe el heartbeat en
sync_status (fila `health_check`) y opcionalmente dispara una alerta.
No modifica leads ni items de la cola.
"""

from __future__ import annotations

import asyncio
import html
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import psycopg
from loguru import logger

from scouter_sync.core.config import SyncSettings
from scouter_sync.domain.entities.sync import HealthStatus
from scouter_sync.shared.exceptions.sync import SyncException

from .notifier import AlertNotifier
from .pg_repository import PostgresSyncRepository
from .rest_client import RemoteLeadClient
from .types import utc_now


@dataclass
class ProbeResult:
    name: str
    ok: bool
    message: str
    latency_ms: Optional[int] = None
    record_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok" if self.ok else "error",
            "message": self.message,
            "latency_ms": self.latency_ms,
            "record_count": self.record_count,
        }


@dataclass
class HealthReport:
    status: HealthStatus
    checked_at: datetime
    checks: dict[str, ProbeResult]
    queue: dict[str, int] = field(default_factory=dict)
    heartbeat_written: bool = False
    alert_sent: bool = False
    error: Optional[str] = None

    def http_status(self) -> int:
        if self.status is HealthStatus.OK:
            return 200
        if self.status is HealthStatus.DEGRADED:
            return 207
        return 500


def classify(checks: list[ProbeResult]) -> HealthStatus:
    """ok si todos pasan, degraded si pasa alguno, error si no pasa ninguno."""
    passed = sum(1 for c in checks if c.ok)
    if passed == len(checks):
        return HealthStatus.OK
    if passed == 0:
        return HealthStatus.ERROR
    return HealthStatus.DEGRADED


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class HealthMonitor:
    REMOTE_CHECK = "tabulador_connection"
    LOCAL_CHECK = "gestao_connection"

    def __init__(
        self,
        *,
        settings: SyncSettings,
        pg_repo: PostgresSyncRepository,
        remote: RemoteLeadClient,
        notifier: Optional[AlertNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._pg = pg_repo
        self._remote = remote
        self._notifier = notifier
        self._clock = clock

    async def check(self) -> HealthReport:
        """
        Ejecuta las pruebas (I/O bloqueante en un thread) y, si corresponde,
        envía la alerta.
        """
        report = await asyncio.to_thread(self.run_probes)
        if report.status is not HealthStatus.OK:
            report.alert_sent = await self._alert(report)
        return report

    def run_probes(self) -> HealthReport:
        checked_at = self._clock()
        remote = self._probe_remote()
        local, queue = self._probe_local()
        status = classify([remote, local])

        failed = [c for c in (remote, local) if not c.ok]
        error = "; ".join(f"{c.name}: {c.message}" for c in failed) or None

        report = HealthReport(
            status=status,
            checked_at=checked_at,
            checks={remote.name: remote, local.name: local},
            queue=queue,
            error=error,
        )
        if local.ok:
            report.heartbeat_written = self._write_heartbeat(report)

        log = logger.info if status is HealthStatus.OK else logger.warning
        log(
            f"Health check: {status.value} "
            f"(remoto {remote.latency_ms} ms, local {local.latency_ms} ms)"
        )
        return report

    def _probe_remote(self) -> ProbeResult:
        try:
            self._settings.require_remote()
        except SyncException as e:
            return ProbeResult(self.REMOTE_CHECK, False, e.message)

        started = time.monotonic()
        try:
            count = self._remote.count(self._settings.remote_table)
        except SyncException as e:
            return ProbeResult(self.REMOTE_CHECK, False, f"Falló la conexión: {e.message}", _elapsed_ms(started))
        return ProbeResult(self.REMOTE_CHECK, True, "Conectado", _elapsed_ms(started), count)

    def _probe_local(self) -> tuple[ProbeResult, dict[str, int]]:
        try:
            self._settings.require_local()
        except SyncException as e:
            return ProbeResult(self.LOCAL_CHECK, False, e.message), {}

        started = time.monotonic()
        try:
            with self._pg.connect() as conn:
                count = self._pg.count_leads(conn)
                latency = _elapsed_ms(started)
                self._pg.ensure_sync_tables(conn)
                queue = self._pg.queue.count_by_status(conn)
        except (SyncException, psycopg.Error) as e:
            message = e.message if isinstance(e, SyncException) else str(e)
            return ProbeResult(self.LOCAL_CHECK, False, f"Falló la conexión: {message}", _elapsed_ms(started)), {}
        return ProbeResult(self.LOCAL_CHECK, True, "Conectado", latency, count), queue

    def _write_heartbeat(self, report: HealthReport) -> bool:
        remote = report.checks[self.REMOTE_CHECK]
        try:
            with self._pg.connect() as conn:
                self._pg.write_heartbeat(
                    conn,
                    status=report.status.value,
                    error=report.error,
                    checked_at=report.checked_at,
                    total_records=remote.record_count or 0,
                )
            return True
        except (SyncException, psycopg.Error) as e:
            logger.error(f"No se pudo escribir el heartbeat: {e}")
            return False

    async def _alert(self, report: HealthReport) -> bool:
        if not self._settings.alerts_enabled or self._notifier is None:
            return False

        # parse_mode=HTML: todo texto variable va escapado
        lines = [f"<b>Sync {report.status.value.upper()}</b>", html.escape(report.checked_at.isoformat())]
        for name, probe in report.checks.items():
            status = "ok" if probe.ok else "error"
            lines.append(f"{html.escape(name)}: {status} - {html.escape(str(probe.message))}")
        failed_items = report.queue.get("failed")
        if failed_items:
            lines.append(f"Cola: {failed_items} items en failed")
        return await self._notifier.send_message("\n".join(lines))
