"""
UPSERT idempotente por lotes hacia un store destino.

- Cada lote es una sola operación conflict-resolving keyed por id.
- Un lote fallido se registra y se cuenta; el siguiente lote se intenta igual.
- Los lotes ya escritos no se revierten si uno posterior falla.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

import psycopg
from loguru import logger

from scouter_sync.domain.entities.sync import LeadRecord
from scouter_sync.shared.exceptions.sync import SyncException

from .pg_repository import PostgresSyncRepository
from .record_mapper import canonical_to_local, canonical_to_remote
from .rest_client import RemoteLeadClient
from .types import ensure_utc


@dataclass(frozen=True)
class WriteOutcome:
    """Resultado de escribir un lote en el destino."""

    inserted: int
    stale_ids: tuple[str, ...] = ()


class LeadDestination(ABC):
    """Store destino de una dirección de sync."""

    name: str
    tag: str

    @abstractmethod
    def prepare(self, record: LeadRecord) -> dict[str, Any]:
        """LeadRecord -> fila cruda del destino."""

    @abstractmethod
    def write(self, rows: list[dict[str, Any]]) -> WriteOutcome:
        """Aplica el lote completo o levanta SyncException."""


class LocalLeadDestination(LeadDestination):
    name = "local"

    def __init__(self, repo: PostgresSyncRepository, conn: psycopg.Connection, *, tag: str) -> None:
        self._repo = repo
        self._conn = conn
        self.tag = tag

    def prepare(self, record: LeadRecord) -> dict[str, Any]:
        return canonical_to_local(record)

    def write(self, rows: list[dict[str, Any]]) -> WriteOutcome:
        # La regla last-write-wins vive en el ON CONFLICT ... WHERE del repositorio
        inserted_ids = self._repo.upsert_leads(self._conn, rows)
        return WriteOutcome(inserted=len(inserted_ids))


class RemoteLeadDestination(LeadDestination):
    """
    PostgREST no permite un UPSERT condicional, así que antes de escribir se
    consultan las versiones existentes: las filas cuyo updated_at remoto es
    más nuevo se omiten (last-write-wins) y las ausentes cuentan como insert.
    """

    name = "remote"

    def __init__(self, client: RemoteLeadClient, *, table: str, tag: str) -> None:
        self._client = client
        self._table = table
        self.tag = tag

    def prepare(self, record: LeadRecord) -> dict[str, Any]:
        return canonical_to_remote(record)

    def write(self, rows: list[dict[str, Any]]) -> WriteOutcome:
        versions = self._client.fetch_versions(self._table, [str(r["id"]) for r in rows])

        fresh: list[dict[str, Any]] = []
        stale: list[str] = []
        for row in rows:
            remote_ts = versions.get(str(row["id"]))
            row_ts = row.get("updated_at")
            if remote_ts is not None and row_ts is not None and remote_ts > ensure_utc(row_ts):
                stale.append(str(row["id"]))
            else:
                fresh.append(_json_ready(row))

        self._client.upsert(self._table, fresh)
        inserted = sum(1 for row in fresh if str(row["id"]) not in versions)
        return WriteOutcome(inserted=inserted, stale_ids=tuple(stale))


def _json_ready(row: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in row.items()}


def dedupe_newest(records: Iterable[LeadRecord]) -> list[LeadRecord]:
    """
    Colapsa ids repetidos quedándose con el updated_at más nuevo.
    Un UPSERT de un solo statement no puede tocar la misma fila dos veces.
    """
    newest: dict[str, LeadRecord] = {}
    for record in records:
        current = newest.get(record.id)
        if current is None or record.updated_at >= current.updated_at:
            newest[record.id] = record
    return list(newest.values())


@dataclass
class UpsertReport:
    succeeded: int = 0
    inserted: int = 0
    stale: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    synced_ids: list[str] = field(default_factory=list)
    failed_records: list[LeadRecord] = field(default_factory=list)

    @property
    def min_failed_updated_at(self) -> Optional[datetime]:
        if not self.failed_records:
            return None
        return min(r.updated_at for r in self.failed_records)

    def merge(self, other: "UpsertReport") -> None:
        self.succeeded += other.succeeded
        self.inserted += other.inserted
        self.stale += other.stale
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.synced_ids.extend(other.synced_ids)
        self.failed_records.extend(other.failed_records)


class BatchUpserter:
    def __init__(self, destination: LeadDestination, *, batch_size: int = 500) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size debe ser > 0")
        self._destination = destination
        self._batch_size = batch_size

    @property
    def destination(self) -> LeadDestination:
        return self._destination

    def upsert(self, records: Iterable[LeadRecord]) -> UpsertReport:
        report = UpsertReport()
        unique = dedupe_newest(records)

        for start in range(0, len(unique), self._batch_size):
            chunk = unique[start:start + self._batch_size]
            batch_no = start // self._batch_size + 1
            try:
                rows = [self._destination.prepare(r) for r in chunk]
                outcome = self._destination.write(rows)
            except SyncException as e:
                logger.error(
                    f"Lote {batch_no} ({len(chunk)} registros) falló en {self._destination.name}: {e.message}"
                )
                report.failed += len(chunk)
                report.errors.append(f"Lote {batch_no}: {e.message}")
                report.failed_records.extend(chunk)
                continue

            stale = set(outcome.stale_ids)
            report.succeeded += len(chunk)
            report.inserted += outcome.inserted
            report.stale += len(stale)
            report.synced_ids.extend(r.id for r in chunk if r.id not in stale)
            logger.debug(
                f"Lote {batch_no} aplicado en {self._destination.name}: "
                f"{len(chunk)} registros, {outcome.inserted} nuevos, {len(stale)} omitidos por versión"
            )

        return report
