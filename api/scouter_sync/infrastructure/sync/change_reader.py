"""
Lectura incremental de cambios (updated_at >= checkpoint).

Cada store se expone como un ChangeSource: sabe traer páginas de filas
crudas y convertirlas al LeadRecord canónico. El ChangeReader pagina sobre
la fuente y calcula el máximo updated_at visto, que es el candidato a nuevo
checkpoint.

Las páginas siguientes a la primera se piden por keyset
`(updated_at, id) > (último updated_at, último id)`: una fila editada durante
la corrida se mueve al final del orden sin desplazar a las que faltan leer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Optional, Tuple

import psycopg

from scouter_sync.domain.entities.sync import LeadRecord
from scouter_sync.shared.exceptions.sync import RecordMappingError

from .pg_repository import PostgresSyncRepository
from .record_mapper import local_to_canonical, remote_to_canonical
from .rest_client import RemoteLeadClient
from .types import parse_timestamp

# (updated_at, id) de la última fila entregada
Keyset = Tuple[datetime, str]


class ChangeSource(ABC):
    """Store de origen de una dirección de sync."""

    name: str
    tag: str

    @abstractmethod
    def fetch_changed(
        self, *, since: datetime, limit: int, after: Optional[Keyset] = None
    ) -> list[dict[str, Any]]:
        """Página de filas crudas con updated_at >= since y posteriores a `after`, ordenadas asc."""

    @abstractmethod
    def to_canonical(self, raw: dict[str, Any]) -> LeadRecord:
        """Convierte una fila cruda de este store."""


class LocalChangeSource(ChangeSource):
    name = "local"

    def __init__(self, repo: PostgresSyncRepository, conn: psycopg.Connection, *, tag: str) -> None:
        self._repo = repo
        self._conn = conn
        self.tag = tag

    def fetch_changed(
        self, *, since: datetime, limit: int, after: Optional[Keyset] = None
    ) -> list[dict[str, Any]]:
        return self._repo.fetch_changed_leads(self._conn, since=since, limit=limit, after=after)

    def to_canonical(self, raw: dict[str, Any]) -> LeadRecord:
        return local_to_canonical(raw)


class RemoteChangeSource(ChangeSource):
    name = "remote"

    def __init__(self, client: RemoteLeadClient, *, table: str, tag: str) -> None:
        self._client = client
        self._table = table
        self.tag = tag

    def fetch_changed(
        self, *, since: datetime, limit: int, after: Optional[Keyset] = None
    ) -> list[dict[str, Any]]:
        return self._client.fetch_changed(self._table, since=since, limit=limit, after=after)

    def to_canonical(self, raw: dict[str, Any]) -> LeadRecord:
        return remote_to_canonical(raw)


def max_updated_at(rows: list[dict[str, Any]], current: Optional[datetime] = None) -> Optional[datetime]:
    """Máximo updated_at parseable de las filas (las filas malformadas se ignoran)."""
    result = current
    for row in rows:
        try:
            ts = parse_timestamp(row.get("updated_at"))
        except (TypeError, ValueError):
            continue
        if ts is not None and (result is None or ts > result):
            result = ts
    return result


def page_keyset(page: list[dict[str, Any]]) -> Keyset:
    """
    Keyset de la última fila de una página.

    Sin un updated_at válido no hay forma de pedir la página siguiente sin
    saltear filas, así que la corrida se corta.
    """
    last = page[-1]
    record_id = last.get("id")
    try:
        ts = parse_timestamp(last.get("updated_at"))
    except (TypeError, ValueError):
        ts = None
    if ts is None or record_id is None:
        raise RecordMappingError(
            None if record_id is None else str(record_id),
            "updated_at inválido en el borde de página",
        )
    return ts, str(record_id)


@dataclass(frozen=True)
class ChangeBatch:
    rows: list[dict[str, Any]]
    max_updated_at: Optional[datetime]


class ChangeReader:
    """
    Pagina una fuente desde el checkpoint.

    El filtro es inclusivo (>=): los registros con el mismo timestamp que el
    checkpoint se vuelven a entregar, lo cual es seguro porque el UPSERT es
    idempotente. Cualquier error del store se propaga (fatal para la corrida).
    """

    def __init__(self, source: ChangeSource, *, page_size: int) -> None:
        self._source = source
        self._page_size = page_size

    @property
    def source(self) -> ChangeSource:
        return self._source

    def iter_pages(self, since: datetime) -> Iterator[list[dict[str, Any]]]:
        after: Optional[Keyset] = None
        while True:
            page = self._source.fetch_changed(since=since, limit=self._page_size, after=after)
            if page:
                yield page
            if len(page) < self._page_size:
                break
            after = page_keyset(page)

    def read_changes(self, since: datetime) -> ChangeBatch:
        """Lee todas las páginas de una vez (útil para lotes chicos y tests)."""
        rows: list[dict[str, Any]] = []
        for page in self.iter_pages(since):
            rows.extend(page)
        return ChangeBatch(rows=rows, max_updated_at=max_updated_at(rows))
