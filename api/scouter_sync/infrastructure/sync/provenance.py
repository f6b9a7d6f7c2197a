"""
Filtro de procedencia (anti-eco).

Un registro que el sistema A acaba de escribir en B lleva en B
`sync_source = A` y `last_synced_at` reciente. Cuando el poller de B -> A lo
vuelve a leer (su updated_at es >= checkpoint), este filtro lo descarta
mientras siga dentro de la ventana, evitando el ping-pong infinito.

Pasada la ventana, un registro solo vuelve a propagarse si cambió después
de su última propagación (`updated_at > last_synced_at`). El borde que el
filtro `>=` relee en cada corrida no es un cambio nuevo.

`updated_at` es el reloj de detección de cambios y `last_synced_at` la marca
de propagación; la única comparación entre ambos es la de arriba.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from scouter_sync.domain.entities.sync import LeadRecord

from .types import ensure_utc, utc_now


def is_echo(
    record: LeadRecord,
    *,
    destination_tag: str,
    loop_window_ms: int,
    now: datetime,
) -> bool:
    """
    True si el registro fue escrito por propagación desde `destination_tag`
    hace menos de `loop_window_ms`.
    """
    if record.source != destination_tag or record.last_synced_at is None:
        return False
    age = ensure_utc(now) - ensure_utc(record.last_synced_at)
    return age < timedelta(milliseconds=loop_window_ms)


def is_unchanged_since_sync(record: LeadRecord) -> bool:
    """
    True si el registro no cambió desde su última propagación, en cualquier
    dirección: la copia escrita conserva el updated_at del origen y el origen
    queda marcado con last_synced_at al completar el envío.
    """
    if record.last_synced_at is None:
        return False
    return ensure_utc(record.updated_at) <= ensure_utc(record.last_synced_at)


@dataclass(frozen=True)
class FilterResult:
    kept: list[LeadRecord]
    suppressed: list[LeadRecord]


def filter_echoes(
    records: Iterable[LeadRecord],
    *,
    destination_tag: str,
    loop_window_ms: int,
    now: Optional[datetime] = None,
) -> FilterResult:
    """
    Separa los registros en propagables y suprimidos.

    `destination_tag` es la etiqueta del sistema hacia el que se va a
    escribir: los registros que ese mismo sistema acaba de propagar no
    vuelven, y tampoco los que no cambiaron desde la última propagación.
    """
    now = now or utc_now()
    kept: list[LeadRecord] = []
    suppressed: list[LeadRecord] = []
    for record in records:
        if is_echo(record, destination_tag=destination_tag, loop_window_ms=loop_window_ms, now=now) \
                or is_unchanged_since_sync(record):
            suppressed.append(record)
        else:
            kept.append(record)
    return FilterResult(kept=kept, suppressed=suppressed)


def stamp_provenance(record: LeadRecord, *, origin_tag: str, synced_at: datetime) -> LeadRecord:
    """
    Marca la copia que se va a escribir en el otro sistema.

    Conserva `updated_at` del origen; solo cambian `source` y `last_synced_at`.
    """
    return replace(record, source=origin_tag, last_synced_at=ensure_utc(synced_at))
