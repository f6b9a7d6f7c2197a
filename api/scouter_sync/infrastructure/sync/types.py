"""
Tipos y utilidades puras del motor de sync.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

# Ids de par direccional (una fila de sync_status cada uno)
PULL_PAIR_ID = "tabulador_to_gestao"
PUSH_PAIR_ID = "gestao_to_tabulador"
FULL_RESYNC_PAIR_ID = "full_resync:tabulador_to_gestao"
HEARTBEAT_PAIR_ID = "health_check"


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    PostgREST devuelve ISO8601 con zona y psycopg devuelve timestamptz aware;
    aun así normalizamos para comparar de forma consistente.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convierte un valor de timestamp (datetime o string ISO8601) a UTC aware.

    Retorna None para None/"" y levanta ValueError si el string no parsea.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip().replace("Z", "+00:00")
    # Python < 3.11 no acepta fracciones con menos de 6 digitos
    if "." in text:
        head, _, tail = text.partition(".")
        frac = tail
        zone = ""
        for sep in ("+", "-"):
            if sep in tail:
                frac, _, rest = tail.partition(sep)
                zone = sep + rest
                break
        text = f"{head}.{frac[:6].ljust(6, '0')}{zone}"
    return ensure_utc(datetime.fromisoformat(text))


def isoformat_z(dt: datetime) -> str:
    """Serializa datetime a ISO8601 UTC con sufijo 'Z' (filtros PostgREST)."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldMapping:
    """
    Define el mapeo de una columna de un sistema a un campo canónico.

    - source_field: nombre de la columna en el sistema (nome, telefone...)
    - canonical_field: atributo de LeadRecord (name, phone...)
    - to_canonical: transformación opcional al leer
    - from_canonical: transformación opcional al escribir
    - required: si True, el valor debe existir (si falta se levanta error)
    """

    source_field: str
    canonical_field: str
    to_canonical: Optional[Transform] = None
    from_canonical: Optional[Transform] = None
    required: bool = False
