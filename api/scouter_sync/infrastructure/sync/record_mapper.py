"""
Mapeo entre las columnas crudas de cada sistema y el LeadRecord canónico.

Este es el punto donde se controla:
- qué columnas existen en cada lado (nombres en portugués)
- cómo se transforman los valores (idade es text en local, integer en remoto)
- qué campos son obligatorios

Funciones puras: sin I/O, deterministas.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from scouter_sync.domain.entities.sync import LeadRecord
from scouter_sync.shared.exceptions.sync import RecordMappingError

from .types import FieldMapping, ensure_utc, parse_timestamp


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"valor booleano no es una edad: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    return int(float(str(value).strip().replace(",", ".")))


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"valor booleano no es numérico: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace("R$", "").strip()
    if "," in text:
        # formato brasileño: 1.234,56
        text = text.replace(".", "").replace(",", ".")
    return float(text)


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes", "sim")
    return bool(value)


def _age_to_text(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


def _timestamp_out(value: Any) -> Any:
    return None if value is None else ensure_utc(value)


# Columnas compartidas por ambos sistemas (salvo `idade`, que difiere de tipo)
_COMMON_MAPPINGS: tuple[FieldMapping, ...] = (
    FieldMapping("nome", "name", _to_text),
    FieldMapping("telefone", "phone", _to_text),
    FieldMapping("email", "email", _to_text),
    FieldMapping("projeto", "project", _to_text),
    FieldMapping("scouter", "scouter", _to_text),
    FieldMapping("supervisor", "supervisor", _to_text),
    FieldMapping("localizacao", "location", _to_text),
    FieldMapping("latitude", "latitude", _to_float),
    FieldMapping("longitude", "longitude", _to_float),
    FieldMapping("local_da_abordagem", "approach_place", _to_text),
    FieldMapping("criado", "created_at", parse_timestamp, _timestamp_out),
    FieldMapping("valor_ficha", "ficha_value", _to_float),
    FieldMapping("etapa", "stage", _to_text),
    FieldMapping("ficha_confirmada", "confirmed", _to_text),
    FieldMapping("foto", "photo_url", _to_text),
    FieldMapping("deleted", "deleted", _to_bool),
    FieldMapping("sync_source", "source", _to_text),
    FieldMapping("last_synced_at", "last_synced_at", parse_timestamp, _timestamp_out),
    FieldMapping("updated_at", "updated_at", parse_timestamp, _timestamp_out, required=True),
)

LOCAL_FIELD_MAPPINGS: tuple[FieldMapping, ...] = _COMMON_MAPPINGS + (
    FieldMapping("idade", "age", _to_int, _age_to_text),
)

REMOTE_FIELD_MAPPINGS: tuple[FieldMapping, ...] = _COMMON_MAPPINGS + (
    FieldMapping("idade", "age", _to_int),
)


def to_canonical(
    raw: dict[str, Any],
    *,
    mappings: Iterable[FieldMapping],
    keep_raw: bool = False,
) -> LeadRecord:
    """
    Convierte una fila cruda en LeadRecord.

    Levanta RecordMappingError si falta el id, falta un campo requerido o
    algún valor no se puede transformar.
    """
    record_id = raw.get("id")
    if record_id is None or str(record_id).strip() == "":
        raise RecordMappingError(None, "registro sin 'id'")
    record_id = str(record_id)

    values: dict[str, Any] = {"id": record_id}
    for m in mappings:
        value = raw.get(m.source_field)
        if value is None and m.required:
            raise RecordMappingError(record_id, f"falta campo requerido '{m.source_field}'")
        try:
            values[m.canonical_field] = m.to_canonical(value) if m.to_canonical else value
        except (TypeError, ValueError) as e:
            raise RecordMappingError(
                record_id, f"valor inválido en '{m.source_field}': {value!r} ({e})"
            ) from e

    if values.get("deleted") is None:
        values["deleted"] = False
    if keep_raw:
        values["raw"] = dict(raw)
    return LeadRecord(**values)


def from_canonical(
    record: LeadRecord,
    *,
    mappings: Iterable[FieldMapping],
    include_raw: bool = False,
) -> dict[str, Any]:
    """Convierte un LeadRecord en una fila cruda lista para UPSERT."""
    row: dict[str, Any] = {"id": record.id}
    for m in mappings:
        value = getattr(record, m.canonical_field)
        row[m.source_field] = m.from_canonical(value) if m.from_canonical else value
    if include_raw:
        row["raw"] = record.raw
    return row


def local_to_canonical(raw: dict[str, Any]) -> LeadRecord:
    return to_canonical(raw, mappings=LOCAL_FIELD_MAPPINGS)


def remote_to_canonical(raw: dict[str, Any]) -> LeadRecord:
    # El snapshot remoto se conserva en la columna local `raw`
    return to_canonical(raw, mappings=REMOTE_FIELD_MAPPINGS, keep_raw=True)


def canonical_to_local(record: LeadRecord) -> dict[str, Any]:
    return from_canonical(record, mappings=LOCAL_FIELD_MAPPINGS, include_raw=True)


def canonical_to_remote(record: LeadRecord) -> dict[str, Any]:
    return from_canonical(record, mappings=REMOTE_FIELD_MAPPINGS)


@dataclass(frozen=True)
class MappingOutcome:
    """Resultado etiquetado del mapeo de un lote: registros válidos + errores."""

    records: list[LeadRecord]
    errors: list[str]

    @property
    def failed(self) -> int:
        return len(self.errors)


def map_rows(
    rows: Iterable[dict[str, Any]],
    convert: Callable[[dict[str, Any]], LeadRecord],
) -> MappingOutcome:
    """
    Mapea un lote de filas. Las filas malformadas se descartan y se reportan
    como error; nunca abortan el lote.
    """
    records: list[LeadRecord] = []
    errors: list[str] = []
    for row in rows:
        try:
            records.append(convert(row))
        except RecordMappingError as e:
            errors.append(e.message)
    return MappingOutcome(records=records, errors=errors)
