from __future__ import annotations

from datetime import datetime, timedelta, timezone

from scouter_sync.domain.entities.sync import LeadRecord
from scouter_sync.infrastructure.sync.provenance import (
    filter_echoes,
    is_echo,
    is_unchanged_since_sync,
    stamp_provenance,
)


NOW = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
WINDOW_MS = 600_000


def _record(record_id: str, *, source=None, synced_ago_s=None, updated_ago_s=3600) -> LeadRecord:
    return LeadRecord(
        id=record_id,
        updated_at=NOW - timedelta(seconds=updated_ago_s),
        source=source,
        last_synced_at=None if synced_ago_s is None else NOW - timedelta(seconds=synced_ago_s),
    )


def test_record_written_by_destination_inside_window_is_suppressed() -> None:
    record = _record("r1", source="gestao", synced_ago_s=30)
    assert is_echo(record, destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)


def test_record_outside_window_is_not_an_echo() -> None:
    record = _record("r1", source="gestao", synced_ago_s=601)
    assert not is_echo(record, destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)


def test_record_from_other_system_is_never_an_echo() -> None:
    record = _record("r1", source="tabulador", synced_ago_s=1)
    assert not is_echo(record, destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)


def test_record_without_last_synced_at_is_propagated() -> None:
    record = _record("r1", source="gestao")
    assert not is_echo(record, destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)
    assert not is_unchanged_since_sync(record)


def test_unchanged_since_sync_compares_updated_at_with_last_synced_at() -> None:
    assert is_unchanged_since_sync(_record("same", synced_ago_s=3600, updated_ago_s=3600))
    assert is_unchanged_since_sync(_record("older", synced_ago_s=60, updated_ago_s=3600))
    assert not is_unchanged_since_sync(_record("edited", synced_ago_s=3600, updated_ago_s=60))


def test_filter_splits_kept_and_suppressed() -> None:
    records = [
        _record("echo", source="gestao", synced_ago_s=10, updated_ago_s=5),
        _record("old-echo", source="gestao", synced_ago_s=3600),
        _record("edited", source="gestao", synced_ago_s=3600, updated_ago_s=120),
        _record("fresh", source=None),
    ]
    result = filter_echoes(records, destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)

    assert [r.id for r in result.kept] == ["edited", "fresh"]
    assert [r.id for r in result.suppressed] == ["echo", "old-echo"]


def test_boundary_record_stays_suppressed_after_window() -> None:
    # Releído por el filtro >= horas después, sin cambios desde su propagación
    record = _record("r1", source="gestao", synced_ago_s=7200, updated_ago_s=7300)
    result = filter_echoes([record], destination_tag="gestao", loop_window_ms=WINDOW_MS, now=NOW)
    assert result.suppressed == [record]


def test_window_is_a_parameter() -> None:
    record = _record("r1", source="gestao", synced_ago_s=30, updated_ago_s=10)
    result = filter_echoes([record], destination_tag="gestao", loop_window_ms=10_000, now=NOW)
    assert result.kept == [record]


def test_stamp_provenance_keeps_updated_at() -> None:
    record = _record("r1")
    stamped = stamp_provenance(record, origin_tag="tabulador", synced_at=NOW)

    assert stamped.source == "tabulador"
    assert stamped.last_synced_at == NOW
    assert stamped.updated_at == record.updated_at
