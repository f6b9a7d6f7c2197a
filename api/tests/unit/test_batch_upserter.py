"""
Tests del UPSERT por lotes: idempotencia, fallas parciales y last-write-wins.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from scouter_sync.domain.entities.sync import LeadRecord
from scouter_sync.infrastructure.sync.batch_upserter import (
    BatchUpserter,
    LocalLeadDestination,
    RemoteLeadDestination,
    dedupe_newest,
)


T0 = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


def _records(*ids: str, updated_at: datetime = T0) -> list[LeadRecord]:
    return [LeadRecord(id=i, updated_at=updated_at, name=f"Lead {i}") for i in ids]


def test_upsert_twice_is_idempotent(local_repo) -> None:
    upserter = BatchUpserter(LocalLeadDestination(local_repo, None, tag="gestao"), batch_size=10)
    records = _records("a", "b", "c")

    first = upserter.upsert(records)
    snapshot = {k: dict(v) for k, v in local_repo.leads.items()}
    second = upserter.upsert(records)

    assert first.succeeded == 3 and first.inserted == 3
    assert second.succeeded == 3 and second.inserted == 0
    assert local_repo.leads == snapshot


def test_failed_batch_does_not_abort_following_batches(local_repo) -> None:
    local_repo.fail_upsert_ids = {"c"}
    upserter = BatchUpserter(LocalLeadDestination(local_repo, None, tag="gestao"), batch_size=2)

    report = upserter.upsert(_records("a", "b", "c", "d", "e"))

    assert local_repo.upsert_calls == [["a", "b"], ["c", "d"], ["e"]]
    assert report.succeeded == 3
    assert report.failed == 2
    assert len(report.errors) == 1
    assert report.errors[0].startswith("Lote 2")
    assert sorted(local_repo.leads) == ["a", "b", "e"]
    assert [r.id for r in report.failed_records] == ["c", "d"]


def test_min_failed_updated_at_is_tracked(local_repo) -> None:
    local_repo.fail_upsert_ids = {"late"}
    upserter = BatchUpserter(LocalLeadDestination(local_repo, None, tag="gestao"), batch_size=1)
    records = _records("early") + _records("late", updated_at=T0 + timedelta(minutes=3))

    report = upserter.upsert(records)

    assert report.min_failed_updated_at == T0 + timedelta(minutes=3)


def test_duplicate_ids_keep_newest_version() -> None:
    older = LeadRecord(id="a", updated_at=T0, name="viejo")
    newer = LeadRecord(id="a", updated_at=T0 + timedelta(seconds=1), name="nuevo")
    assert dedupe_newest([newer, older]) == [newer]


def test_local_upsert_never_overwrites_newer_data(local_repo) -> None:
    upserter = BatchUpserter(LocalLeadDestination(local_repo, None, tag="gestao"))
    upserter.upsert([LeadRecord(id="a", updated_at=T0 + timedelta(hours=1), name="nuevo")])
    upserter.upsert([LeadRecord(id="a", updated_at=T0, name="viejo")])

    assert local_repo.leads["a"]["nome"] == "nuevo"


def test_remote_destination_skips_stale_rows_and_counts_inserts(remote_client, make_remote_lead) -> None:
    remote_client.tables["leads"]["newer"] = make_remote_lead("newer", T0 + timedelta(hours=1), nome="remoto")
    remote_client.tables["leads"]["older"] = make_remote_lead("older", T0 - timedelta(hours=1))
    upserter = BatchUpserter(RemoteLeadDestination(remote_client, table="leads", tag="tabulador"))

    report = upserter.upsert(_records("newer", "older", "brand-new"))

    assert report.succeeded == 3
    assert report.inserted == 1
    assert report.stale == 1
    assert sorted(report.synced_ids) == ["brand-new", "older"]
    assert remote_client.tables["leads"]["newer"]["nome"] == "remoto"
    # Fechas serializadas como ISO para el body JSON
    assert isinstance(remote_client.tables["leads"]["brand-new"]["updated_at"], str)


def test_remote_rejection_counts_whole_batch_as_failed(remote_client) -> None:
    remote_client.fail_upsert = True
    upserter = BatchUpserter(RemoteLeadDestination(remote_client, table="leads", tag="tabulador"))

    report = upserter.upsert(_records("a", "b"))

    assert report.succeeded == 0
    assert report.failed == 2
    assert report.errors[0].startswith("Lote 1: remote: 400")


def test_batch_size_must_be_positive(local_repo) -> None:
    with pytest.raises(ValueError):
        BatchUpserter(LocalLeadDestination(local_repo, None, tag="gestao"), batch_size=0)
