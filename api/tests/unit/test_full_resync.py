"""
Tests del full resync: descubrimiento de tabla y transferencia paginada.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from scouter_sync.infrastructure.sync.full_resync import FullResyncCoordinator, discover_table
from scouter_sync.infrastructure.sync.types import FULL_RESYNC_PAIR_ID
from scouter_sync.shared.exceptions.sync import ConnectivityError, TableDiscoveryError

from conftest import NOW, FakeRemoteClient, remote_lead


CANDIDATES = ("leads", '"Leads"', "Leads")


def _remote_with(table_name: str, count: int) -> FakeRemoteClient:
    rows = {
        f"id-{i:03d}": remote_lead(f"id-{i:03d}", NOW - timedelta(days=1, minutes=i))
        for i in range(count)
    }
    return FakeRemoteClient(tables={table_name: rows})


def _coordinator(settings, local_repo, remote, clock) -> FullResyncCoordinator:
    return FullResyncCoordinator(settings=settings, pg_repo=local_repo, remote=remote, clock=clock)


def test_discovery_falls_back_to_quoted_capitalized_name() -> None:
    remote = _remote_with('"Leads"', 7)

    found = discover_table(remote, CANDIDATES)

    assert found.table_name == '"Leads"'
    assert found.total == 7
    assert [a.table_name for a in found.attempts] == ["leads", '"Leads"']
    assert found.attempts[0].success is False
    assert found.attempts[0].error_code == "PGRST205"
    assert found.attempts[1].success is True


def test_discovery_stops_at_first_match() -> None:
    remote = _remote_with("leads", 3)

    found = discover_table(remote, CANDIDATES)

    assert found.table_name == "leads"
    assert remote.count_calls == ["leads"]


def test_discovery_skips_access_denied_candidates() -> None:
    remote = _remote_with("Leads", 2)
    remote.tables["leads"] = {}
    remote.denied_tables = {"leads"}

    found = discover_table(remote, CANDIDATES)

    assert found.table_name == "Leads"
    assert found.attempts[0].error_code == "401"


def test_discovery_reports_every_attempt_when_nothing_matches() -> None:
    remote = FakeRemoteClient(tables={"fichas": {}})

    with pytest.raises(TableDiscoveryError) as exc:
        discover_table(remote, CANDIDATES)

    assert [a["table_name"] for a in exc.value.attempts] == list(CANDIDATES)
    assert "Leads" in exc.value.message


def test_discovery_network_error_is_fatal() -> None:
    remote = _remote_with("Leads", 1)
    remote.unreachable = True

    with pytest.raises(ConnectivityError):
        discover_table(remote, CANDIDATES)


def test_full_resync_migrates_every_page(make_settings, local_repo, clock) -> None:
    settings = make_settings(page_size=10, batch_size=4)
    remote = _remote_with('"Leads"', 25)

    coordinator = _coordinator(settings, local_repo, remote, clock)
    result = coordinator.run()

    assert result.http_status() == 200
    assert coordinator.discovery.table_name == '"Leads"'
    assert coordinator.total == 25
    assert result.records_synced == 25
    assert result.records_inserted == 25
    assert len(local_repo.leads) == 25
    assert local_repo.leads["id-000"]["sync_source"] == "tabulador"
    assert local_repo.checkpoints[FULL_RESYNC_PAIR_ID]["last_sync_success"] is True
    assert local_repo.sync_logs[0].metadata["table_name"] == '"Leads"'


def test_full_resync_on_lowercase_table(sync_settings, local_repo, clock) -> None:
    remote = _remote_with("leads", 5)

    coordinator = _coordinator(sync_settings, local_repo, remote, clock)
    result = coordinator.run()

    assert coordinator.discovery.table_name == "leads"
    assert coordinator.total == 5
    assert result.records_synced == 5
    assert len(coordinator.attempts) == 1


def test_failed_page_does_not_stop_following_pages(make_settings, local_repo, clock) -> None:
    settings = make_settings(page_size=10)
    remote = _remote_with("leads", 25)
    remote.failing_offsets = {10}

    result = _coordinator(settings, local_repo, remote, clock).run()

    assert result.success
    assert result.http_status() == 207
    assert result.records_synced == 15
    assert result.records_failed == 10
    assert any(e.startswith("Página 2") for e in result.errors)


def test_full_resync_is_idempotent(sync_settings, local_repo, clock) -> None:
    remote = _remote_with("leads", 4)

    _coordinator(sync_settings, local_repo, remote, clock).run()
    snapshot = {k: dict(v) for k, v in local_repo.leads.items()}
    second = _coordinator(sync_settings, local_repo, remote, clock).run()

    assert second.records_inserted == 0
    assert local_repo.leads == snapshot


def test_rows_without_updated_at_use_migration_time(sync_settings, local_repo, clock) -> None:
    remote = FakeRemoteClient(tables={"leads": {"x": {"id": "x", "nome": "Sem data", "updated_at": None}}})

    result = _coordinator(sync_settings, local_repo, remote, clock).run()

    assert result.records_synced == 1
    assert local_repo.leads["x"]["updated_at"] == NOW


def test_discovery_failure_is_fatal_with_diagnostics(sync_settings, local_repo, clock) -> None:
    remote = FakeRemoteClient(tables={})

    coordinator = _coordinator(sync_settings, local_repo, remote, clock)
    result = coordinator.run()

    assert result.http_status() == 500
    assert len(coordinator.attempts) == 3
    assert local_repo.checkpoints[FULL_RESYNC_PAIR_ID]["last_sync_success"] is False
