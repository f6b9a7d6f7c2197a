"""
Tests del CLI de sincronización: mismo contrato que los endpoints y código
de salida derivado del status (0 / 1 / 2).
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from scouter_sync.application.dto.sync_dto import GeoEnrichResponseDTO
from scouter_sync.application.use_cases.sync_use_cases import SyncUseCases
from scouter_sync.shared.exceptions.sync import ConnectivityError, SyncConfigError
from scripts import run_sync


@pytest.fixture(autouse=True)
def _no_log_files(monkeypatch) -> None:
    monkeypatch.setattr(run_sync.AuditLogger, "initialize", classmethod(lambda cls: None))


@pytest.mark.asyncio
async def test_geo_enrich_command_passes_status_through() -> None:
    use_cases = AsyncMock()
    use_cases.geo_enrich = AsyncMock(
        return_value=(GeoEnrichResponseDTO(success=False, errors=["local: connection refused"]), 500)
    )

    body, status = await run_sync.run_command("geo-enrich", use_cases, limit=5)

    assert status == 500
    assert body["success"] is False
    assert body["errors"] == ["local: connection refused"]
    use_cases.geo_enrich.assert_awaited_once_with(5)


def test_geo_enrich_without_local_store_exits_2(monkeypatch, capsys, sync_settings, local_repo, remote_client) -> None:
    local_repo.unreachable = True
    monkeypatch.setattr(run_sync, "get_sync_settings", lambda: sync_settings)
    monkeypatch.setattr(
        run_sync,
        "SyncUseCases",
        lambda settings: SyncUseCases(settings, pg_repo=local_repo, remote=remote_client, notifier=AsyncMock()),
    )

    code = run_sync.main(["geo-enrich", "--limit", "10"])

    assert code == 2
    assert '"success": false' in capsys.readouterr().out


def test_setup_error_outside_a_run_exits_2(monkeypatch, capsys) -> None:
    def _missing_settings():
        raise SyncConfigError("Falta DATABASE_URL", missing=["DATABASE_URL"])

    monkeypatch.setattr(run_sync, "get_sync_settings", _missing_settings)

    code = run_sync.main(["health"])

    assert code == 2
    assert "Falta DATABASE_URL" in capsys.readouterr().out


def test_connectivity_error_escaping_a_command_exits_2(monkeypatch, capsys, sync_settings) -> None:
    use_cases = AsyncMock()
    use_cases.geo_enrich = AsyncMock(side_effect=ConnectivityError("local", "timeout"))
    monkeypatch.setattr(run_sync, "get_sync_settings", lambda: sync_settings)
    monkeypatch.setattr(run_sync, "SyncUseCases", lambda settings: use_cases)

    code = run_sync.main(["geo-enrich"])

    assert code == 2
    assert "local: timeout" in capsys.readouterr().out
