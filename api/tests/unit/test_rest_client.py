"""
Tests del cliente PostgREST: filtros, backoff y clasificación de errores.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import requests

from scouter_sync.infrastructure.sync.rest_client import (
    RemoteCredentials,
    RemoteLeadClient,
    build_in_filter,
    build_incremental_filter,
    build_keyset_filter,
    parse_content_range_total,
)
from scouter_sync.shared.exceptions.sync import (
    ConnectivityError,
    RemoteAccessError,
    SchemaError,
    UpsertConflictError,
)


def _response(status: int, body=None, headers=None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body if body is not None else []).encode("utf-8")
    resp.headers.update(headers or {})
    return resp


class _FakeSession:
    def __init__(self, responses) -> None:
        self._responses = list(responses)
        self.calls: list[dict] = []

    def request(self, **kwargs):
        self.calls.append(kwargs)
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def _client(session: _FakeSession, sleeps: list[float] | None = None) -> RemoteLeadClient:
    return RemoteLeadClient(
        RemoteCredentials(url="https://tabulador.example.co/", service_key="svc"),
        session=session,
        max_retries=2,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
    )


def test_build_incremental_filter_includes_equality() -> None:
    cursor = datetime(2025, 12, 16, 10, 15, 0, tzinfo=timezone.utc)
    assert build_incremental_filter(cursor) == "gte.2025-12-16T10:15:00Z"


def test_build_in_filter_quotes_ids() -> None:
    assert build_in_filter(["a", 'b"c']) == 'in.("a","b\\"c")'


def test_build_keyset_filter_quotes_id() -> None:
    ts = datetime(2025, 12, 16, 10, 15, 0, tzinfo=timezone.utc)
    assert build_keyset_filter(ts, 'a,b') == (
        '(updated_at.gt."2025-12-16T10:15:00Z",and(updated_at.eq."2025-12-16T10:15:00Z",id.gt."a,b"))'
    )


def test_parse_content_range_total() -> None:
    assert parse_content_range_total("0-0/123") == 123
    assert parse_content_range_total("*/0") == 0
    assert parse_content_range_total("0-0/*") is None
    assert parse_content_range_total(None) is None


def test_fetch_changed_sends_auth_and_incremental_params() -> None:
    session = _FakeSession([_response(200, [{"id": "1"}])])
    cursor = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

    rows = _client(session).fetch_changed("leads", since=cursor, limit=50)

    assert rows == [{"id": "1"}]
    call = session.calls[0]
    assert call["url"] == "https://tabulador.example.co/rest/v1/leads"
    assert call["headers"]["apikey"] == "svc"
    assert call["headers"]["Authorization"] == "Bearer svc"
    params = dict(call["params"])
    assert params["updated_at"] == "gte.2025-03-10T09:00:00Z"
    assert params["order"] == "updated_at.asc,id.asc"
    assert params["limit"] == "50"
    assert "offset" not in params
    assert "or" not in params


def test_fetch_changed_next_page_uses_keyset() -> None:
    session = _FakeSession([_response(200, [])])
    cursor = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
    last = datetime(2025, 3, 10, 9, 30, 0, 250000, tzinfo=timezone.utc)

    _client(session).fetch_changed("leads", since=cursor, limit=50, after=(last, "lead-9"))

    params = dict(session.calls[0]["params"])
    assert params["updated_at"] == "gte.2025-03-10T09:00:00Z"
    assert params["or"] == (
        '(updated_at.gt."2025-03-10T09:30:00.250000Z",'
        'and(updated_at.eq."2025-03-10T09:30:00.250000Z",id.gt."lead-9"))'
    )


def test_count_reads_exact_total_from_content_range() -> None:
    session = _FakeSession([_response(200, [{"id": "1"}], {"Content-Range": "0-0/4821"})])

    assert _client(session).count('"Leads"') == 4821
    assert session.calls[0]["headers"]["Prefer"] == "count=exact"
    assert session.calls[0]["url"].endswith('/rest/v1/"Leads"')


def test_upsert_uses_merge_duplicates_on_id() -> None:
    session = _FakeSession([_response(201)])

    _client(session).upsert("leads", [{"id": "1", "nome": "Ana"}])

    call = session.calls[0]
    assert call["method"] == "POST"
    assert ("on_conflict", "id") in call["params"]
    assert "resolution=merge-duplicates" in call["headers"]["Prefer"]
    assert call["json"] == [{"id": "1", "nome": "Ana"}]


def test_upsert_of_empty_batch_does_nothing() -> None:
    session = _FakeSession([])
    _client(session).upsert("leads", [])
    assert session.calls == []


def test_retries_429_honoring_retry_after() -> None:
    sleeps: list[float] = []
    session = _FakeSession([
        _response(429, {"message": "slow down"}, {"Retry-After": "3"}),
        _response(503, {"message": "unavailable"}),
        _response(200, []),
    ])

    assert _client(session, sleeps).fetch_page("leads", offset=0, limit=10) == []
    assert len(session.calls) == 3
    assert sleeps[0] == 3.0
    assert sleeps[1] > 0


def test_exhausted_retries_raise_connectivity_error() -> None:
    session = _FakeSession([_response(502), _response(502), _response(502)])

    with pytest.raises(ConnectivityError):
        _client(session).count("leads")


def test_network_error_is_connectivity_error() -> None:
    session = _FakeSession([requests.ConnectionError("Name or service not known")])

    with pytest.raises(ConnectivityError) as exc:
        _client(session).count("leads")
    assert exc.value.store == "remote"


@pytest.mark.parametrize(
    "status, body, expected, code",
    [
        (401, {"message": "JWT expired"}, RemoteAccessError, "401"),
        (403, {"code": "42501", "message": "permission denied"}, RemoteAccessError, "42501"),
        (404, {"code": "PGRST205", "message": "Could not find the table"}, SchemaError, "PGRST205"),
        (400, {"code": "42P01", "message": "relation does not exist"}, SchemaError, "42P01"),
    ],
)
def test_error_classification_on_reads(status, body, expected, code) -> None:
    session = _FakeSession([_response(status, body)])

    with pytest.raises(expected) as exc:
        _client(session).count("Leads")
    assert exc.value.code == code


def test_rejected_write_is_upsert_conflict() -> None:
    session = _FakeSession([_response(400, {"code": "22P02", "message": "invalid input syntax for type integer"})])

    with pytest.raises(UpsertConflictError) as exc:
        _client(session).upsert("leads", [{"id": "1", "idade": "x"}])
    assert exc.value.code == "22P02"


def test_fetch_versions_maps_ids_to_timestamps() -> None:
    session = _FakeSession([_response(200, [{"id": "a", "updated_at": "2025-03-10T09:00:00+00:00"}])])

    versions = _client(session).fetch_versions("leads", ["a", "b"])

    assert versions == {"a": datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)}
    assert dict(session.calls[0]["params"])["id"] == 'in.("a","b")'
