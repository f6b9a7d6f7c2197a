"""
Cliente mínimo de la API PostgREST de TabuladorMax (sin SDKs externos).

Requisitos cubiertos:
- requests
- paginación por keyset (incremental) y por limit/offset (full resync)
- rate-limit/backoff (429, 5xx)
- lectura incremental `updated_at >= cursor`
- UPSERT por id (`on_conflict=id`, merge-duplicates)
- clasificación de errores: red, esquema, acceso, conflicto
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import requests
from loguru import logger

from scouter_sync.shared.exceptions.sync import (
    ConnectivityError,
    RemoteAccessError,
    SchemaError,
    UpsertConflictError,
)

from .types import isoformat_z, parse_timestamp

STORE_NAME = "remote"

# Códigos PostgREST / Postgres que indican tabla o columna inexistente
SCHEMA_ERROR_CODES = {"PGRST205", "PGRST204", "42P01", "42703"}


@dataclass(frozen=True)
class RemoteCredentials:
    url: str
    service_key: str


def build_incremental_filter(cursor: datetime) -> str:
    """
    Filtro PostgREST para traer registros incrementales.

    Incluye igualdad (gte) para ser tolerante a cortes con timestamps
    repetidos. La idempotencia queda asegurada por el UPSERT en destino.
    """
    return f"gte.{isoformat_z(cursor)}"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_keyset_filter(updated_at: datetime, record_id: str) -> str:
    """
    Filtro `or` de PostgREST equivalente a `(updated_at, id) > (ts, id)`.

    Los valores van entre comillas dobles para que los `:` y `.` del
    timestamp o del id no rompan el árbol lógico.
    """
    ts = _quote(isoformat_z(updated_at))
    return f"(updated_at.gt.{ts},and(updated_at.eq.{ts},id.gt.{_quote(str(record_id))}))"


def build_in_filter(ids: Iterable[str]) -> str:
    """Filtro `in.(...)` con cada id entre comillas dobles."""
    quoted = [_quote(str(record_id)) for record_id in ids]
    return f"in.({','.join(quoted)})"


def parse_content_range_total(header: Optional[str]) -> Optional[int]:
    """Extrae el total de un header `Content-Range: 0-0/123` (o `*/0`)."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def _error_body(resp: requests.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {"message": resp.text}
    return body if isinstance(body, dict) else {"message": str(body)}


class RemoteLeadClient:
    """
    Cliente HTTP de la tabla de leads remota.

    Importante:
    - No hace cast de tipos: eso se decide en el record_mapper.
    - Todas las lecturas devuelven filas crudas (dict) tal como las entrega PostgREST.
    """

    def __init__(
        self,
        credentials: RemoteCredentials,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: int = 30,
        max_retries: int = 4,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._creds = credentials
        self._base_url = credentials.url.rstrip("/") + "/rest/v1"
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._session = session or requests.Session()
        self._sleep = sleep

    def table_url(self, table: str) -> str:
        return f"{self._base_url}/{table}"

    # ------------------------------------------------------------------
    # Lecturas
    # ------------------------------------------------------------------

    def fetch_changed(
        self,
        table: str,
        *,
        since: datetime,
        limit: int,
        after: Optional[tuple[datetime, str]] = None,
    ) -> list[dict[str, Any]]:
        """
        Página de registros con updated_at >= since, ordenados por (updated_at, id).

        `after` es el (updated_at, id) de la última fila de la página anterior.
        """
        params = [
            ("select", "*"),
            ("updated_at", build_incremental_filter(since)),
            ("order", "updated_at.asc,id.asc"),
            ("limit", str(limit)),
        ]
        if after is not None:
            params.append(("or", build_keyset_filter(*after)))
        resp = self._request("GET", self.table_url(table), params=params)
        return resp.json()

    def fetch_page(self, table: str, *, offset: int, limit: int) -> list[dict[str, Any]]:
        """Página ordenada por id (full resync)."""
        params = [
            ("select", "*"),
            ("order", "id.asc"),
            ("limit", str(limit)),
            ("offset", str(offset)),
        ]
        resp = self._request("GET", self.table_url(table), params=params)
        return resp.json()

    def count(self, table: str) -> int:
        """
        Consulta de existencia barata: una fila como máximo y el total exacto
        en Content-Range. Un nombre de tabla inexistente levanta SchemaError.
        """
        params = [("select", "id"), ("limit", "1")]
        resp = self._request(
            "GET",
            self.table_url(table),
            params=params,
            extra_headers={"Prefer": "count=exact"},
        )
        total = parse_content_range_total(resp.headers.get("Content-Range"))
        if total is None:
            total = len(resp.json() or [])
        return total

    def fetch_versions(self, table: str, ids: list[str]) -> dict[str, Optional[datetime]]:
        """id -> updated_at de los registros que ya existen en el remoto."""
        if not ids:
            return {}
        params = [("select", "id,updated_at"), ("id", build_in_filter(ids))]
        resp = self._request("GET", self.table_url(table), params=params)
        return {str(r["id"]): parse_timestamp(r.get("updated_at")) for r in resp.json()}

    # ------------------------------------------------------------------
    # Escrituras
    # ------------------------------------------------------------------

    def upsert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """UPSERT en una sola request (insert si no existe, merge si existe)."""
        if not rows:
            return
        self._request(
            "POST",
            self.table_url(table),
            params=[("on_conflict", "id")],
            json_body=rows,
            extra_headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            write=True,
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self, extra: Optional[dict[str, str]]) -> dict[str, str]:
        headers = {
            "apikey": self._creds.service_key,
            "Authorization": f"Bearer {self._creds.service_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: list[tuple[str, str]],
        json_body: Any = None,
        extra_headers: Optional[dict[str, str]] = None,
        write: bool = False,
    ) -> requests.Response:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - error de red / timeout: ConnectivityError inmediato
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple
        - 5xx: exponencial con jitter; agotados los reintentos, ConnectivityError
        - 401/403: RemoteAccessError
        - 404 o código de tabla/columna inexistente: SchemaError
        - otros 4xx: UpsertConflictError en escrituras, SchemaError en lecturas
        """
        headers = self._headers(extra_headers)

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self._timeout_s,
                )
            except requests.RequestException as e:
                raise ConnectivityError(STORE_NAME, f"{method} {url} falló: {e}") from e

            if 200 <= resp.status_code < 300:
                return resp

            # Errores recuperables
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise ConnectivityError(
                        STORE_NAME,
                        f"error {resp.status_code} tras {attempt} reintentos: {resp.text[:500]}",
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    # Exponencial simple + jitter proporcional
                    base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
                    sleep_s = base + (0.15 * base)

                logger.warning(
                    f"Remoto respondió {resp.status_code} ({method} {url}); "
                    f"reintento {attempt + 1}/{self._max_retries} en {sleep_s:.1f}s"
                )
                self._sleep(sleep_s)
                continue

            self._raise_for_status(resp, write=write)

        raise ConnectivityError(STORE_NAME, f"{method} {url} sin respuesta válida")

    def _raise_for_status(self, resp: requests.Response, *, write: bool) -> None:
        body = _error_body(resp)
        code = body.get("code")
        message = body.get("message") or resp.text[:500]

        if resp.status_code in (401, 403):
            raise RemoteAccessError(f"Acceso denegado ({resp.status_code}): {message}", code=code or str(resp.status_code))
        if resp.status_code == 404 or code in SCHEMA_ERROR_CODES:
            raise SchemaError(f"{message}", code=code or str(resp.status_code), details={"hint": body.get("hint")})
        if write:
            raise UpsertConflictError(STORE_NAME, f"{resp.status_code}: {message}", code=code)
        raise SchemaError(f"Consulta rechazada ({resp.status_code}): {message}", code=code or str(resp.status_code))
