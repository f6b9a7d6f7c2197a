"""
Enriquecimiento de coordenadas de leads locales a partir de `localizacao`.

Orden de resolución por lead:
1. coordenadas directas en el texto ("-23.55, -46.63")
2. cache local (tabla geocache)
3. Nominatim, respetando su límite de 1 request por segundo

Las coordenadas se guardan como cambio local (updated_at = now), así el
próximo push las propaga al remoto.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psycopg
import requests
from loguru import logger

from scouter_sync.core.config import SyncSettings
from scouter_sync.shared.exceptions.sync import ConnectivityError

from .pg_repository import PostgresSyncRepository

RE_COORDS = re.compile(r"(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)")


def parse_coordinates(text: Optional[str]) -> Optional[tuple[float, float]]:
    """Extrae (lat, lng) si el texto contiene un par de coordenadas válido."""
    if not text:
        return None
    match = RE_COORDS.search(text)
    if not match:
        return None
    lat, lng = float(match.group(1)), float(match.group(2))
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return lat, lng


class NominatimGeocoder:
    """
    Geocodificador sobre la API de búsqueda de Nominatim.

    Un fallo de red o una respuesta inválida retorna None: un lead sin
    coordenadas se reintenta en la próxima corrida.
    """

    def __init__(
        self,
        *,
        url: str,
        user_agent: str,
        min_interval_s: float = 1.0,
        session: Optional[requests.Session] = None,
        timeout_s: int = 15,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._user_agent = user_agent
        self._min_interval_s = min_interval_s
        self._session = session or requests.Session()
        self._timeout_s = timeout_s
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_request_at: Optional[float] = None

    def _throttle(self) -> None:
        if self._last_request_at is None:
            return
        wait = self._min_interval_s - (self._monotonic() - self._last_request_at)
        if wait > 0:
            self._sleep(wait)

    def geocode(self, address: str) -> Optional[tuple[float, float]]:
        self._throttle()
        try:
            resp = self._session.get(
                self._url,
                params={"format": "json", "q": address, "limit": 1},
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            logger.warning(f"Geocodificación falló para '{address}': {e}")
            return None
        finally:
            self._last_request_at = self._monotonic()

        if resp.status_code != 200:
            logger.warning(f"Nominatim respondió {resp.status_code} para '{address}'")
            return None
        try:
            data = resp.json()
            if isinstance(data, list) and data:
                return float(data[0]["lat"]), float(data[0]["lon"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Respuesta de Nominatim inválida para '{address}': {e}")
        return None


@dataclass
class GeoEnrichResult:
    processed: int = 0
    geocoded: int = 0
    from_cache: int = 0
    total: int = 0


class GeoEnricher:
    def __init__(
        self,
        *,
        settings: SyncSettings,
        pg_repo: PostgresSyncRepository,
        geocoder: NominatimGeocoder,
    ) -> None:
        self._settings = settings
        self._pg = pg_repo
        self._geocoder = geocoder

    def run(self, limit: int = 50) -> GeoEnrichResult:
        """
        Procesa hasta `limit` leads sin latitud y con localizacao.
        Levanta SyncConfigError/ConnectivityError si el store local no está disponible.
        """
        self._settings.require_local()
        result = GeoEnrichResult()

        with self._pg.connect() as conn:
            try:
                self._pg.ensure_sync_tables(conn)
                leads = self._pg.fetch_leads_missing_coordinates(conn, limit=limit)
            except psycopg.Error as e:
                raise ConnectivityError("local", str(e)) from e
            result.total = len(leads)

            for lead in leads:
                text = (lead.get("localizacao") or "").strip()
                coords = parse_coordinates(text)
                if coords:
                    result.geocoded += 1
                else:
                    coords = self._pg.get_geocache(conn, text)
                    if coords:
                        result.from_cache += 1
                    else:
                        coords = self._geocoder.geocode(text)
                        if coords:
                            self._pg.put_geocache(conn, text, coords[0], coords[1])
                            result.geocoded += 1

                if coords is None:
                    logger.debug(f"Lead {lead['id']}: no se pudo geocodificar '{text}'")
                    continue

                self._pg.update_lead_coordinates(
                    conn,
                    record_id=str(lead["id"]),
                    lat=coords[0],
                    lng=coords[1],
                    local_tag=self._settings.local_tag,
                )
                result.processed += 1

        logger.info(
            f"Geo enrich: total={result.total}, procesados={result.processed}, "
            f"geocodificados={result.geocoded}, cache={result.from_cache}"
        )
        return result


def build_geocoder(settings: SyncSettings) -> NominatimGeocoder:
    return NominatimGeocoder(
        url=settings.geocoder_url,
        user_agent=settings.geocoder_user_agent,
        min_interval_s=settings.geocoder_min_interval_s,
    )
