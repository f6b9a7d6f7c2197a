"""
Endpoints disparadores de la sincronizacion Gestão <-> TabuladorMax.

Todos requieren el header X-Secret. Las corridas devuelven:
- 200 si terminaron sin fallas
- 207 si terminaron con fallas parciales (o health degradado)
- 500 si fallaron en setup (o health en error)
"""
import time

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from scouter_sync.api.v1.dependencies.auth_deps import verify_shared_secret
from scouter_sync.api.v1.dependencies.use_case_deps import get_sync_use_cases
from scouter_sync.application.dto.sync_dto import (
    FullResyncResponseDTO,
    GeoEnrichResponseDTO,
    HealthResponseDTO,
    QueueProcessResponseDTO,
    SyncRunResponseDTO,
)
from scouter_sync.application.use_cases.sync_use_cases import SyncUseCases
from scouter_sync.domain.entities.sync import SyncDirection
from scouter_sync.shared.utils.audit_logger import AuditLogger


router = APIRouter(
    prefix="/sync",
    tags=["Sync"],
    dependencies=[Depends(verify_shared_secret)],
)


def _respond(request: Request, dto, status_code: int, started: float) -> JSONResponse:
    AuditLogger.log_response(
        request.method,
        request.url.path,
        status_code,
        duration_ms=(time.monotonic() - started) * 1000,
    )
    return JSONResponse(status_code=status_code, content=dto.model_dump(mode="json"))


@router.post(
    "/bidirectional",
    response_model=SyncRunResponseDTO,
    responses={207: {"model": SyncRunResponseDTO}, 500: {"model": SyncRunResponseDTO}},
    summary="Sincronizacion incremental pull (remoto -> local) o push (local -> remoto)",
)
async def sync_bidirectional(
    request: Request,
    direction: SyncDirection = Query(..., description="pull | push"),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> JSONResponse:
    started = time.monotonic()
    AuditLogger.log_request(request.method, request.url.path, {"direction": direction.value})
    dto, status_code = await use_cases.run_bidirectional(direction)
    if dto.skipped:
        logger.info(f"Sync {dto.direction} omitido: otra corrida en curso")
    return _respond(request, dto, status_code, started)


@router.post(
    "/queue/process",
    response_model=QueueProcessResponseDTO,
    responses={207: {"model": QueueProcessResponseDTO}, 500: {"model": QueueProcessResponseDTO}},
    summary="Procesar la cola de propagacion local -> remoto",
)
async def process_sync_queue(
    request: Request,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> JSONResponse:
    started = time.monotonic()
    AuditLogger.log_request(request.method, request.url.path)
    dto, status_code = await use_cases.process_queue()
    return _respond(request, dto, status_code, started)


@router.post(
    "/full-resync",
    response_model=FullResyncResponseDTO,
    responses={207: {"model": FullResyncResponseDTO}, 500: {"model": FullResyncResponseDTO}},
    summary="Copia completa remoto -> local con descubrimiento de tabla",
)
async def full_resync(
    request: Request,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> JSONResponse:
    started = time.monotonic()
    AuditLogger.log_request(request.method, request.url.path)
    dto, status_code = await use_cases.full_resync()
    return _respond(request, dto, status_code, started)


@router.api_route(
    "/health",
    methods=["GET", "POST"],
    response_model=HealthResponseDTO,
    responses={207: {"model": HealthResponseDTO}, 500: {"model": HealthResponseDTO}},
    summary="Health check de la sincronizacion",
)
async def sync_health(
    request: Request,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> JSONResponse:
    started = time.monotonic()
    dto, status_code = await use_cases.check_health()
    return _respond(request, dto, status_code, started)


@router.post(
    "/geo-enrich",
    response_model=GeoEnrichResponseDTO,
    responses={500: {"model": GeoEnrichResponseDTO}},
    summary="Completar coordenadas de leads a partir de la localizacion",
)
async def geo_enrich(
    request: Request,
    limit: int = Query(50, ge=1, le=1000, description="Maximo de leads a procesar"),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> JSONResponse:
    started = time.monotonic()
    AuditLogger.log_request(request.method, request.url.path, {"limit": limit})
    dto, status_code = await use_cases.geo_enrich(limit)
    return _respond(request, dto, status_code, started)
