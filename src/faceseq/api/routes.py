"""API route definitions."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from faceseq.api.schemas import (
    CascadeInfo,
    CascadesResponse,
    ErrorResponse,
    FailureModel,
    HealthResponse,
    OutcomeModel,
    ProcessRequest,
    ProcessResponse,
    SkippedModel,
)
from faceseq.ml.cascade_manager import CASCADE_REGISTRY

if TYPE_CHECKING:
    from faceseq.batch.pool import BatchPool
    from faceseq.batch.results import BatchResult
    from faceseq.config import Settings
    from faceseq.ml.cascade_manager import CascadeManager
    from faceseq.ml.detector import HaarCascadeDetector

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


async def _authorize(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Require ``Authorization: Bearer <FACESEQ_API_KEY>`` when a key is configured."""
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return
    if credentials is not None and secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        return
    logger.warning("Rejected %s %s: missing or invalid API key", request.method, request.url.path)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )


router = APIRouter(prefix="/api/v1", dependencies=[Depends(_authorize)])


def _get_batch_pool(request: Request) -> BatchPool:
    pool: BatchPool = request.app.state.batch_pool
    return pool


def _get_cascade_manager(request: Request) -> CascadeManager:
    manager: CascadeManager = request.app.state.cascade_manager
    return manager


def _get_detector(request: Request) -> HaarCascadeDetector:
    detector: HaarCascadeDetector = request.app.state.detector
    return detector


def _to_response(result: BatchResult) -> ProcessResponse:
    return ProcessResponse(
        outcomes=[
            OutcomeModel(
                source_key=outcome.source_key,
                face_count=outcome.face_count,
                container=outcome.container,
                position=outcome.position,
            )
            for outcome in result.outcomes
        ],
        skipped=[
            SkippedModel(
                source_key=skip.source_key,
                reason=str(skip.reason),
                detail=skip.detail,
                container=skip.container,
                position=skip.position,
            )
            for skip in result.skipped
        ],
        failures=[FailureModel(location=failure.location, detail=failure.detail) for failure in result.failures],
        skip_count=result.skip_count,
        total_faces=result.total_faces,
        cancelled=result.cancelled,
    )


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Count faces in images stored in SequenceFile containers",
)
async def process(body: ProcessRequest, request: Request) -> ProcessResponse:
    """Process every record of the given containers or directories."""
    pool = _get_batch_pool(request)
    try:
        result = await pool.process(body.locations, body.extension)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many concurrent batches, try again later",
        ) from None
    return _to_response(result)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_batch_pool(request)
    return HealthResponse(
        status="ok",
        detector_target=str(_get_detector(request).target),
        cascades_loaded=_get_cascade_manager(request).get_loaded(),
        active_batches=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/cascades",
    response_model=CascadesResponse,
    summary="List available cascades",
)
async def list_cascades(request: Request) -> CascadesResponse:
    """Return available cascades and their status."""
    active = _get_detector(request).cascade_name
    loaded = set(_get_cascade_manager(request).get_loaded())

    cascades: list[CascadeInfo] = []
    for spec in CASCADE_REGISTRY.values():
        if spec.name == active:
            cascade_status = "active"
        elif spec.name in loaded:
            cascade_status = "loaded"
        else:
            cascade_status = "available"
        cascades.append(CascadeInfo(name=spec.name, target=str(spec.target), status=cascade_status))

    return CascadesResponse(cascades=cascades)
