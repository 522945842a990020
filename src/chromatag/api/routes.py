"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from chromatag.api.schemas import (
    ClassificationResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    UsageResponse,
)
from chromatag.classification.types import BytesSource, UrlSource
from chromatag.errors import ImageFetchError, QuotaExceeded, UnsupportedInputFormat
from chromatag.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from chromatag.classification.cascade import ClassificationPipeline
    from chromatag.classification.quota import UsageTracker
    from chromatag.classification.types import ImageSource
    from chromatag.config import Settings
    from chromatag.ml.inference import InferencePool
    from chromatag.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_pipeline(request: Request) -> ClassificationPipeline:
    pipeline: ClassificationPipeline = request.app.state.pipeline
    return pipeline


def _get_tracker(request: Request) -> UsageTracker:
    tracker: UsageTracker = request.app.state.usage_tracker
    return tracker


def _get_model_manager(request: Request) -> ModelManager | None:
    manager: ModelManager | None = getattr(request.app.state, "model_manager", None)
    return manager


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@router.post(
    "/classify",
    response_model=ClassificationResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
        status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    },
    summary="Classify a product photo by category and dominant color",
)
async def classify(
    request: Request,
    file: Annotated[UploadFile | None, File()] = None,
    url: Annotated[str | None, Form()] = None,
    trace: Annotated[bool, Query(description="Include the debug trace")] = True,
) -> ClassificationResponse | JSONResponse:
    """Classify an uploaded image or an image URL."""
    settings = _get_settings(request)
    if (file is None) == (url is None):
        return _error(status.HTTP_400_BAD_REQUEST, "Provide exactly one of 'file' or 'url'")

    source: ImageSource
    if file is not None:
        data = await file.read(settings.max_file_size + 1)
        if len(data) > settings.max_file_size:
            return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"File exceeds {settings.max_file_size} bytes")
        source = BytesSource(data)
    else:
        source = UrlSource(url or "")

    pipeline = _get_pipeline(request)
    try:
        result = await pipeline.classify(source)
    except QuotaExceeded as exc:
        return _error(status.HTTP_429_TOO_MANY_REQUESTS, str(exc))
    except UnsupportedInputFormat as exc:
        return _error(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, str(exc))
    except ImageFetchError as exc:
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    return ClassificationResponse.from_result(result, include_trace=trace)


@router.get(
    "/usage",
    response_model=UsageResponse,
    summary="Monthly usage",
)
async def usage(request: Request) -> UsageResponse:
    """Return the provider-call count for the current month."""
    snapshot = await _get_inference_pool(request).run(_get_tracker(request).snapshot)
    return UsageResponse(
        period=snapshot.period,
        count=snapshot.count,
        limit=snapshot.limit,
        remaining=snapshot.remaining,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models() if manager is not None else [],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        strategies=_get_pipeline(request).strategy_names,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List local ONNX models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return local models and whether they are enabled or loaded."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    loaded = set(manager.get_loaded_models()) if manager is not None else set()
    enabled = set(settings.local_models)

    models: list[ModelInfo] = []
    for name, spec in MODEL_REGISTRY.items():
        if name in loaded:
            model_status = "loaded"
        elif name in enabled:
            model_status = "enabled"
        else:
            model_status = "available"
        models.append(ModelInfo(name=name, repo_id=spec.repo_id, status=model_status, license=spec.license))

    return ModelsResponse(models=models)
