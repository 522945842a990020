"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chromatag.classification.quota import QuotaStore
    from chromatag.ml.preprocessing import ImageLoader

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chromatag.api.routes import router
from chromatag.classification.cascade import (
    CategoryDefaultStrategy,
    ClassificationPipeline,
    DirectStrategy,
    EnsembleStrategy,
    PixelStrategy,
)
from chromatag.classification.ensemble import EnsembleAggregator
from chromatag.classification.quota import InMemoryQuotaStore, JsonFileQuotaStore, UsageTracker
from chromatag.config import Settings, get_settings
from chromatag.ml.image_classifier import OnnxImageClassifier
from chromatag.ml.inference import InferencePool
from chromatag.ml.model_manager import OnnxModelManager
from chromatag.ml.preprocessing import PillowImageLoader
from chromatag.ml.providers import HuggingFaceProvider, InferenceProvider
from chromatag.ml.vision import OpenAIVisionProvider

logger = logging.getLogger(__name__)


def build_quota_store(settings: Settings) -> QuotaStore:
    if settings.quota_file:
        return JsonFileQuotaStore(settings.quota_file)
    return InMemoryQuotaStore()


def build_pipeline(
    settings: Settings,
    pool: InferencePool,
    tracker: UsageTracker,
    loader: ImageLoader,
    model_manager: OnnxModelManager | None = None,
) -> ClassificationPipeline:
    """Wire providers and strategies from settings."""

    def hosted(model: str) -> HuggingFaceProvider:
        return HuggingFaceProvider(model, token=settings.hf_token, timeout=settings.provider_timeout)

    ensemble: list[InferenceProvider] = [hosted(model) for model in settings.ensemble_models]
    if model_manager is not None:
        ensemble.extend(OnnxImageClassifier(name, model_manager) for name in settings.local_models)

    direct: InferenceProvider
    if settings.openai_api_key:
        direct = OpenAIVisionProvider(
            settings.vision_model, api_key=settings.openai_api_key, timeout=settings.provider_timeout
        )
    else:
        direct = hosted(settings.direct_color_model)

    strategies = [
        DirectStrategy(
            direct,
            pool,
            timeout=settings.provider_timeout,
            min_confidence=settings.direct_min_confidence,
        ),
        EnsembleStrategy(
            EnsembleAggregator(ensemble, pool, timeout=settings.provider_timeout),
            min_confidence=settings.ensemble_min_confidence,
        ),
        PixelStrategy(pool, timeout=settings.provider_timeout, grid_size=settings.analysis_grid_size),
        CategoryDefaultStrategy(),
    ]

    return ClassificationPipeline(
        loader=loader,
        tracker=tracker,
        pool=pool,
        category_provider=hosted(settings.category_model),
        detection_provider=hosted(settings.detection_model) if settings.detection_model else None,
        strategies=strategies,
        provider_timeout=settings.provider_timeout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting Chromatag (device=%s, max_concurrent=%s, ensemble=%d hosted + %d local, monthly_limit=%d)",
        settings.device,
        settings.max_concurrent,
        len(settings.ensemble_models),
        len(settings.local_models),
        settings.monthly_limit,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    model_manager = OnnxModelManager(settings) if settings.local_models else None
    app.state.model_manager = model_manager

    tracker = UsageTracker(build_quota_store(settings), settings.monthly_limit)
    app.state.usage_tracker = tracker

    loader = PillowImageLoader(settings)
    app.state.pipeline = build_pipeline(settings, inference_pool, tracker, loader, model_manager)

    logger.info("Chromatag ready")
    yield

    logger.info("Shutting down Chromatag")
    loader.close()
    if model_manager is not None:
        model_manager.shutdown()
    inference_pool.shutdown()
    logger.info("Chromatag shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Chromatag",
        description="Category and dominant-color classification for marketplace product photos",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
