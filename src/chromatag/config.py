"""Environment-based configuration for Chromatag."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CHROMATAG_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHROMATAG_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Hugging Face Inference API
    hf_token: str | None = None
    category_model: str = "google/vit-base-patch16-224"
    detection_model: str | None = "facebook/detr-resnet-50"
    direct_color_model: str = "google/vit-base-patch16-224"
    ensemble_models: list[str] = Field(
        default_factory=lambda: [
            "google/vit-large-patch16-224",
            "microsoft/resnet-50",
            "facebook/convnext-base-224",
            "microsoft/swin-base-patch4-window7-224",
        ]
    )

    # OpenAI vision model used for the direct color stage when a key is set
    openai_api_key: str | None = None
    vision_model: str = "gpt-4o-mini"

    # Local ONNX models appended to the ensemble (names from MODEL_REGISTRY)
    local_models: list[str] = Field(default_factory=list)

    # Cascade tuning
    provider_timeout: float = Field(default=10.0, gt=0)
    direct_min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    ensemble_min_confidence: float = Field(default=0.15, ge=0.0, le=1.0)
    analysis_grid_size: int = Field(default=200, ge=8)

    # Usage quota (None = in-memory counter)
    monthly_limit: int = Field(default=30_000, ge=0)
    quota_file: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=4, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)
    fetch_timeout: float = Field(default=10.0, gt=0)

    # Model management
    models_dir: str = "models"
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
