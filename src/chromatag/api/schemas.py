"""Pydantic request/response schemas for the Chromatag API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from chromatag.classification.types import ClassificationResult


class ColorCandidateModel(BaseModel):
    """A canonical color with its confidence and provenance."""

    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    rgb_approx: tuple[int, int, int]
    source: str = Field(description="Stage that produced it: direct, ensemble-vote, pixel, category-default, rule")


class ClassificationResponse(BaseModel):
    """Category and dominant color for one product photo."""

    category: str
    color: str
    confidence: float = Field(ge=0.0, le=1.0)
    candidates: list[ColorCandidateModel]
    object_detected: str | None = None
    debug_trace: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: ClassificationResult, include_trace: bool = True) -> ClassificationResponse:
        return cls(
            category=result.category,
            color=result.color,
            confidence=result.confidence,
            candidates=[
                ColorCandidateModel(
                    name=c.name,
                    confidence=c.confidence,
                    rgb_approx=c.rgb_approx,
                    source=c.source,
                )
                for c in result.candidates
            ],
            object_detected=result.object_detected,
            debug_trace=result.debug_trace if include_trace else None,
        )


class UsageResponse(BaseModel):
    """Monthly provider-call usage."""

    period: str = Field(description="Calendar month, YYYY-MM")
    count: int
    limit: int
    remaining: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    strategies: list[str]


class ModelInfo(BaseModel):
    """Information about a local ONNX model."""

    name: str
    repo_id: str
    status: str = Field(description="Model status: 'loaded', 'enabled', or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
