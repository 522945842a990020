"""Value types passed between the classification stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

RGB = tuple[int, int, int]
Box = tuple[float, float, float, float]


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BytesSource:
    """Raw encoded image bytes (JPEG, PNG, WebP, ...)."""

    data: bytes


@dataclass(frozen=True)
class UrlSource:
    """An ``http(s)://`` or ``data:image/...;base64,`` URL."""

    url: str


ImageSource = BytesSource | UrlSource


@dataclass(frozen=True, eq=False)
class ResolvedImage:
    """Canonical in-memory image every stage works from.

    ``pixels`` is an HxWx3 RGB uint8 array decoded from ``content``.
    """

    content: bytes
    pixels: NDArray[np.uint8]
    url: str | None = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


# ---------------------------------------------------------------------------
# Provider output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Label:
    """A single classification label with its score."""

    label: str
    score: float


@dataclass(frozen=True)
class DetectedObject:
    """A detected object; ``box`` is ``(xmin, ymin, xmax, ymax)`` in [0, 1]."""

    label: str
    score: float
    box: Box


@dataclass(frozen=True)
class ClassificationCandidate:
    """A provider label mapped onto the category taxonomy."""

    label: str
    category: str
    score: float
    provider: str


# ---------------------------------------------------------------------------
# Core output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ColorCandidate:
    """A canonical color with confidence in [0, 1]."""

    name: str
    confidence: float
    rgb_approx: RGB
    source: str


@dataclass(frozen=True)
class CategoryMatch:
    """Result of matching provider labels against the category taxonomy."""

    category: str
    matched_label: str | None
    confidence: float
    rule: str | None = None


@dataclass
class ClassificationResult:
    """The single value returned by the classification pipeline."""

    category: str
    color: str
    confidence: float
    candidates: list[ColorCandidate]
    object_detected: str | None = None
    debug_trace: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "color": self.color,
            "confidence": self.confidence,
            "candidates": [
                {
                    "name": c.name,
                    "confidence": c.confidence,
                    "rgb_approx": list(c.rgb_approx),
                    "source": c.source,
                }
                for c in self.candidates
            ],
            "object_detected": self.object_detected,
            "debug_trace": self.debug_trace,
        }


def sort_candidates(candidates: list[ColorCandidate]) -> list[ColorCandidate]:
    """Sort descending by confidence; ``sorted`` is stable so ties keep input order."""
    return sorted(candidates, key=lambda c: c.confidence, reverse=True)
