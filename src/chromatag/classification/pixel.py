"""Pixel color extractor.

Estimates the dominant color of a product photo directly from its pixels:

    region of interest -> fixed analysis grid -> Gaussian center weights
    -> near-white / near-black exclusion -> weighted RGB mean -> HSL -> name

The name comes from three ordered tables: narrow special windows for RGB
ranges that hue bucketing gets wrong, a low-saturation lightness split, and
a hue-range table covering the whole color circle. The full derivation is
returned alongside the answer.
"""

from __future__ import annotations

import functools
import math
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from chromatag.classification.colors import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from chromatag.classification.types import RGB, Box

GRID_SIZE = 200
NEAR_WHITE = 245
NEAR_BLACK = 10
ACHROMATIC_SATURATION = 15.0
ACHROMATIC_CONFIDENCE = 0.7

HSL = tuple[float, float, float]


# ---------------------------------------------------------------------------
# Naming tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HueRange:
    """Half-open hue interval ``[start, end)`` in degrees."""

    start: float
    end: float
    color: str
    confidence: float


HUE_RANGES: tuple[HueRange, ...] = (
    HueRange(0, 15, "red", 0.8),
    HueRange(15, 45, "orange", 0.75),
    HueRange(45, 65, "yellow", 0.75),
    HueRange(65, 170, "green", 0.8),
    HueRange(170, 190, "blue", 0.6),
    HueRange(190, 260, "blue", 0.8),
    HueRange(260, 290, "purple", 0.75),
    HueRange(290, 345, "pink", 0.7),
    HueRange(345, 360, "red", 0.8),
)


@dataclass(frozen=True)
class SpecialWindow:
    """A narrow RGB/HSL window checked before generic bucketing."""

    name: str
    color: str
    confidence: float
    test: Callable[[tuple[float, float, float], HSL], bool]


def _burgundy(rgb: tuple[float, float, float], hsl: HSL) -> bool:
    r, g, b = rgb
    return 80 <= r <= 170 and g < 60 and 30 <= b <= 100 and r > b * 1.3


def _purple(rgb: tuple[float, float, float], hsl: HSL) -> bool:
    h, s, _ = hsl
    return 270 <= h < 330 and s > 30


def _brown(rgb: tuple[float, float, float], hsl: HSL) -> bool:
    h, s, l = hsl
    return 15 <= h < 45 and s >= ACHROMATIC_SATURATION and l < 40


def _beige(rgb: tuple[float, float, float], hsl: HSL) -> bool:
    h, s, l = hsl
    return 20 <= h <= 65 and ACHROMATIC_SATURATION <= s <= 80 and l >= 75


SPECIAL_WINDOWS: tuple[SpecialWindow, ...] = (
    # Wine tones land in the pink hue range.
    SpecialWindow("burgundy-window", "red", 0.75, _burgundy),
    # Fuchsia and violet products read as purple, not pink.
    SpecialWindow("purple-window", "purple", 0.85, _purple),
    SpecialWindow("brown-window", "brown", 0.7, _brown),
    SpecialWindow("beige-window", "beige", 0.65, _beige),
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PixelAnalysis:
    """Derivation trace of a pixel color estimate."""

    mean_rgb: tuple[float, float, float] | None
    hsl: HSL | None
    rule: str
    total_weight: float
    valid_pixels: int
    sampled_pixels: int
    grid: tuple[int, int]
    sigma: float
    region: Box | None

    @property
    def rgb(self) -> RGB | None:
        if self.mean_rgb is None:
            return None
        r, g, b = (int(round(c)) for c in self.mean_rgb)
        return (r, g, b)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["rgb"] = self.rgb
        return data


@dataclass(frozen=True)
class PixelColorResult:
    color: str
    confidence: float
    analysis: PixelAnalysis


# ---------------------------------------------------------------------------
# Color math
# ---------------------------------------------------------------------------


def rgb_to_hsl(r: float, g: float, b: float) -> HSL:
    """Convert 0-255 RGB to ``(hue degrees, saturation %, lightness %)``."""
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    high = max(r, g, b)
    low = min(r, g, b)
    lightness = (high + low) / 2

    if math.isclose(high, low):
        return 0.0, 0.0, lightness * 100

    delta = high - low
    saturation = delta / (2 - high - low) if lightness > 0.5 else delta / (high + low)

    if high == r:
        hue = (g - b) / delta + (6 if g < b else 0)
    elif high == g:
        hue = (b - r) / delta + 2
    else:
        hue = (r - g) / delta + 4
    hue = (hue * 60) % 360

    return hue, saturation * 100, lightness * 100


def name_color(rgb: tuple[float, float, float], hsl: HSL) -> tuple[str, float, str]:
    """Name a color from its mean RGB and HSL.

    Returns ``(color, confidence, rule)``.
    """
    for window in SPECIAL_WINDOWS:
        if window.test(rgb, hsl):
            return window.color, window.confidence, window.name

    hue, saturation, lightness = hsl
    if saturation < ACHROMATIC_SATURATION:
        if lightness < 20:
            return "black", ACHROMATIC_CONFIDENCE, "achromatic-black"
        if lightness > 80:
            return "white", ACHROMATIC_CONFIDENCE, "achromatic-white"
        return "gray", ACHROMATIC_CONFIDENCE, "achromatic-gray"

    for hue_range in HUE_RANGES:
        if hue_range.start <= hue < hue_range.end:
            return hue_range.color, hue_range.confidence, f"hue-{hue_range.start:g}-{hue_range.end:g}"

    # Unreachable while HUE_RANGES covers [0, 360).
    return UNKNOWN, 0.0, "hue-uncovered"


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def _as_rgb(pixels: NDArray[np.uint8]) -> NDArray[np.uint8]:
    if pixels.ndim == 2:
        return np.repeat(pixels[:, :, np.newaxis], 3, axis=2)
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        raise ValueError(f"Expected an HxWx3 image, got shape {pixels.shape}")
    return pixels[:, :, :3]


def _clamp_region(region: Box) -> Box:
    xmin, ymin, xmax, ymax = (min(max(float(v), 0.0), 1.0) for v in region)
    if xmax <= xmin or ymax <= ymin:
        raise ValueError(f"Empty region of interest: {region}")
    return xmin, ymin, xmax, ymax


def sample_grid(pixels: NDArray[np.uint8], region: Box | None = None, grid_size: int = GRID_SIZE) -> NDArray[np.uint8]:
    """Nearest-neighbour resample of the region into a ``grid_size`` square."""
    image = _as_rgb(pixels)
    height, width = image.shape[:2]
    if height == 0 or width == 0:
        raise ValueError("Cannot sample an empty image")

    if region is not None:
        xmin, ymin, xmax, ymax = _clamp_region(region)
        x0, x1 = int(math.floor(xmin * width)), int(math.ceil(xmax * width))
        y0, y1 = int(math.floor(ymin * height)), int(math.ceil(ymax * height))
        image = image[y0 : max(y1, y0 + 1), x0 : max(x1, x0 + 1)]
        height, width = image.shape[:2]

    rows = np.minimum(((np.arange(grid_size) + 0.5) * height / grid_size).astype(np.intp), height - 1)
    cols = np.minimum(((np.arange(grid_size) + 0.5) * width / grid_size).astype(np.intp), width - 1)
    return image[np.ix_(rows, cols)]


@functools.lru_cache(maxsize=8)
def gaussian_weights(grid_height: int, grid_width: int) -> NDArray[np.float64]:
    """Center-weighted Gaussian with ``sigma = min(w, h) / 4``."""
    sigma = min(grid_width, grid_height) / 4
    ys, xs = np.mgrid[0:grid_height, 0:grid_width]
    cy, cx = (grid_height - 1) / 2, (grid_width - 1) / 2
    distance_sq = (xs - cx) ** 2 + (ys - cy) ** 2
    weights: NDArray[np.float64] = np.exp(-distance_sq / (2 * sigma**2))
    weights.setflags(write=False)
    return weights


def extract_color(
    pixels: NDArray[np.uint8],
    region: Box | None = None,
    grid_size: int = GRID_SIZE,
) -> PixelColorResult:
    """Estimate the dominant color of ``pixels`` inside ``region``.

    Args:
        pixels: HxWx3 RGB uint8 array (an alpha channel is ignored).
        region: Optional ``(xmin, ymin, xmax, ymax)`` box in [0, 1].
        grid_size: Side of the square analysis grid.

    Returns:
        The color name, its confidence, and the derivation trace.
    """
    grid = sample_grid(pixels, region, grid_size)
    grid_height, grid_width = grid.shape[:2]
    weights = gaussian_weights(grid_height, grid_width)
    sigma = min(grid_width, grid_height) / 4

    near_white = np.all(grid > NEAR_WHITE, axis=-1)
    near_black = np.all(grid < NEAR_BLACK, axis=-1)
    valid = ~(near_white | near_black)
    effective = weights * valid
    total_weight = float(effective.sum())

    base = {
        "total_weight": total_weight,
        "valid_pixels": int(valid.sum()),
        "sampled_pixels": int(grid_height * grid_width),
        "grid": (grid_width, grid_height),
        "sigma": sigma,
        "region": _clamp_region(region) if region is not None else None,
    }

    if total_weight <= 0.0:
        analysis = PixelAnalysis(mean_rgb=None, hsl=None, rule="no-valid-pixels", **base)
        return PixelColorResult(color=UNKNOWN, confidence=0.0, analysis=analysis)

    sums = (grid.astype(np.float64) * effective[:, :, np.newaxis]).sum(axis=(0, 1))
    r, g, b = (float(v) for v in sums / total_weight)
    hsl = rgb_to_hsl(r, g, b)
    color, confidence, rule = name_color((r, g, b), hsl)

    analysis = PixelAnalysis(mean_rgb=(r, g, b), hsl=hsl, rule=rule, **base)
    return PixelColorResult(color=color, confidence=confidence, analysis=analysis)
