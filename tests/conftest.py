"""Shared fixtures and fakes for the Chromatag test suite."""

from __future__ import annotations

import io
from collections.abc import Iterator, Sequence

import numpy as np
import pytest
from numpy.typing import NDArray
from PIL import Image

from chromatag.classification.types import DetectedObject, Label, ResolvedImage
from chromatag.config import Settings
from chromatag.ml.inference import InferencePool


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/chromatag_test_models",
        "model_ttl": 300,
        "max_concurrent": 4,
        "provider_timeout": 2.0,
        "monthly_limit": 100,
        "hf_token": None,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def solid_pixels(rgb: tuple[int, int, int], width: int = 64, height: int = 64) -> NDArray[np.uint8]:
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = rgb
    return pixels


def png_bytes(pixels: NDArray[np.uint8]) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def resolved(rgb: tuple[int, int, int] = (153, 51, 204), width: int = 64, height: int = 64) -> ResolvedImage:
    pixels = solid_pixels(rgb, width, height)
    return ResolvedImage(content=png_bytes(pixels), pixels=pixels)


def labels(*pairs: tuple[str, float]) -> list[Label]:
    return [Label(label=text, score=score) for text, score in pairs]


class FakeProvider:
    """Provider returning canned results or raising a canned error."""

    def __init__(
        self,
        name: str,
        label_list: Sequence[Label] = (),
        detections: Sequence[DetectedObject] = (),
        error: Exception | None = None,
    ) -> None:
        self._name = name
        self._labels = list(label_list)
        self._detections = list(detections)
        self._error = error
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    def classify_labels(self, image: ResolvedImage) -> list[Label]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._labels)

    def detect_objects(self, image: ResolvedImage) -> list[DetectedObject]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._detections)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()
