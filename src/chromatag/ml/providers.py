"""Inference providers: opaque label classification and object detection backends."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

import httpx
from huggingface_hub import InferenceClient, InferenceTimeoutError
from huggingface_hub.utils import HfHubHTTPError

from chromatag.classification.types import DetectedObject, Label
from chromatag.errors import ProviderMalformedResponse, ProviderUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chromatag.classification.types import Box, ResolvedImage

logger = logging.getLogger(__name__)


class InferenceProvider(Protocol):
    """Protocol for label and detection backends.

    Both methods return results sorted by descending score and raise
    ``ProviderUnavailable`` or ``ProviderMalformedResponse`` instead of
    returning partial data.
    """

    @property
    def name(self) -> str:
        """Return the provider identifier used in logs and traces."""
        ...

    def classify_labels(self, image: ResolvedImage) -> list[Label]:
        """Classify the whole image into ranked labels."""
        ...

    def detect_objects(self, image: ResolvedImage) -> list[DetectedObject]:
        """Detect objects with normalized bounding boxes."""
        ...


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _field(item: object, key: str) -> object:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def _score(provider: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ProviderMalformedResponse(provider, f"score is not a number: {value!r}")
    return float(value)


def _entries(provider: str, raw: object) -> list[object]:
    if isinstance(raw, Mapping) or isinstance(raw, str | bytes) or not hasattr(raw, "__iter__"):
        raise ProviderMalformedResponse(provider, f"expected a list, got {type(raw).__name__}")
    return list(raw)


def parse_labels(provider: str, raw: object) -> list[Label]:
    """Validate a provider payload into ranked ``Label`` objects."""
    labels: list[Label] = []
    for item in _entries(provider, raw):
        text = _field(item, "label")
        if not isinstance(text, str):
            raise ProviderMalformedResponse(provider, f"label is not a string: {text!r}")
        labels.append(Label(label=text, score=_score(provider, _field(item, "score"))))
    return sorted(labels, key=lambda item: item.score, reverse=True)


def _normalize_box(provider: str, box: object, width: int, height: int) -> Box:
    coords = [_field(box, key) for key in ("xmin", "ymin", "xmax", "ymax")]
    values = [_score(provider, value) for value in coords]
    if max(values) > 1.0:
        values = [values[0] / width, values[1] / height, values[2] / width, values[3] / height]
    xmin, ymin, xmax, ymax = (min(max(v, 0.0), 1.0) for v in values)
    return xmin, ymin, xmax, ymax


def parse_detections(provider: str, raw: object, width: int, height: int) -> list[DetectedObject]:
    """Validate a detection payload; pixel boxes are normalized by image size."""
    detections: list[DetectedObject] = []
    for item in _entries(provider, raw):
        text = _field(item, "label")
        if not isinstance(text, str):
            raise ProviderMalformedResponse(provider, f"label is not a string: {text!r}")
        box = _field(item, "box")
        if box is None:
            raise ProviderMalformedResponse(provider, f"detection without box: {item!r}")
        detections.append(
            DetectedObject(
                label=text,
                score=_score(provider, _field(item, "score")),
                box=_normalize_box(provider, box, width, height),
            )
        )
    return sorted(detections, key=lambda item: item.score, reverse=True)


def top_labels(labels: Iterable[Label], limit: int = 5) -> list[str]:
    return [item.label for item in list(labels)[:limit]]


# ---------------------------------------------------------------------------
# Hugging Face Inference API
# ---------------------------------------------------------------------------

_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    HfHubHTTPError,
    InferenceTimeoutError,
    httpx.HTTPError,
    OSError,
)


class HuggingFaceProvider:
    """Provider backed by a hosted model on the Hugging Face Inference API."""

    def __init__(
        self,
        model: str,
        token: str | None = None,
        timeout: float | None = None,
        client: InferenceClient | None = None,
    ) -> None:
        self._model = model
        self._client = client if client is not None else InferenceClient(token=token, timeout=timeout)

    @property
    def name(self) -> str:
        return f"hf:{self._model}"

    @property
    def model(self) -> str:
        return self._model

    def classify_labels(self, image: ResolvedImage) -> list[Label]:
        try:
            raw = self._client.image_classification(image.content, model=self._model)
        except _TRANSPORT_ERRORS as exc:
            raise ProviderUnavailable(self.name, str(exc)) from exc
        except ValueError as exc:
            raise ProviderMalformedResponse(self.name, str(exc)) from exc
        labels = parse_labels(self.name, raw)
        logger.debug("%s labels: %s", self.name, top_labels(labels))
        return labels

    def detect_objects(self, image: ResolvedImage) -> list[DetectedObject]:
        try:
            raw = self._client.object_detection(image.content, model=self._model)
        except _TRANSPORT_ERRORS as exc:
            raise ProviderUnavailable(self.name, str(exc)) from exc
        except ValueError as exc:
            raise ProviderMalformedResponse(self.name, str(exc)) from exc
        return parse_detections(self.name, raw, image.width, image.height)
