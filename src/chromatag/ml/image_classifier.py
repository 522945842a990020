"""Local ONNX image classifier usable as an ensemble provider.

Runs Hugging Face ONNX exports (ViT, ResNet) through ONNX Runtime and
returns ImageNet-style ranked labels. It has no detection head.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from chromatag.classification.types import DetectedObject, Label
from chromatag.errors import ProviderMalformedResponse, ProviderUnavailable
from chromatag.ml.model_manager import get_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from chromatag.classification.types import ResolvedImage
    from chromatag.ml.model_manager import ModelManager, ModelSpec

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


def preprocess(pixels: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
    """Resize, rescale and normalize an RGB array into a 1x3xSxS tensor."""
    image = Image.fromarray(np.ascontiguousarray(pixels[:, :, :3])).convert("RGB")
    image = image.resize((spec.input_size, spec.input_size), Image.Resampling.BILINEAR)
    array = np.asarray(image, dtype=np.float32) / 255.0
    array = (array - np.array(spec.mean, dtype=np.float32)) / np.array(spec.std, dtype=np.float32)
    return array.transpose(2, 0, 1)[np.newaxis, ...].astype(np.float32)


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    result: NDArray[np.float32] = exp / exp.sum()
    return result


class OnnxImageClassifier:
    """Provider that classifies images with a locally cached ONNX model."""

    def __init__(self, model_name: str, manager: ModelManager, top_k: int = DEFAULT_TOP_K) -> None:
        self._spec = get_spec(model_name)
        self._manager = manager
        self._top_k = top_k

    @property
    def name(self) -> str:
        return f"onnx:{self._spec.name}"

    def classify_labels(self, image: ResolvedImage) -> list[Label]:
        try:
            session = self._manager.get_session(self._spec.name)
            labels = self._manager.get_labels(self._spec.name)
        except (OSError, RuntimeError) as exc:
            raise ProviderUnavailable(self.name, f"model unavailable: {exc}") from exc
        except (ValueError, KeyError) as exc:
            raise ProviderMalformedResponse(self.name, f"model config unusable: {exc}") from exc

        tensor = preprocess(image.pixels, self._spec)
        input_name = session.get_inputs()[0].name
        try:
            outputs = session.run(None, {input_name: tensor})
        except Exception as exc:  # onnxruntime raises its own non-exported exception types
            raise ProviderUnavailable(self.name, f"inference failed: {exc}") from exc

        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.shape[0] != len(labels):
            raise ProviderMalformedResponse(
                self.name, f"expected {len(labels)} logits, got {logits.shape[0]}"
            )

        scores = softmax(logits)
        top = np.argsort(scores)[::-1][: self._top_k]
        return [Label(label=labels[int(i)], score=float(scores[int(i)])) for i in top]

    def detect_objects(self, image: ResolvedImage) -> list[DetectedObject]:
        return []
