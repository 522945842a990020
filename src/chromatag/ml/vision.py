"""Vision-LLM provider: one chat completion answers object, category and colors.

The model is asked for a small JSON document::

    {"objectType": "running shoes", "category": "shoes", "color": "red",
     "colorOptions": [{"color": "red", "confidence": 0.8}, ...]}

and the answer is flattened into ranked labels such as ``"red running shoes"``
so the category matcher and color normalizer read it like any other provider.
"""

from __future__ import annotations

import base64
import io
import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import openai
from PIL import Image, UnidentifiedImageError

from chromatag.classification.types import DetectedObject, Label
from chromatag.errors import ProviderMalformedResponse, ProviderUnavailable

if TYPE_CHECKING:
    from chromatag.classification.types import ResolvedImage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
PRIMARY_COLOR_CONFIDENCE = 0.95

PROMPT = """\
Analyze this product photo and identify:
1. The main object in the image.
2. Its category. Choose one: clothes, shoes, bags, accessories, jewelry, electronics, kitchen, home, books,
   sports, toys, tickets, other.
3. The dominant color of the main object, as a basic color name (e.g. "red", not "crimson").
4. Three possible colors for the object with confidences that sum to about 1.

Respond with JSON only, in this shape:
{
  "objectType": "generic object name, e.g. running shoes",
  "category": "one of the categories above",
  "color": "basic color name",
  "colorOptions": [
    {"color": "primary color", "confidence": 0.8},
    {"color": "secondary color", "confidence": 0.15},
    {"color": "tertiary color", "confidence": 0.05}
  ]
}
"""


@dataclass(frozen=True)
class VisionAnswer:
    object_type: str
    category: str
    color: str
    color_options: list[tuple[str, float]] = field(default_factory=list)

    def labels(self) -> list[Label]:
        """Flatten into ranked ``"<color> <object>"`` labels plus the category word."""
        options = self.color_options or [(self.color, PRIMARY_COLOR_CONFIDENCE)]
        ranked = [Label(label=f"{color} {self.object_type}".strip(), score=score) for color, score in options]
        ranked = sorted(ranked, key=lambda item: item.score, reverse=True)
        if self.category and ranked:
            ranked.append(Label(label=f"{self.object_type} {self.category}".strip(), score=ranked[-1].score))
        return ranked


def _text(provider: str, data: Mapping[str, Any], key: str) -> str:
    value = data.get(key, "")
    if not isinstance(value, str):
        raise ProviderMalformedResponse(provider, f"{key} is not a string: {value!r}")
    return value.strip()


def parse_vision_answer(provider: str, content: str | None) -> VisionAnswer:
    """Parse the JSON body of a completion.

    Models sometimes wrap the document in prose or a code fence, so the
    outermost ``{...}`` span is decoded.
    """
    if not content:
        raise ProviderMalformedResponse(provider, "empty completion")
    start, end = content.find("{"), content.rfind("}")
    if start < 0 or end <= start:
        raise ProviderMalformedResponse(provider, "no JSON object in completion")
    try:
        data = json.loads(content[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ProviderMalformedResponse(provider, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProviderMalformedResponse(provider, f"expected an object, got {type(data).__name__}")

    color = _text(provider, data, "color")
    raw_options = data.get("colorOptions") or []
    if not isinstance(raw_options, list):
        raise ProviderMalformedResponse(provider, "colorOptions is not a list")
    options: list[tuple[str, float]] = []
    for option in raw_options:
        if not isinstance(option, Mapping):
            raise ProviderMalformedResponse(provider, f"color option is not an object: {option!r}")
        name = _text(provider, option, "color")
        confidence = option.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, int | float):
            raise ProviderMalformedResponse(provider, f"confidence is not a number: {confidence!r}")
        if name:
            options.append((name, min(max(float(confidence), 0.0), 1.0)))

    if not color and not options:
        raise ProviderMalformedResponse(provider, "answer names no color")
    return VisionAnswer(
        object_type=_text(provider, data, "objectType"),
        category=_text(provider, data, "category"),
        color=color,
        color_options=options,
    )


def image_url(image: ResolvedImage) -> str:
    """Remote URL when the image came from one, otherwise a base64 data URL."""
    if image.url is not None:
        return image.url
    try:
        with Image.open(io.BytesIO(image.content)) as decoded:
            mime = decoded.get_format_mimetype() or "image/jpeg"
    except (UnidentifiedImageError, OSError):
        mime = "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(image.content).decode('ascii')}"


class OpenAIVisionProvider:
    """Provider backed by an OpenAI vision chat model."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        timeout: float | None = None,
        client: openai.OpenAI | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"openai:{self._model}"

    @property
    def client(self) -> openai.OpenAI:
        """Lazily created client, shared across worker threads."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    def analyze(self, image: ResolvedImage) -> VisionAnswer:
        try:
            response = self.client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": PROMPT},
                            {"type": "image_url", "image_url": {"url": image_url(image), "detail": "high"}},
                        ],
                    }
                ],
                temperature=0.0,
                max_tokens=500,
                response_format={"type": "json_object"},
            )
        except (openai.APIConnectionError, openai.APIStatusError) as exc:
            raise ProviderUnavailable(self.name, str(exc)) from exc
        except openai.OpenAIError as exc:
            raise ProviderMalformedResponse(self.name, str(exc)) from exc

        if not response.choices:
            raise ProviderMalformedResponse(self.name, "completion has no choices")
        answer = parse_vision_answer(self.name, response.choices[0].message.content)
        logger.debug("%s answered %s/%s (%s)", self.name, answer.object_type, answer.color, answer.category)
        return answer

    def classify_labels(self, image: ResolvedImage) -> list[Label]:
        return self.analyze(image).labels()

    def detect_objects(self, image: ResolvedImage) -> list[DetectedObject]:
        return []
