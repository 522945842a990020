"""Tests for the OpenAI vision provider."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest
from conftest import labels, make_settings, resolved

from chromatag.classification.cascade import ClassificationPipeline, DirectStrategy, direct_candidates
from chromatag.classification.categories import match_category
from chromatag.classification.quota import InMemoryQuotaStore, UsageTracker
from chromatag.classification.types import ResolvedImage
from chromatag.errors import ProviderMalformedResponse, ProviderUnavailable
from chromatag.main import build_pipeline
from chromatag.ml.inference import InferencePool
from chromatag.ml.preprocessing import PillowImageLoader
from chromatag.ml.vision import OpenAIVisionProvider, image_url, parse_vision_answer

ANSWER = {
    "objectType": "running shoes",
    "category": "shoes",
    "color": "red",
    "colorOptions": [
        {"color": "white", "confidence": 0.15},
        {"color": "red", "confidence": 0.8},
        {"color": "black", "confidence": 0.05},
    ],
}

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _client(content: str | None) -> MagicMock:
    client = MagicMock()
    message = SimpleNamespace(content=content)
    client.chat.completions.create.return_value = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    return client


class TestParseVisionAnswer:
    def test_full_answer(self) -> None:
        answer = parse_vision_answer("v", json.dumps(ANSWER))
        assert answer.object_type == "running shoes"
        assert answer.category == "shoes"
        assert answer.color_options[1] == ("red", 0.8)

    def test_json_inside_prose(self) -> None:
        content = "Here you go:\n```json\n" + json.dumps(ANSWER) + "\n```"
        assert parse_vision_answer("v", content).color == "red"

    def test_primary_color_only(self) -> None:
        answer = parse_vision_answer("v", '{"objectType": "mug", "category": "kitchen", "color": "blue"}')
        assert answer.labels()[0] == labels(("blue mug", 0.95))[0]

    @pytest.mark.parametrize(
        "content",
        [
            None,
            "",
            "I cannot see an image.",
            "{not json}",
            "[1, 2]",
            '{"objectType": "mug", "category": "kitchen"}',
            '{"color": 7}',
            '{"color": "red", "colorOptions": "red"}',
            '{"color": "red", "colorOptions": [{"color": "red", "confidence": "high"}]}',
        ],
    )
    def test_malformed(self, content: str | None) -> None:
        with pytest.raises(ProviderMalformedResponse):
            parse_vision_answer("v", content)

    def test_labels_feed_color_and_category(self) -> None:
        ranked = parse_vision_answer("v", json.dumps(ANSWER)).labels()

        assert [item.label for item in ranked[:3]] == [
            "red running shoes",
            "white running shoes",
            "black running shoes",
        ]
        candidates = direct_candidates(ranked)
        assert candidates[0].name == "red"
        assert candidates[0].confidence == pytest.approx(0.8)
        assert match_category(ranked).category == "footwear"


class TestOpenAIVisionProvider:
    def test_classify_labels(self) -> None:
        client = _client(json.dumps(ANSWER))
        provider = OpenAIVisionProvider("gpt-4o-mini", client=client)

        result = provider.classify_labels(resolved())

        assert provider.name == "openai:gpt-4o-mini"
        assert result[0].label == "red running shoes"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        parts = kwargs["messages"][0]["content"]
        assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_remote_url_is_passed_through(self) -> None:
        base = resolved()
        image = ResolvedImage(content=base.content, pixels=base.pixels, url="https://cdn.example.com/shoe.png")
        assert image_url(image) == "https://cdn.example.com/shoe.png"

    @pytest.mark.parametrize(
        "error",
        [
            openai.APITimeoutError(request=REQUEST),
            openai.APIConnectionError(request=REQUEST),
            openai.RateLimitError("rate limited", response=httpx.Response(429, request=REQUEST), body=None),
            openai.InternalServerError("bad gateway", response=httpx.Response(502, request=REQUEST), body=None),
        ],
    )
    def test_api_errors_are_unavailable(self, error: Exception) -> None:
        client = MagicMock()
        client.chat.completions.create.side_effect = error
        provider = OpenAIVisionProvider("gpt-4o-mini", client=client)

        with pytest.raises(ProviderUnavailable) as exc_info:
            provider.classify_labels(resolved())

        assert exc_info.value.provider == "openai:gpt-4o-mini"

    def test_unparseable_completion_is_malformed(self) -> None:
        provider = OpenAIVisionProvider("gpt-4o-mini", client=_client("Sorry, I can't help with that."))
        with pytest.raises(ProviderMalformedResponse, match="no JSON"):
            provider.classify_labels(resolved())

    def test_no_choices(self) -> None:
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(choices=[])
        provider = OpenAIVisionProvider("gpt-4o-mini", client=client)
        with pytest.raises(ProviderMalformedResponse, match="no choices"):
            provider.classify_labels(resolved())

    def test_no_detection(self) -> None:
        assert OpenAIVisionProvider(client=MagicMock()).detect_objects(resolved()) == []


class TestDirectProviderWiring:
    def _pipeline(self, pool: InferencePool, **overrides: object) -> ClassificationPipeline:
        settings = make_settings(**overrides)
        return build_pipeline(
            settings,
            pool,
            UsageTracker(InMemoryQuotaStore(), 10),
            PillowImageLoader(settings),
        )

    def test_vision_model_used_when_key_configured(self, pool: InferencePool) -> None:
        pipeline = self._pipeline(pool, openai_api_key="sk-test", vision_model="gpt-4o")
        direct = pipeline.strategies[0]
        assert isinstance(direct, DirectStrategy)
        assert direct.provider_name == "openai:gpt-4o"

    def test_hosted_model_without_key(self, pool: InferencePool) -> None:
        pipeline = self._pipeline(pool, openai_api_key=None)
        direct = pipeline.strategies[0]
        assert isinstance(direct, DirectStrategy)
        assert direct.provider_name == "hf:google/vit-base-patch16-224"
