"""Tests for ensemble color voting."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest
from conftest import FakeProvider, labels, resolved

from chromatag.classification.cascade import direct_candidates
from chromatag.classification.colors import normalize
from chromatag.classification.ensemble import (
    DEFAULT_SOURCE,
    VOTE_SOURCE,
    EnsembleAggregator,
    label_colors,
    tokenize,
    vote_colors,
)
from chromatag.classification.types import Label, ResolvedImage
from chromatag.errors import ProviderUnavailable
from chromatag.ml.inference import InferencePool


class TestLabelColors:
    def test_tokenize(self) -> None:
        assert tokenize("Navy-Blue, sweater") == ["navy-blue", "sweater"]

    def test_distinct_colors_in_order(self) -> None:
        assert label_colors("red scarlet dress") == ["red"]
        assert label_colors("blue and red jean") == ["blue", "red"]
        assert label_colors("laptop") == []

    def test_product_nouns_are_not_colors(self) -> None:
        assert normalize("sandal") == "beige"
        for label in ("sandal", "tank top", "laser printer", "sink", "crash helmet", "iron, smoothing iron"):
            assert label_colors(label) == [], label
        assert label_colors("tan sandal") == ["brown"]

    def test_product_noun_does_not_win_direct_stage(self) -> None:
        assert direct_candidates(labels(("sandal", 0.8), ("black loafer", 0.1)))[0].name == "black"


class TestVoteColors:
    def test_rank_weighted_and_normalized_by_attempted(self) -> None:
        results = [
            labels(("red dress", 0.1), ("blue jean", 0.9)),
            labels(("navy sweater", 0.6)),
        ]
        candidates = vote_colors(results, providers_attempted=3)
        assert [c.name for c in candidates] == ["blue", "red"]
        assert candidates[0].confidence == pytest.approx(2 / 3)
        assert candidates[1].confidence == pytest.approx(0.5 / 3)
        assert all(c.source == VOTE_SOURCE for c in candidates)
        assert candidates[0].rgb_approx == (0, 0, 255)

    def test_attempted_defaults_to_answered(self) -> None:
        candidates = vote_colors([labels(("green shirt", 0.9))])
        assert candidates[0].name == "green"
        assert candidates[0].confidence == 1.0

    def test_confidence_is_clamped(self) -> None:
        candidates = vote_colors([labels(("red dress", 0.9), ("crimson gown", 0.5))])
        assert candidates[0].confidence == 1.0

    def test_color_counted_once_per_label(self) -> None:
        candidates = vote_colors([labels(("red scarlet dress", 0.9))], providers_attempted=2)
        assert candidates[0].confidence == pytest.approx(0.5)

    def test_ties_keep_first_seen_order(self) -> None:
        candidates = vote_colors([labels(("green shirt", 0.9)), labels(("blue jean", 0.9))])
        assert [c.name for c in candidates] == ["green", "blue"]
        assert candidates[0].confidence == candidates[1].confidence

    def test_no_votes_uses_category_default(self) -> None:
        candidates = vote_colors([labels(("laptop", 0.9))], category="footwear")
        assert len(candidates) == 1
        assert candidates[0].name == "black"
        assert candidates[0].source == DEFAULT_SOURCE
        assert candidates[0].confidence == pytest.approx(0.1)

    def test_item_default_beats_category_default(self) -> None:
        candidates = vote_colors([], category="tops", labels=["jersey, T-shirt, tee shirt"])
        assert candidates[0].name == "white"

    def test_no_votes_and_no_default_is_unknown(self) -> None:
        candidates = vote_colors([], category="other")
        assert [(c.name, c.confidence) for c in candidates] == [("unknown", 0.0)]
        assert vote_colors([])[0].name == "unknown"


class TestEnsembleAggregator:
    async def test_failed_provider_lowers_confidence(self, pool: InferencePool) -> None:
        good = FakeProvider("good", labels(("blue jean", 0.9)))
        bad = FakeProvider("bad", error=ProviderUnavailable("bad", "down"))
        aggregator = EnsembleAggregator([good, bad], pool, timeout=2.0)

        outcome = await aggregator.vote(resolved())

        assert outcome.attempted == 2
        assert outcome.succeeded == 1
        assert outcome.candidates[0].name == "blue"
        assert outcome.candidates[0].confidence == pytest.approx(0.5)
        assert [r.ok for r in outcome.reports] == [True, False]
        assert outcome.reports[1].error == "bad: down"
        assert outcome.reports[0].colors == ["blue"]

    async def test_all_providers_failed(self, pool: InferencePool) -> None:
        providers = [FakeProvider(f"p{i}", error=ProviderUnavailable(f"p{i}", "down")) for i in range(3)]
        aggregator = EnsembleAggregator(providers, pool, timeout=2.0)

        outcome = await aggregator.vote(resolved(), category="bags")

        assert outcome.succeeded == 0
        assert outcome.candidates[0].name == "black"
        assert outcome.candidates[0].source == DEFAULT_SOURCE

    async def test_slow_provider_times_out(self, pool: InferencePool) -> None:
        class SlowProvider(FakeProvider):
            def classify_labels(self, image: ResolvedImage) -> list[Label]:
                time.sleep(0.5)
                return super().classify_labels(image)

        fast = FakeProvider("fast", labels(("red dress", 0.9)))
        slow = SlowProvider("slow", labels(("blue jean", 0.9)))
        aggregator = EnsembleAggregator([fast, slow], pool, timeout=0.1)

        outcome = await aggregator.vote(resolved())

        assert outcome.succeeded == 1
        assert [c.name for c in outcome.candidates] == ["red"]
        assert "timed out" in (outcome.reports[1].error or "")

    async def test_unexpected_error_is_recorded_and_skipped(self, pool: InferencePool) -> None:
        broken = MagicMock()
        broken.name = "broken"
        broken.classify_labels.side_effect = RuntimeError("boom")
        healthy = FakeProvider("healthy", labels(("red dress", 0.9)))
        aggregator = EnsembleAggregator([healthy, broken], pool, timeout=2.0)

        outcome = await aggregator.vote(resolved())

        assert outcome.succeeded == 1
        assert [c.name for c in outcome.candidates] == ["red"]
        assert outcome.candidates[0].confidence == pytest.approx(0.5)
        assert outcome.reports[1].ok is False
        assert outcome.reports[1].error == "RuntimeError: boom"

    def test_provider_names(self, pool: InferencePool) -> None:
        aggregator = EnsembleAggregator([FakeProvider("a"), FakeProvider("b")], pool, timeout=1.0)
        assert aggregator.provider_names == ["a", "b"]
