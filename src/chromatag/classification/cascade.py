"""Fallback cascade: resolve category and color for one product photo.

    resolve input -> quota -> category labels + detections -> category match
    -> override rules -> direct -> ensemble -> pixel -> category default

Color strategies run in order and the first one that produces candidates
wins; answers from different strategies are never blended. Provider errors
mark a single strategy as failed and the cascade moves on. Only bad input
and an exhausted quota reach the caller as exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from chromatag.classification.categories import classification_candidates, default_color, match_category
from chromatag.classification.colors import UNKNOWN, approximate_rgb
from chromatag.classification.ensemble import CATEGORY_DEFAULT_CONFIDENCE, DEFAULT_SOURCE, label_colors
from chromatag.classification.pixel import GRID_SIZE, extract_color
from chromatag.classification.rules import DEFAULT_RULES, evaluate_rules, first_forced_color
from chromatag.classification.types import (
    ClassificationResult,
    ColorCandidate,
    DetectedObject,
    Label,
    sort_candidates,
)
from chromatag.errors import ProviderError, QuotaExceeded
from chromatag.ml.preprocessing import resolve_image

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chromatag.classification.ensemble import EnsembleAggregator
    from chromatag.classification.quota import UsageTracker
    from chromatag.classification.rules import OverrideRule
    from chromatag.classification.types import Box, CategoryMatch, ImageSource, ResolvedImage
    from chromatag.ml.inference import InferencePool
    from chromatag.ml.preprocessing import ImageLoader
    from chromatag.ml.providers import InferenceProvider

logger = logging.getLogger(__name__)

DIRECT_SOURCE = "direct"
PIXEL_SOURCE = "pixel"
RULE_SOURCE = "rule"


# ---------------------------------------------------------------------------
# Strategy contract
# ---------------------------------------------------------------------------


@dataclass
class ClassificationContext:
    """Everything a color strategy may look at for one request."""

    image: ResolvedImage
    category: CategoryMatch
    labels: list[Label] = field(default_factory=list)
    detections: list[DetectedObject] = field(default_factory=list)

    @property
    def region(self) -> Box | None:
        """Box of the most confident detection, used as pixel region of interest."""
        return self.detections[0].box if self.detections else None

    @property
    def label_texts(self) -> list[str]:
        return [item.label for item in self.labels] + [item.label for item in self.detections]


@dataclass
class StageOutcome:
    """What a strategy produced; empty ``candidates`` means it failed."""

    candidates: list[ColorCandidate] = field(default_factory=list)
    reason: str | None = None
    trace: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return bool(self.candidates)

    @classmethod
    def failed(cls, reason: str, **trace: Any) -> StageOutcome:
        return cls(candidates=[], reason=reason, trace=trace)


class ColorStrategy(Protocol):
    """One step of the cascade."""

    @property
    def name(self) -> str: ...

    async def attempt(self, context: ClassificationContext) -> StageOutcome:
        """Try to name the color; may raise ``ProviderError``."""
        ...


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def direct_candidates(labels: Sequence[Label]) -> list[ColorCandidate]:
    """First color named by each label, scored by that label, best score per color."""
    best: dict[str, float] = {}
    for item in labels:
        colors = label_colors(item.label)
        if not colors:
            continue
        color = colors[0]
        best[color] = max(best.get(color, 0.0), min(max(item.score, 0.0), 1.0))
    return sort_candidates(
        [
            ColorCandidate(name=color, confidence=score, rgb_approx=approximate_rgb(color), source=DIRECT_SOURCE)
            for color, score in best.items()
        ]
    )


class DirectStrategy:
    """Single fast color call to one provider."""

    name = "direct"

    def __init__(self, provider: InferenceProvider, pool: InferencePool, timeout: float, min_confidence: float) -> None:
        self._provider = provider
        self._pool = pool
        self._timeout = timeout
        self._min_confidence = min_confidence

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def attempt(self, context: ClassificationContext) -> StageOutcome:
        labels = await self._pool.call(
            self._provider.name, self._provider.classify_labels, context.image, timeout=self._timeout
        )
        candidates = direct_candidates(labels)
        trace = {"provider": self._provider.name, "top_labels": [item.label for item in labels[:5]]}
        if not candidates:
            return StageOutcome.failed("no color terms in provider labels", **trace)
        if candidates[0].confidence <= self._min_confidence:
            return StageOutcome.failed(
                f"top confidence {candidates[0].confidence:.2f} not above {self._min_confidence:.2f}",
                **trace,
            )
        return StageOutcome(candidates=candidates, trace=trace)


class EnsembleStrategy:
    """Rank-weighted vote across several providers."""

    name = "ensemble"

    def __init__(self, aggregator: EnsembleAggregator, min_confidence: float) -> None:
        self._aggregator = aggregator
        self._min_confidence = min_confidence

    async def attempt(self, context: ClassificationContext) -> StageOutcome:
        outcome = await self._aggregator.vote(context.image)
        trace = outcome.to_dict()
        if outcome.succeeded == 0:
            return StageOutcome.failed(f"all {outcome.attempted} providers failed", **trace)
        top = outcome.candidates[0]
        if top.name == UNKNOWN:
            return StageOutcome.failed("no color votes", **trace)
        if top.confidence <= self._min_confidence:
            return StageOutcome.failed(
                f"top confidence {top.confidence:.2f} not above {self._min_confidence:.2f}",
                **trace,
            )
        return StageOutcome(candidates=outcome.candidates, trace=trace)


class PixelStrategy:
    """Center-weighted pixel analysis of the detected object or whole image."""

    name = "pixel"

    def __init__(self, pool: InferencePool, timeout: float, grid_size: int = GRID_SIZE) -> None:
        self._pool = pool
        self._timeout = timeout
        self._grid_size = grid_size

    async def attempt(self, context: ClassificationContext) -> StageOutcome:
        try:
            result = await self._pool.call(
                self.name,
                extract_color,
                context.image.pixels,
                context.region,
                self._grid_size,
                timeout=self._timeout,
            )
        except ValueError as exc:
            return StageOutcome.failed(f"pixel analysis failed: {exc}")

        trace = result.analysis.to_dict()
        if result.color == UNKNOWN:
            return StageOutcome.failed("no valid pixels after white/black exclusion", **trace)
        rgb = result.analysis.rgb or approximate_rgb(result.color)
        candidate = ColorCandidate(
            name=result.color,
            confidence=result.confidence,
            rgb_approx=rgb,
            source=PIXEL_SOURCE,
        )
        return StageOutcome(candidates=[candidate], trace=trace)


class CategoryDefaultStrategy:
    """Terminal lookup of a fallback color per item or category; always answers."""

    name = "category-default"

    async def attempt(self, context: ClassificationContext) -> StageOutcome:
        fallback = default_color(context.category.category, context.label_texts)
        if fallback is None:
            candidate = ColorCandidate(
                name=UNKNOWN, confidence=0.0, rgb_approx=approximate_rgb(UNKNOWN), source=DEFAULT_SOURCE
            )
            return StageOutcome(candidates=[candidate], trace={"key": None})
        color, key = fallback
        candidate = ColorCandidate(
            name=color,
            confidence=CATEGORY_DEFAULT_CONFIDENCE,
            rgb_approx=approximate_rgb(color),
            source=DEFAULT_SOURCE,
        )
        return StageOutcome(candidates=[candidate], trace={"key": key})


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


def _fallback_candidate() -> ColorCandidate:
    return ColorCandidate(name=UNKNOWN, confidence=0.0, rgb_approx=approximate_rgb(UNKNOWN), source=DEFAULT_SOURCE)


class ClassificationPipeline:
    """Runs the full category + color cascade for one image at a time."""

    def __init__(
        self,
        *,
        loader: ImageLoader,
        tracker: UsageTracker,
        pool: InferencePool,
        category_provider: InferenceProvider,
        strategies: Sequence[ColorStrategy],
        detection_provider: InferenceProvider | None = None,
        rules: Sequence[OverrideRule] = DEFAULT_RULES,
        provider_timeout: float = 10.0,
    ) -> None:
        self._loader = loader
        self._tracker = tracker
        self._pool = pool
        self._category_provider = category_provider
        self._detection_provider = detection_provider
        self._strategies = list(strategies)
        self._rules = tuple(rules)
        self._timeout = provider_timeout

    @property
    def strategies(self) -> tuple[ColorStrategy, ...]:
        return tuple(self._strategies)

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def classify(self, source: ImageSource) -> ClassificationResult:
        """Classify one image.

        Raises:
            UnsupportedInputFormat: The source is not a decodable image or URL.
            ImageFetchError: A well-formed URL could not be downloaded.
            QuotaExceeded: The monthly budget is exhausted; no provider is called.
        """
        image = await self._pool.run(resolve_image, source, self._loader)

        decision = await self._pool.run(self._tracker.try_consume)
        if not decision.allowed:
            snapshot = await self._pool.run(self._tracker.snapshot)
            logger.warning("Quota exhausted for %s (limit %d)", snapshot.period, snapshot.limit)
            raise QuotaExceeded(snapshot.period, snapshot.limit)

        trace: dict[str, Any] = {"quota_remaining": decision.remaining, "stages": []}

        labels, detections = await asyncio.gather(
            self._classify_labels(image, trace),
            self._detect_objects(image, trace),
        )
        category = match_category(labels + [Label(item.label, item.score) for item in detections], self._rules)
        context = ClassificationContext(image=image, category=category, labels=labels, detections=detections)

        trace["category"] = {
            "category": category.category,
            "matched_label": category.matched_label,
            "confidence": category.confidence,
            "rule": category.rule,
        }
        trace["classification"] = [
            {"label": c.label, "category": c.category, "score": c.score, "provider": c.provider}
            for c in classification_candidates(labels, self._category_provider.name)[:5]
        ]
        trace["detections"] = [{"label": d.label, "score": d.score, "box": list(d.box)} for d in detections[:5]]

        candidates, winner = await self._resolve_color(context, trace)
        trace["winner"] = winner

        top = candidates[0]
        logger.info(
            "Classified image as %s/%s (%.2f) via %s",
            category.category,
            top.name,
            top.confidence,
            winner,
        )
        return ClassificationResult(
            category=category.category,
            color=top.name,
            confidence=top.confidence,
            candidates=candidates,
            object_detected=self._object_detected(context),
            debug_trace=trace,
        )

    async def _classify_labels(self, image: ResolvedImage, trace: dict[str, Any]) -> list[Label]:
        provider = self._category_provider
        try:
            return await self._pool.call(provider.name, provider.classify_labels, image, timeout=self._timeout)
        except ProviderError as exc:
            logger.warning("Category provider failed: %s", exc)
            trace["category_error"] = str(exc)
            return []
        except Exception as exc:
            logger.exception("Category provider %s raised unexpectedly", provider.name)
            trace["category_error"] = f"{type(exc).__name__}: {exc}"
            return []

    async def _detect_objects(self, image: ResolvedImage, trace: dict[str, Any]) -> list[DetectedObject]:
        provider = self._detection_provider
        if provider is None:
            return []
        try:
            return await self._pool.call(provider.name, provider.detect_objects, image, timeout=self._timeout)
        except ProviderError as exc:
            logger.warning("Detection provider failed: %s", exc)
            trace["detection_error"] = str(exc)
            return []
        except Exception as exc:
            logger.exception("Detection provider %s raised unexpectedly", provider.name)
            trace["detection_error"] = f"{type(exc).__name__}: {exc}"
            return []

    async def _resolve_color(
        self, context: ClassificationContext, trace: dict[str, Any]
    ) -> tuple[list[ColorCandidate], str]:
        hits = evaluate_rules(context.label_texts, self._rules)
        trace["rules"] = [{"rule": hit.rule.name, "label": hit.label} for hit in hits]
        forced = first_forced_color(hits)
        if forced is not None and forced.rule.forced_color is not None:
            color = forced.rule.forced_color
            candidate = ColorCandidate(
                name=color,
                confidence=forced.rule.confidence,
                rgb_approx=approximate_rgb(color),
                source=RULE_SOURCE,
            )
            return [candidate], f"rule:{forced.rule.name}"

        stages: list[dict[str, Any]] = trace["stages"]
        for strategy in self._strategies:
            try:
                outcome = await strategy.attempt(context)
            except ProviderError as exc:
                logger.warning("Stage %s failed: %s", strategy.name, exc)
                stages.append({"stage": strategy.name, "status": "error", "reason": str(exc)})
                continue
            except Exception as exc:
                logger.exception("Stage %s raised unexpectedly", strategy.name)
                stages.append({"stage": strategy.name, "status": "error", "reason": f"{type(exc).__name__}: {exc}"})
                continue

            if not outcome.succeeded:
                logger.info("Stage %s produced no answer: %s", strategy.name, outcome.reason)
                stages.append(
                    {"stage": strategy.name, "status": "failed", "reason": outcome.reason, "trace": outcome.trace}
                )
                continue

            stages.append({"stage": strategy.name, "status": "ok", "trace": outcome.trace})
            return sort_candidates(outcome.candidates), strategy.name

        return [_fallback_candidate()], "none"

    @staticmethod
    def _object_detected(context: ClassificationContext) -> str | None:
        if context.detections:
            return context.detections[0].label
        if context.category.matched_label is not None:
            return context.category.matched_label
        if context.labels:
            return context.labels[0].label
        return None
