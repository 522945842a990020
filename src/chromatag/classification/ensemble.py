"""Ensemble color voting across several label providers.

Each provider returns ranked labels. Label words that normalize to a color
vote for it with weight ``1 / (rank + 1)``; totals are divided by the number
of providers attempted, so a failed provider lowers confidence instead of
being silently ignored.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chromatag.classification.categories import default_color
from chromatag.classification.colors import UNKNOWN, approximate_rgb, normalize
from chromatag.classification.types import ColorCandidate, sort_candidates
from chromatag.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from chromatag.classification.types import Label, ResolvedImage
    from chromatag.ml.inference import InferencePool
    from chromatag.ml.providers import InferenceProvider

logger = logging.getLogger(__name__)

VOTE_SOURCE = "ensemble-vote"
DEFAULT_SOURCE = "category-default"
CATEGORY_DEFAULT_CONFIDENCE = 0.1

_TOKEN_SPLIT = re.compile(r"[^a-z\-]+")

# Product nouns that contain a color synonym ("sandal" holds "sand", "tank"
# holds "tan"). On the label path they name the object, never its color.
PRODUCT_NOUNS: frozenset[str] = frozenset(
    {
        "sandal", "sandals", "tank", "tanks", "stand", "stands", "standard",
        "printer", "printers", "sink", "sinks", "washer", "dishwasher", "washbasin",
        "ashcan", "crash", "trash", "rink", "drink", "blinker", "jetliner",
        "tandem", "husky", "iron", "anchor", "pitcher", "inkpot",
    }
)


def tokenize(label: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(label.lower()) if token.strip("-")]


def label_colors(label: str) -> list[str]:
    """Distinct canonical colors named by the words of ``label``, in order."""
    colors: list[str] = []
    for token in tokenize(label):
        if token in PRODUCT_NOUNS:
            continue
        color = normalize(token)
        if color != UNKNOWN and color not in colors:
            colors.append(color)
    return colors


def vote_colors(
    provider_results: Sequence[Sequence[Label]],
    providers_attempted: int | None = None,
    category: str | None = None,
    labels: Iterable[str] = (),
) -> list[ColorCandidate]:
    """Aggregate ranked label lists into color candidates.

    Args:
        provider_results: One ranked label list per provider that answered.
        providers_attempted: Providers that were asked, failures included.
            Defaults to ``len(provider_results)``.
        category: When given and no color received a vote, the category
            default color is returned before falling back to ``"unknown"``.
        labels: Extra label text for the item-level default lookup.

    Returns:
        Candidates sorted by descending confidence, never empty.
    """
    attempted = providers_attempted if providers_attempted is not None else len(provider_results)
    votes: dict[str, float] = {}
    for ranked in provider_results:
        ordered = sorted(ranked, key=lambda item: item.score, reverse=True)
        for rank, item in enumerate(ordered):
            for color in label_colors(item.label):
                votes[color] = votes.get(color, 0.0) + 1.0 / (rank + 1)

    if votes and attempted > 0:
        return sort_candidates(
            [
                ColorCandidate(
                    name=color,
                    confidence=min(total / attempted, 1.0),
                    rgb_approx=approximate_rgb(color),
                    source=VOTE_SOURCE,
                )
                for color, total in votes.items()
            ]
        )

    if category is not None:
        fallback = default_color(category, labels)
        if fallback is not None:
            color, _ = fallback
            return [
                ColorCandidate(
                    name=color,
                    confidence=CATEGORY_DEFAULT_CONFIDENCE,
                    rgb_approx=approximate_rgb(color),
                    source=DEFAULT_SOURCE,
                )
            ]

    return [ColorCandidate(name=UNKNOWN, confidence=0.0, rgb_approx=approximate_rgb(UNKNOWN), source=VOTE_SOURCE)]


@dataclass
class ProviderReport:
    """Outcome of a single ensemble member, kept for the debug trace."""

    provider: str
    ok: bool
    top_labels: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "ok": self.ok,
            "top_labels": self.top_labels,
            "colors": self.colors,
            "error": self.error,
        }


@dataclass
class EnsembleOutcome:
    candidates: list[ColorCandidate]
    attempted: int
    succeeded: int
    reports: list[ProviderReport]

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "providers": [report.to_dict() for report in self.reports],
        }


class EnsembleAggregator:
    """Fans a label request out to every provider and votes on the answers."""

    def __init__(self, providers: Sequence[InferenceProvider], pool: InferencePool, timeout: float) -> None:
        self._providers = list(providers)
        self._pool = pool
        self._timeout = timeout

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    async def collect(self, image: ResolvedImage) -> tuple[list[list[Label]], list[ProviderReport]]:
        """Query every provider concurrently; failures become reports, not errors."""
        calls = [
            self._pool.call(provider.name, provider.classify_labels, image, timeout=self._timeout)
            for provider in self._providers
        ]
        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        results: list[list[Label]] = []
        reports: list[ProviderReport] = []
        for provider, outcome in zip(self._providers, outcomes, strict=True):
            if isinstance(outcome, ProviderError):
                logger.warning("Ensemble provider %s failed: %s", provider.name, outcome.message)
                reports.append(ProviderReport(provider=provider.name, ok=False, error=str(outcome)))
                continue
            if isinstance(outcome, Exception):
                logger.error(
                    "Ensemble provider %s raised unexpectedly",
                    provider.name,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                reports.append(
                    ProviderReport(provider=provider.name, ok=False, error=f"{type(outcome).__name__}: {outcome}")
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
            colors: list[str] = []
            for item in outcome:
                colors.extend(c for c in label_colors(item.label) if c not in colors)
            reports.append(
                ProviderReport(
                    provider=provider.name,
                    ok=True,
                    top_labels=[item.label for item in outcome[:3]],
                    colors=colors,
                )
            )
        return results, reports

    async def vote(self, image: ResolvedImage, category: str | None = None) -> EnsembleOutcome:
        results, reports = await self.collect(image)
        candidates = vote_colors(results, providers_attempted=len(self._providers), category=category)
        logger.debug(
            "Ensemble voted %s from %d/%d providers",
            [c.name for c in candidates],
            len(results),
            len(self._providers),
        )
        return EnsembleOutcome(
            candidates=candidates,
            attempted=len(self._providers),
            succeeded=len(results),
            reports=reports,
        )
