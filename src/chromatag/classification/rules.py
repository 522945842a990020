"""Prioritized override rules evaluated before the generic pipeline.

Known confusable product types and print families are handled here as data
instead of as branches inside the stages. A rule can force the category,
the color, or both.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


@dataclass(frozen=True)
class OverrideRule:
    """A label pattern and the values it forces when it matches."""

    name: str
    pattern: re.Pattern[str]
    forced_category: str | None = None
    forced_color: str | None = None
    confidence: float = 0.9

    def matches(self, label: str) -> bool:
        return self.pattern.search(label.lower()) is not None


@dataclass(frozen=True)
class RuleHit:
    """A rule together with the first label that triggered it."""

    rule: OverrideRule
    label: str


def _words(*words: str) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})(?:e?s)?\b")


DEFAULT_RULES: tuple[OverrideRule, ...] = (
    # Generic classifiers put clogs next to kitchenware and garden tools.
    OverrideRule(
        name="clog-family",
        pattern=_words("clog", "croc", "geta", "patten", "sabot"),
        forced_category="footwear",
        confidence=0.9,
    ),
    OverrideRule(
        name="camouflage-print",
        pattern=_words("camo", "camouflage", "leopard", "zebra", "tartan", "paisley", "houndstooth"),
        forced_color="patterned",
        confidence=0.8,
    ),
    OverrideRule(
        name="tie-dye",
        pattern=re.compile(r"\btie[- ]?dye"),
        forced_color="multicolor",
        confidence=0.8,
    ),
)


def evaluate_rules(labels: Iterable[str], rules: Sequence[OverrideRule] = DEFAULT_RULES) -> list[RuleHit]:
    """Return every rule that matches any label, in rule priority order."""
    texts = list(labels)
    hits: list[RuleHit] = []
    for rule in rules:
        for text in texts:
            if rule.matches(text):
                hits.append(RuleHit(rule=rule, label=text))
                break
    return hits


def first_forced_category(hits: Iterable[RuleHit]) -> RuleHit | None:
    return next((h for h in hits if h.rule.forced_category is not None), None)


def first_forced_color(hits: Iterable[RuleHit]) -> RuleHit | None:
    return next((h for h in hits if h.rule.forced_color is not None), None)
