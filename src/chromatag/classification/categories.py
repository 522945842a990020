"""Category taxonomy: map provider labels onto canonical product categories."""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import TYPE_CHECKING

from chromatag.classification.rules import DEFAULT_RULES, evaluate_rules, first_forced_category
from chromatag.classification.types import CategoryMatch, ClassificationCandidate

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from chromatag.classification.rules import OverrideRule
    from chromatag.classification.types import Label

OTHER = "other"


def _keywords(*words: str) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})(?:e?s)?\b")


# Order matters: the first group whose pattern matches a label wins, so
# narrow families sit above the generic ones they would otherwise fall into.
CATEGORY_KEYWORDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("footwear", _keywords("clog", "croc", "geta", "patten", "sabot")),
    (
        "footwear",
        _keywords(
            "shoe", "sneaker", "trainer", "loafer", "boot", "sandal", "slipper", "heel",
            "moccasin", "espadrille", "flip-flop", "brogue", "stiletto", "footwear",
        ),
    ),
    ("books", _keywords("book", "novel", "textbook", "comic", "magazine")),
    ("tickets", _keywords("ticket", "boarding pass", "voucher", "admission")),
    ("dresses", _keywords("dress", "gown", "sundress", "abaya", "kimono", "overskirt", "hoopskirt")),
    (
        "outerwear",
        _keywords(
            "jacket", "coat", "parka", "blazer", "cardigan", "hoodie", "anorak", "poncho",
            "fleece", "windbreaker", "raincoat", "vest",
        ),
    ),
    (
        "tops",
        _keywords(
            "t-shirt", "tshirt", "tee", "shirt", "sweatshirt", "blouse", "top", "jersey",
            "sweater", "pullover", "polo", "camisole", "tank top", "clothing",
        ),
    ),
    (
        "bottoms",
        _keywords(
            "jean", "denim", "pant", "trouser", "short", "skirt", "miniskirt", "legging",
            "chino", "jogger", "sweatpant", "swimming trunk",
        ),
    ),
    (
        "bags",
        _keywords("bag", "backpack", "purse", "handbag", "mailbag", "tote", "wallet", "clutch", "satchel"),
    ),
    ("jewelry", _keywords("necklace", "bracelet", "earring", "ring", "pendant", "jewel", "jewelry", "brooch")),
    (
        "accessories",
        _keywords(
            "hat", "cap", "beanie", "scarf", "glove", "mitten", "belt", "sunglass", "tie",
            "bow tie", "watch", "wristwatch", "umbrella", "sombrero", "bonnet", "stole",
        ),
    ),
    (
        "electronics",
        _keywords(
            "electronics", "phone", "smartphone", "telephone", "laptop", "computer", "notebook",
            "tablet", "ipod", "monitor", "television", "tv", "camera", "headphone", "earphone",
            "speaker", "keyboard", "console", "joystick", "remote control", "charger",
        ),
    ),
    (
        "kitchen",
        _keywords(
            "kitchen", "appliance", "cookware", "pan", "frying pan", "wok", "pot", "teapot",
            "kettle", "toaster", "microwave", "blender", "mug", "cup", "plate", "bowl",
            "spatula", "dutch oven", "crockpot",
        ),
    ),
    (
        "home",
        _keywords(
            "lamp", "lampshade", "lamp shade", "pillow", "quilt", "blanket", "curtain", "rug",
            "vase", "chair", "sofa", "couch", "candle", "clock", "mirror", "picture frame",
        ),
    ),
    (
        "sports",
        _keywords(
            "ball", "basketball", "football", "soccer ball", "tennis", "racket", "dumbbell",
            "bicycle", "skateboard", "helmet", "yoga mat", "ski",
        ),
    ),
    ("toys", _keywords("toy", "teddy", "doll", "lego", "puzzle", "plush", "action figure")),
)

CATEGORIES: frozenset[str] = frozenset(name for name, _ in CATEGORY_KEYWORDS)

# Fallback colors when every color stage fails. Item keywords are checked
# against the labels first, then the category table.
ITEM_DEFAULT_COLORS: tuple[tuple[re.Pattern[str], str], ...] = (
    (_keywords("t-shirt", "tshirt", "tee shirt", "lab coat", "wedding dress", "wedding gown"), "white"),
    (_keywords("jean", "denim"), "blue"),
    (_keywords("leather", "cowboy boot", "saddle"), "brown"),
    (_keywords("tuxedo", "suit", "tux"), "black"),
    (_keywords("trench coat", "trench"), "beige"),
)

CATEGORY_DEFAULT_COLORS: Mapping[str, str] = MappingProxyType(
    {
        "footwear": "black",
        "tops": "white",
        "bottoms": "blue",
        "dresses": "black",
        "outerwear": "black",
        "bags": "black",
        "accessories": "black",
        "jewelry": "yellow",
        "electronics": "black",
        "kitchen": "gray",
        "home": "white",
        "books": "multicolor",
        "tickets": "white",
        "sports": "white",
        "toys": "multicolor",
    }
)


def is_category(name: str) -> bool:
    return name in CATEGORIES or name == OTHER


def _ranked(labels: Iterable[Label]) -> list[Label]:
    return sorted(labels, key=lambda item: item.score, reverse=True)


def category_for_label(label: str) -> str | None:
    """Return the first category whose keyword family matches ``label``."""
    text = label.lower()
    for category, pattern in CATEGORY_KEYWORDS:
        if pattern.search(text):
            return category
    return None


def match_category(
    labels: Iterable[Label],
    rules: Sequence[OverrideRule] = DEFAULT_RULES,
) -> CategoryMatch:
    """Match ranked provider labels against the category taxonomy.

    Labels are tested in descending score order and the first keyword hit
    wins. A rule that forces a category (the clog family forces footwear)
    takes precedence over the generic match.
    """
    ranked = _ranked(labels)

    forced = first_forced_category(evaluate_rules((item.label for item in ranked), rules))
    if forced is not None and forced.rule.forced_category is not None:
        score = next((item.score for item in ranked if item.label == forced.label), forced.rule.confidence)
        return CategoryMatch(
            category=forced.rule.forced_category,
            matched_label=forced.label,
            confidence=score,
            rule=forced.rule.name,
        )

    for item in ranked:
        category = category_for_label(item.label)
        if category is not None:
            return CategoryMatch(category=category, matched_label=item.label, confidence=item.score)

    return CategoryMatch(category=OTHER, matched_label=None, confidence=0.0)


def classification_candidates(labels: Iterable[Label], provider: str) -> list[ClassificationCandidate]:
    """Map every label to its category, keeping unmatched labels as ``other``."""
    return [
        ClassificationCandidate(
            label=item.label,
            category=category_for_label(item.label) or OTHER,
            score=item.score,
            provider=provider,
        )
        for item in _ranked(labels)
    ]


def default_color(category: str, labels: Iterable[str] = ()) -> tuple[str, str] | None:
    """Return ``(color, key)`` from the default tables, or None.

    ``key`` is the matched item keyword or the category name.
    """
    for text in labels:
        lowered = text.lower()
        for pattern, color in ITEM_DEFAULT_COLORS:
            found = pattern.search(lowered)
            if found:
                return color, found.group(0)
    color = CATEGORY_DEFAULT_COLORS.get(category)
    if color is None:
        return None
    return color, category
