"""Color taxonomy: map raw color words onto canonical color buckets.

Buckets are tested in declaration order and the first one that matches
wins. Words that are plausible in more than one bucket ("rose", "rust",
"ivory", "steel", "midnight") resolve to whichever bucket is declared first;
reorder ``COLOR_GROUPS`` to change that policy.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from chromatag.classification.types import RGB

UNKNOWN = "unknown"
PATTERNED = "patterned"
MULTICOLOR = "multicolor"

# Reverse containment ("synonym contains word") only applies to words at
# least this long, otherwise tokens such as "in" or "lab" match "wine" or
# "alabaster".
MIN_REVERSE_MATCH_LENGTH = 4

PATTERN_KEYWORDS: tuple[str, ...] = ("pattern", "stripe", "check", "plaid", "floral", "print", "dot")
MULTICOLOR_KEYWORDS: tuple[str, ...] = ("multi", "rainbow", "colorful", "colourful", "various")

COLOR_GROUPS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "red": (
            "red", "crimson", "scarlet", "ruby", "cherry", "maroon", "burgundy",
            "wine", "carmine", "cardinal", "vermilion", "rust", "auburn", "blood",
            "brick", "tomato", "raspberry", "cranberry", "garnet", "oxblood",
        ),
        "pink": (
            "pink", "rose", "salmon", "coral", "blush", "flamingo", "watermelon",
            "bubblegum", "cerise", "hot pink",
        ),
        "purple": (
            "purple", "violet", "lavender", "lilac", "mauve", "plum", "indigo",
            "amethyst", "periwinkle", "magenta", "fuchsia", "orchid", "mulberry",
            "eggplant", "aubergine", "grape",
        ),
        "blue": (
            "blue", "navy", "cobalt", "azure", "cyan", "teal", "turquoise",
            "aqua", "cerulean", "sapphire", "royal", "sky", "denim", "steel",
            "powder blue", "baby blue", "midnight", "ocean",
        ),
        "green": (
            "green", "olive", "emerald", "lime", "mint", "jade", "sage", "forest",
            "chartreuse", "avocado", "moss", "pistachio", "seafoam", "hunter",
            "shamrock", "juniper", "seaweed",
        ),
        "yellow": (
            "yellow", "gold", "amber", "lemon", "mustard", "banana", "honey",
            "butter", "daffodil", "flaxen", "canary", "dandelion", "sunshine",
        ),
        "orange": (
            "orange", "tangerine", "peach", "apricot", "cantaloupe", "carrot",
            "copper", "terracotta", "pumpkin", "clay", "ginger", "cinnamon",
        ),
        "brown": (
            "brown", "tan", "chocolate", "coffee", "caramel", "mahogany", "chestnut",
            "hazel", "umber", "sienna", "bronze", "walnut", "mocha", "hickory",
            "cocoa", "cacao", "sepia", "russet", "tawny", "cognac",
        ),
        "beige": (
            "beige", "cream", "off-white", "ecru", "khaki", "taupe", "fawn",
            "eggshell", "sand", "oatmeal", "ivory", "champagne", "buff", "vanilla",
            "nude", "camel",
        ),
        "white": (
            "white", "snow", "pearl", "alabaster", "chalk", "milk", "ghost",
            "porcelain", "bone", "paper", "cloud", "linen", "frost",
        ),
        "gray": (
            "gray", "grey", "silver", "slate", "ash", "charcoal", "graphite", "iron",
            "stone", "pewter", "smoke", "cement", "fossil", "lead", "anchor",
        ),
        "black": (
            "black", "ebony", "onyx", "jet", "coal", "obsidian", "raven",
            "ink", "pitch", "shadow", "sable",
        ),
    }
)

APPROXIMATE_RGB: Mapping[str, RGB] = MappingProxyType(
    {
        "red": (255, 0, 0),
        "pink": (255, 192, 203),
        "purple": (128, 0, 128),
        "blue": (0, 0, 255),
        "green": (0, 128, 0),
        "yellow": (255, 255, 0),
        "orange": (255, 165, 0),
        "brown": (139, 69, 19),
        "beige": (245, 245, 220),
        "white": (255, 255, 255),
        "gray": (128, 128, 128),
        "black": (0, 0, 0),
    }
)

_NEUTRAL_RGB: RGB = (128, 128, 128)


def _exact(word: str, synonym: str) -> bool:
    return word == synonym


def _contains_synonym(word: str, synonym: str) -> bool:
    return synonym in word


def _inside_synonym(word: str, synonym: str) -> bool:
    return len(word) >= MIN_REVERSE_MATCH_LENGTH and word in synonym


# Each matcher is tried across every bucket before the next one, so an exact
# hit ("white") is never shadowed by a looser hit in an earlier bucket
# ("off-white" in beige).
_MATCHERS = (_exact, _contains_synonym, _inside_synonym)


def normalize(word: str | None) -> str:
    """Map a raw color word to its canonical bucket.

    Returns ``"patterned"`` or ``"multicolor"`` for those keyword families,
    a bucket name from ``COLOR_GROUPS``, or ``"unknown"``.
    """
    if not word:
        return UNKNOWN
    text = word.strip().lower()
    if not text:
        return UNKNOWN

    if any(keyword in text for keyword in PATTERN_KEYWORDS):
        return PATTERNED
    if any(keyword in text for keyword in MULTICOLOR_KEYWORDS):
        return MULTICOLOR

    for matcher in _MATCHERS:
        for bucket, synonyms in COLOR_GROUPS.items():
            if any(matcher(text, synonym) for synonym in synonyms):
                return bucket
    return UNKNOWN


def is_color(name: str) -> bool:
    """True for every value ``normalize`` can return other than ``"unknown"``."""
    return name in COLOR_GROUPS or name in (PATTERNED, MULTICOLOR)


def approximate_rgb(name: str) -> RGB:
    """Representative RGB for a canonical color; neutral gray otherwise."""
    return APPROXIMATE_RGB.get(name, _NEUTRAL_RGB)


def canonical_colors() -> list[str]:
    """The twelve hue buckets in declaration order."""
    return list(COLOR_GROUPS)


def color_variations(bucket: str) -> list[str]:
    return list(COLOR_GROUPS.get(bucket, ()))


def color_mapping() -> dict[str, str]:
    """Flat synonym -> bucket mapping; first declaration wins for shared words."""
    mapping: dict[str, str] = {}
    for bucket, synonyms in COLOR_GROUPS.items():
        for synonym in synonyms:
            mapping.setdefault(synonym, bucket)
    for word in ("striped", "checkered", "plaid", "floral", "dotted", PATTERNED):
        mapping[word] = PATTERNED
    for word in (MULTICOLOR, "multicolored", "rainbow", "colorful"):
        mapping[word] = MULTICOLOR
    return mapping
