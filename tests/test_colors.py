"""Tests for the color taxonomy normalizer."""

from __future__ import annotations

import pytest

from chromatag.classification.colors import (
    COLOR_GROUPS,
    approximate_rgb,
    canonical_colors,
    color_mapping,
    color_variations,
    is_color,
    normalize,
)


class TestNormalize:
    @pytest.mark.parametrize(
        ("word", "expected"),
        [
            ("crimson", "red"),
            ("seafoam", "green"),
            ("lilac", "purple"),
            ("Navy", "blue"),
            ("  charcoal ", "gray"),
            ("grey", "gray"),
            ("off-white", "beige"),
        ],
    )
    def test_synonyms(self, word: str, expected: str) -> None:
        assert normalize(word) == expected

    @pytest.mark.parametrize("bucket", list(COLOR_GROUPS) + ["patterned", "multicolor"])
    def test_idempotent_on_canonical_names(self, bucket: str) -> None:
        assert normalize(bucket) == bucket
        assert normalize(normalize(bucket)) == normalize(bucket)

    def test_word_containing_synonym(self) -> None:
        assert normalize("burgundy-ish") == "red"
        assert normalize("navyblue") == "blue"

    def test_word_inside_synonym(self) -> None:
        # "lave" only appears inside "lavender".
        assert normalize("lave") == "purple"

    def test_short_words_do_not_match_inside_synonyms(self) -> None:
        assert normalize("in") == "unknown"
        assert normalize("lab") == "unknown"

    def test_exact_match_beats_earlier_containment(self) -> None:
        assert normalize("white") == "white"
        assert normalize("ink") == "black"

    def test_shared_word_resolves_by_declaration_order(self) -> None:
        assert normalize("rust") == "red"
        assert normalize("rose") == "pink"

    def test_patterned_family(self) -> None:
        for word in ("striped", "checkered", "floral", "printed", "polka-dot"):
            assert normalize(word) == "patterned"

    def test_multicolor_family(self) -> None:
        for word in ("multicolored", "rainbow", "colorful", "various"):
            assert normalize(word) == "multicolor"

    def test_unknown_and_empty(self) -> None:
        assert normalize("shoe") == "unknown"
        assert normalize("") == "unknown"
        assert normalize(None) == "unknown"


class TestTables:
    def test_twelve_buckets_in_order(self) -> None:
        assert canonical_colors() == [
            "red", "pink", "purple", "blue", "green", "yellow",
            "orange", "brown", "beige", "white", "gray", "black",
        ]

    def test_table_size(self) -> None:
        assert sum(len(v) for v in COLOR_GROUPS.values()) >= 150

    def test_every_bucket_lists_itself_first(self) -> None:
        for bucket, synonyms in COLOR_GROUPS.items():
            assert synonyms[0] == bucket

    def test_approximate_rgb(self) -> None:
        assert approximate_rgb("red") == (255, 0, 0)
        assert approximate_rgb("unknown") == (128, 128, 128)

    def test_color_mapping_first_declaration_wins(self) -> None:
        mapping = color_mapping()
        assert mapping["rust"] == "red"
        assert mapping["ivory"] == "beige"
        assert mapping["plaid"] == "patterned"
        assert mapping["rainbow"] == "multicolor"

    def test_variations(self) -> None:
        assert "scarlet" in color_variations("red")
        assert color_variations("teal-ish") == []

    def test_is_color(self) -> None:
        assert is_color("blue")
        assert is_color("patterned")
        assert not is_color("unknown")
