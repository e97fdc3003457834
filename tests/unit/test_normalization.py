"""Tests for domain.normalization: lot labels and identifier coercion."""

import pytest

from domain.normalization import coerce_identifier, lot_label_key, normalize_lot_label


class TestNormalizeLotLabel:
    def test_trims_and_collapses_spaces(self):
        assert normalize_lot_label("  Gros   oeuvre ") == "Gros oeuvre"

    def test_keeps_case_and_accents(self):
        assert normalize_lot_label("Électricité") == "Électricité"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_is_none(self, value):
        assert normalize_lot_label(value) is None


class TestLotLabelKey:
    def test_case_insensitive(self):
        assert lot_label_key("PLOMBERIE") == lot_label_key("plomberie")

    def test_accent_insensitive(self):
        assert lot_label_key("Électricité") == "electricite"

    def test_whitespace_insensitive(self):
        assert lot_label_key(" Gros  Oeuvre") == "gros oeuvre"

    def test_blank_is_none(self):
        assert lot_label_key("  ") is None


class TestCoerceIdentifier:
    @pytest.mark.parametrize("value, expected", [
        (3, 3),
        ("12", 12),
        (" 7 ", 7),
        (4.0, 4),
    ])
    def test_identifiers(self, value, expected):
        assert coerce_identifier(value) == expected

    @pytest.mark.parametrize("value", [True, 0, -2, 4.5, "abc", "1.2", None, "Gros oeuvre"])
    def test_non_identifiers(self, value):
        assert coerce_identifier(value) is None
