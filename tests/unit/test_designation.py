"""Tests for domain.designation: dotted designation rules."""

import pytest

from domain.designation import (
    cle_tri,
    est_vide,
    increment_last,
    nettoyer,
    parse_depart,
    premier_libre,
    prochaine_designation_article,
    rebase,
    valider,
)
from domain.errors import ConflictError, InvalidError


class TestNettoyer:
    @pytest.mark.parametrize("value", [None, "", "  \t"])
    def test_blank(self, value):
        assert est_vide(value)
        assert nettoyer(value) is None

    def test_strips(self):
        assert nettoyer(" 1.2 ") == "1.2"


class TestValider:
    @pytest.mark.parametrize("value", ["1", "1.2", "10.20.30"])
    def test_valid(self, value):
        assert valider(value) == value

    @pytest.mark.parametrize("value", ["", "a", "1.", ".1", "1..2", "1.b", "1,2"])
    def test_invalid(self, value):
        with pytest.raises(InvalidError):
            valider(value)


class TestCleTri:
    def test_natural_order(self):
        valeurs = ["1.10", "1.9", "2", "1.2.1", None, "1.2"]
        assert sorted(valeurs, key=cle_tri) == ["1.2", "1.2.1", "1.9", "1.10", "2", None]


class TestIncrementLast:
    def test_numeric(self):
        assert increment_last("1.2") == "1.3"
        assert increment_last("1.9") == "1.10"

    def test_zero_or_non_numeric_gets_suffix(self):
        assert increment_last("1.0") == "1.0.1"
        assert increment_last("1.a") == "1.a.1"


class TestRebase:
    def test_prefix_itself(self):
        assert rebase("1.1", "1.1", "1.2") == "1.2"

    def test_child(self):
        assert rebase("1.1.3.2", "1.1", "2.4") == "2.4.3.2"

    def test_lookalike_prefix_is_not_rebased(self):
        assert rebase("1.10.1", "1.1", "1.2") is None

    def test_missing_values(self):
        assert rebase(None, "1.1", "1.2") is None
        assert rebase("1.1.1", None, "1.2") is None


class TestPremierLibre:
    def test_first_candidate(self):
        assert premier_libre("1.1", 1, set()) == ("1.1.1", 1)

    def test_skips_used(self):
        assert premier_libre("1.1", 2, {"1.1.2", "1.1.3"}) == ("1.1.4", 4)

    def test_start_below_one(self):
        assert premier_libre(3, 0, set()) == ("3.1", 1)

    def test_exhausted(self):
        with pytest.raises(ConflictError):
            premier_libre("1", 1, {"1.1", "1.2"}, max_tentatives=2)

    def test_article_without_base(self):
        assert prochaine_designation_article(None, {"1.1"}) == "1.2"


class TestParseDepart:
    def test_blank(self):
        assert parse_depart("  ") is None

    def test_one_segment(self):
        depart = parse_depart("3")
        assert depart.ouvrage_index == 3
        assert depart.ouvrage is None

    def test_two_segments(self):
        assert parse_depart("2.1").ouvrage == "2.1"

    def test_four_segments(self):
        depart = parse_depart("1.2.3.4")
        assert (depart.ouvrage, depart.bloc, depart.article) == ("1.2", "1.2.3", "1.2.3.4")

    def test_too_deep(self):
        with pytest.raises(InvalidError):
            parse_depart("1.2.3.4.5")
