"""Tests for domain.pricing: pure pricing formulas."""

import math

import pytest

from domain.models import MargesClient
from domain.pricing import coefficient_marge, totaux_article


class TestTotauxArticle:
    def test_with_tax(self):
        totaux = totaux_article(2, 100, 20)
        assert totaux.total_ht == pytest.approx(200.0)
        assert totaux.total_ttc == pytest.approx(240.0)

    def test_missing_values_count_as_zero(self):
        totaux = totaux_article(None, 10, None)
        assert (totaux.total_ht, totaux.total_ttc) == (0.0, 0.0)


class TestCoefficientMarge:
    def test_no_client(self):
        assert coefficient_marge(None) == 1.0

    def test_margins(self):
        assert coefficient_marge(MargesClient(brute=20, nette=5)) == pytest.approx(1 / 0.75)

    @pytest.mark.parametrize("brute, nette", [(60, 50), (100, 0), (50, 50)])
    def test_non_positive_denominator_falls_back(self, brute, nette):
        assert coefficient_marge(MargesClient(brute=brute, nette=nette)) == 1.0

    def test_non_finite_falls_back(self):
        assert coefficient_marge(MargesClient(brute=math.inf, nette=0)) == 1.0
