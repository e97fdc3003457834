"""Pricing formulas: pure Python, zero external dependencies.

Article totals are computed here; the upper levels (Bloc, Ouvrage, Lot,
Project) are aggregated in SQL by ``estimation.engine.pricing``, which
applies ``coefficient_marge`` to the lot totals.
"""

from __future__ import annotations

import math

from domain.models import MargesClient, TotauxArticle


def totaux_article(quantite: float | None, prix_unitaire: float | None, tva: float | None) -> TotauxArticle:
    """total_ht = quantite x prix_unitaire; total_ttc = total_ht x (1 + tva/100)."""
    total_ht = float(quantite or 0) * float(prix_unitaire or 0)
    total_ttc = total_ht * (1 + float(tva or 0) / 100)
    return TotauxArticle(total_ht=total_ht, total_ttc=total_ttc)


def coefficient_marge(marges: MargesClient | None) -> float:
    """Multiplier turning a cost into a sell price.

    c = 1 / (1 - brute/100 - nette/100), falling back to 1 when the
    denominator is non-positive or not finite.
    """
    if marges is None:
        return 1.0
    try:
        denominateur = 1 - float(marges.brute or 0) / 100 - float(marges.nette or 0) / 100
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(denominateur) or denominateur <= 0:
        return 1.0
    return 1 / denominateur
