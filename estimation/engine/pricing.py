"""Pricing rollup: Article -> Bloc -> Ouvrage -> Lot -> Project.

Each level is one UPDATE whose new totals come from a correlated
aggregate over the level below, so a level is recomputed atomically in
the database. A Bloc unit price is total / quantite, NULL unless the
quantity is strictly positive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import case, func, select, update

from domain.errors import NotFoundError
from domain.models import MargesClient
from domain.pricing import coefficient_marge, totaux_article
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleProjet,
    Bloc,
    Client,
    LienStructure,
    Ouvrage,
    Projet,
    ProjetLot,
)

logger = logging.getLogger(__name__)

_SANS_SYNC = {"synchronize_session": False}


def recalculer_article(article: ArticleProjet) -> ArticleProjet:
    totaux = totaux_article(article.quantite, article.prix_unitaire, article.tva)
    article.total_ht = totaux.total_ht
    article.total_ttc = totaux.total_ttc
    return article


def coefficient_projet(session, projet_id: int) -> float:
    """Margin coefficient from the project's client; 1 without a client."""
    row = session.execute(
        select(Client.marge_brute, Client.marge_nette)
        .join(Projet, Projet.client_id == Client.id)
        .where(Projet.id == projet_id)
    ).first()
    if row is None:
        return 1.0
    return coefficient_marge(MargesClient(brute=row.marge_brute or 0, nette=row.marge_nette or 0))


# ── Per-level updates ───────────────────────────────────────────────────


def _total_articles_bloc():
    return (
        select(func.coalesce(func.sum(ArticleProjet.total_ttc), 0.0))
        .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
        .where(LienStructure.bloc_id == Bloc.id)
        .correlate(Bloc)
        .scalar_subquery()
    )


def recalculer_blocs(session, bloc_ids: Iterable[int]) -> None:
    ids = sorted(set(bloc_ids))
    if not ids:
        return
    total = _total_articles_bloc()
    session.execute(
        update(Bloc)
        .where(Bloc.id.in_(ids))
        .values(
            total=total,
            prix_unitaire=case((Bloc.quantite > 0, total / Bloc.quantite), else_=None),
        ),
        execution_options=_SANS_SYNC,
    )


def recalculer_ouvrages(session, ouvrage_ids: Iterable[int]) -> None:
    """Ouvrage total: every Article under it, direct or through a Bloc."""
    ids = sorted(set(ouvrage_ids))
    if not ids:
        return
    total = (
        select(func.coalesce(func.sum(ArticleProjet.total_ttc), 0.0))
        .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
        .where(LienStructure.ouvrage_id == Ouvrage.id)
        .correlate(Ouvrage)
        .scalar_subquery()
    )
    session.execute(
        update(Ouvrage).where(Ouvrage.id.in_(ids)).values(total=total),
        execution_options=_SANS_SYNC,
    )


def recalculer_lots(session, projet_id: int, projet_lot_ids: Iterable[int] | None = None) -> None:
    """Lot cost from its Ouvrages and sell total from the client margins.

    With ``projet_lot_ids=None`` every lot of the project is recomputed,
    which is what a margin change needs.
    """
    coefficient = coefficient_projet(session, projet_id)
    total = (
        select(func.coalesce(func.sum(Ouvrage.total), 0.0))
        .where(Ouvrage.projet_lot_id == ProjetLot.id)
        .correlate(ProjetLot)
        .scalar_subquery()
    )
    stmt = update(ProjetLot).where(ProjetLot.projet_id == projet_id)
    if projet_lot_ids is not None:
        ids = sorted(set(projet_lot_ids))
        if not ids:
            return
        stmt = stmt.where(ProjetLot.id.in_(ids))
    session.execute(
        stmt.values(total=total, total_vente=total * coefficient),
        execution_options=_SANS_SYNC,
    )


def recalculer_projet(session, projet_id: int) -> None:
    cout = (
        select(func.coalesce(func.sum(ProjetLot.total), 0.0))
        .where(ProjetLot.projet_id == Projet.id)
        .correlate(Projet)
        .scalar_subquery()
    )
    vente = (
        select(func.coalesce(func.sum(ProjetLot.total_vente), 0.0))
        .where(ProjetLot.projet_id == Projet.id)
        .correlate(Projet)
        .scalar_subquery()
    )
    result = session.execute(
        update(Projet).where(Projet.id == projet_id).values(cout=cout, prix_vente=vente),
        execution_options=_SANS_SYNC,
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Projet {projet_id} introuvable")


# ── Branch refresh ──────────────────────────────────────────────────────


def rafraichir_branche(
    session,
    projet_id: int,
    bloc_ids: Iterable[int] = (),
    ouvrage_ids: Iterable[int] = (),
    projet_lot_ids: Iterable[int] = (),
) -> None:
    """Recompute the touched branch bottom-up, then the project totals.

    Pending ORM changes are flushed first; loaded rows are expired
    afterwards so attribute access sees the new totals.
    """
    session.flush()
    recalculer_blocs(session, bloc_ids)
    recalculer_ouvrages(session, ouvrage_ids)
    recalculer_lots(session, projet_id, projet_lot_ids)
    recalculer_projet(session, projet_id)
    session.expire_all()


def recalculer_tout(session, projet_id: int) -> dict:
    """Full recompute of a project from its Articles upwards."""
    session.flush()
    projet_lot_ids = session.scalars(
        select(ProjetLot.id).where(ProjetLot.projet_id == projet_id)
    ).all()
    ouvrage_ids = session.scalars(
        select(Ouvrage.id).where(Ouvrage.projet_lot_id.in_(projet_lot_ids))
    ).all()
    bloc_ids = session.scalars(select(Bloc.id).where(Bloc.projet_id == projet_id)).all()
    articles = session.scalars(
        select(ArticleProjet)
        .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
        .where(LienStructure.ouvrage_id.in_(ouvrage_ids))
    ).all()
    for article in articles:
        recalculer_article(article)
    session.flush()

    recalculer_blocs(session, bloc_ids)
    recalculer_ouvrages(session, ouvrage_ids)
    recalculer_lots(session, projet_id)
    recalculer_projet(session, projet_id)
    session.expire_all()

    projet = session.get(Projet, projet_id)
    logger.info(
        "Prix recalculés pour le projet %s: coût=%.2f vente=%.2f",
        projet_id, projet.cout, projet.prix_vente,
    )
    return {
        "articles": len(articles),
        "blocs": len(bloc_ids),
        "ouvrages": len(ouvrage_ids),
        "lots": len(projet_lot_ids),
        "cout": projet.cout,
        "prix_vente": projet.prix_vente,
    }
