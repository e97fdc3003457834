"""Estimate summaries as pandas DataFrames.

Read-only queries over committed data; no project lock is taken.
"""

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.designation import cle_tri
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleCatalogue,
    ArticleProjet,
    Bloc,
    LienStructure,
    LotCatalogue,
    Ouvrage,
    Projet,
    ProjetLot,
)

_COLONNES_LIGNES = [
    "lot", "ouvrage_id", "ouvrage", "bloc_id", "bloc", "article_id",
    "designation", "libelle", "quantite", "prix_unitaire", "tva",
    "total_ht", "total_ttc",
]


def recap_lots(session: Session, projet_id: int) -> pd.DataFrame:
    """One row per lot with its cost, sell total and share of the project cost."""
    rows = session.execute(
        select(
            ProjetLot.id.label("projet_lot_id"),
            LotCatalogue.libelle.label("lot"),
            ProjetLot.total,
            ProjetLot.total_vente,
        )
        .join(LotCatalogue, ProjetLot.lot_catalogue_id == LotCatalogue.id)
        .where(ProjetLot.projet_id == projet_id)
        .order_by(ProjetLot.id)
    ).all()
    df = pd.DataFrame(rows, columns=["projet_lot_id", "lot", "total", "total_vente"])
    if df.empty:
        df["part"] = pd.Series(dtype=float)
        df["marge"] = pd.Series(dtype=float)
        return df

    cout = df["total"].sum()
    df["part"] = df["total"] / cout if cout else 0.0
    df["marge"] = df["total_vente"] - df["total"]
    return df


def lignes_structure(session: Session, projet_id: int) -> pd.DataFrame:
    """Flat list of the project's Articles with their Ouvrage and Bloc, in designation order."""
    rows = session.execute(
        select(
            LotCatalogue.libelle.label("lot"),
            Ouvrage.id.label("ouvrage_id"),
            Ouvrage.designation.label("ouvrage"),
            Bloc.id.label("bloc_id"),
            Bloc.designation.label("bloc"),
            ArticleProjet.id.label("article_id"),
            ArticleProjet.designation,
            ArticleCatalogue.libelle,
            ArticleProjet.quantite,
            ArticleProjet.prix_unitaire,
            ArticleProjet.tva,
            ArticleProjet.total_ht,
            ArticleProjet.total_ttc,
        )
        .select_from(ArticleProjet)
        .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
        .join(Ouvrage, LienStructure.ouvrage_id == Ouvrage.id)
        .join(ProjetLot, Ouvrage.projet_lot_id == ProjetLot.id)
        .join(LotCatalogue, ProjetLot.lot_catalogue_id == LotCatalogue.id)
        .outerjoin(Bloc, LienStructure.bloc_id == Bloc.id)
        .outerjoin(ArticleCatalogue, ArticleProjet.article_catalogue_id == ArticleCatalogue.id)
        .where(ProjetLot.projet_id == projet_id)
    ).all()
    df = pd.DataFrame(rows, columns=_COLONNES_LIGNES)
    if df.empty:
        return df
    ordre = sorted(
        range(len(df)),
        key=lambda i: (cle_tri(df.at[i, "designation"]), df.at[i, "article_id"]),
    )
    return df.iloc[ordre].reset_index(drop=True)


def totaux_projet(session: Session, projet_id: int) -> dict:
    """Stored project totals next to the sum of its lots, for consistency checks."""
    projet = session.get(Projet, projet_id)
    if projet is None:
        return {}
    lots = recap_lots(session, projet_id)
    return {
        "cout": projet.cout or 0.0,
        "prix_vente": projet.prix_vente or 0.0,
        "somme_lots": float(lots["total"].sum()) if not lots.empty else 0.0,
        "somme_lots_vente": float(lots["total_vente"].sum()) if not lots.empty else 0.0,
    }
