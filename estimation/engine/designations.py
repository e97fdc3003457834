"""Designation renumbering pass.

Fills in missing designations across a project, or one lot of it,
without ever touching a designation that is already assigned:

- Ouvrage: ``lotIndex.ouvrageIndex``; the lot index is the rank of the
  lot among the project's lots that hold at least one Ouvrage.
- Articles directly under an Ouvrage: ``ouvrage.k``.
- Bloc: ``ouvrage.(N + ordinal)``, N being the number of direct Articles.
  Direct Articles and Blocs share the ``ouvrage.*`` namespace.
- Article under a Bloc: ``bloc.k``.
- Legacy standalone Bloc (no Ouvrage): ``standaloneIndex.1``.

Rows are taken ``FOR UPDATE`` in id order and the whole pass runs under
the project lock, so two passes on the same project never interleave.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from domain import designation as regles
from domain.errors import ConflictError, InvalidError, NotFoundError
from domain.models import DesignationDepart
from domain.ports import ProjectLockPort
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleProjet,
    Bloc,
    LienStructure,
    Ouvrage,
    ProjetLot,
)

logger = logging.getLogger(__name__)


@dataclass
class RapportDesignations:
    """Number of designations assigned by one pass, per level."""

    ouvrages: int = 0
    blocs: int = 0
    articles: int = 0

    @property
    def total(self) -> int:
        return self.ouvrages + self.blocs + self.articles


# ── Queries ─────────────────────────────────────────────────────────────


def lots_avec_ouvrages(session, projet_id: int) -> list[int]:
    """Ids of the project's lots holding an Ouvrage, in lot-index order."""
    stmt = (
        select(ProjetLot.id)
        .where(ProjetLot.projet_id == projet_id)
        .where(select(Ouvrage.id).where(Ouvrage.projet_lot_id == ProjetLot.id).exists())
        .order_by(ProjetLot.id)
    )
    return list(session.scalars(stmt).all())


def designations_ouvrages(session, projet_id: int) -> set[str]:
    stmt = (
        select(Ouvrage.designation)
        .join(ProjetLot, Ouvrage.projet_lot_id == ProjetLot.id)
        .where(ProjetLot.projet_id == projet_id, Ouvrage.designation.is_not(None))
    )
    return {d.strip() for d in session.scalars(stmt) if not regles.est_vide(d)}


def designations_soeurs(
    session,
    ouvrage_id: int,
    bloc_id: int | None = None,
    exclure_article_id: int | None = None,
) -> set[str]:
    """Designations already used in one numbering context.

    Under a Bloc the context is the Bloc's Articles. Directly under an
    Ouvrage it is the direct Articles plus the Blocs, which share the
    ``ouvrage.*`` namespace.
    """
    stmt = (
        select(ArticleProjet.designation)
        .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
        .where(LienStructure.ouvrage_id == ouvrage_id)
    )
    if bloc_id is None:
        stmt = stmt.where(LienStructure.bloc_id.is_(None))
    else:
        stmt = stmt.where(LienStructure.bloc_id == bloc_id)
    if exclure_article_id is not None:
        stmt = stmt.where(ArticleProjet.id != exclure_article_id)
    utilisees = {d.strip() for d in session.scalars(stmt) if not regles.est_vide(d)}

    if bloc_id is None:
        blocs = select(Bloc.designation).where(Bloc.ouvrage_id == ouvrage_id)
        utilisees |= {d.strip() for d in session.scalars(blocs) if not regles.est_vide(d)}
    return utilisees


# ── Engine ──────────────────────────────────────────────────────────────


class MoteurDesignations:
    """Assigns missing designations under the project lock."""

    def __init__(self, verrou: ProjectLockPort, max_attempts: int = regles.DEFAULT_MAX_ATTEMPTS) -> None:
        self.verrou = verrou
        self.max_attempts = max_attempts

    # Availability check for caller-supplied designations

    def verifier_soeur(
        self,
        session,
        designation: str,
        ouvrage_id: int,
        bloc_id: int | None = None,
        exclure_article_id: int | None = None,
    ) -> str:
        designation = regles.valider(designation)
        utilisees = designations_soeurs(session, ouvrage_id, bloc_id, exclure_article_id)
        if designation in utilisees:
            raise ConflictError(f"Désignation {designation!r} déjà utilisée")
        return designation

    def prochaine_article(self, session, ouvrage: Ouvrage, bloc: Bloc | None = None) -> str:
        """Designation for an Article about to be added under *ouvrage* / *bloc*."""
        if bloc is not None:
            base = regles.nettoyer(bloc.designation)
            if base is None:
                raise InvalidError(f"Le bloc {bloc.id} n'a pas de désignation")
        else:
            base = regles.nettoyer(ouvrage.designation)
        utilisees = designations_soeurs(session, ouvrage.id, bloc.id if bloc is not None else None)
        return regles.prochaine_designation_article(base, utilisees, self.max_attempts)

    # Renumbering pass

    def recalculer(
        self,
        session,
        projet_id: int,
        projet_lot_id: int | None = None,
        designation_depart: str | None = None,
        ouvrage_cible_id: int | None = None,
    ) -> RapportDesignations:
        """Assign every missing designation in the project or in one lot.

        *designation_depart* seeds the first Ouvrage to number, or
        *ouvrage_cible_id* when given, together with its first Bloc and
        that Bloc's first Article when the seed has 3 or 4 segments.
        """
        depart = regles.parse_depart(designation_depart)
        rapport = RapportDesignations()

        with self.verrou.verrouiller(session, projet_id):
            session.flush()
            if ouvrage_cible_id is not None:
                cible = session.get(Ouvrage, ouvrage_cible_id)
                if cible is None or cible.projet_lot.projet_id != projet_id:
                    raise NotFoundError(f"Ouvrage {ouvrage_cible_id} introuvable dans le projet {projet_id}")
                if projet_lot_id is None:
                    projet_lot_id = cible.projet_lot_id

            lots = lots_avec_ouvrages(session, projet_id)
            a_traiter = [projet_lot_id] if projet_lot_id is not None else lots
            utilisees = designations_ouvrages(session, projet_id)

            for pl_id in a_traiter:
                lot_index = lots.index(pl_id) + 1 if pl_id in lots else len(lots) + 1
                self._renumeroter_lot(
                    session, pl_id, lot_index, depart, ouvrage_cible_id, utilisees, rapport,
                )
                depart = None if ouvrage_cible_id is None else depart

            if projet_lot_id is None:
                self._renumeroter_blocs_autonomes(session, projet_id, rapport)
            session.flush()

        logger.info(
            "Désignations du projet %s (lot=%s): %s ouvrage(s), %s bloc(s), %s article(s) attribués",
            projet_id, projet_lot_id, rapport.ouvrages, rapport.blocs, rapport.articles,
        )
        return rapport

    def _renumeroter_lot(
        self,
        session,
        projet_lot_id: int,
        lot_index: int,
        depart: DesignationDepart | None,
        ouvrage_cible_id: int | None,
        utilisees: set[str],
        rapport: RapportDesignations,
    ) -> None:
        ouvrages = session.scalars(
            select(Ouvrage)
            .where(Ouvrage.projet_lot_id == projet_lot_id)
            .order_by(Ouvrage.id)
            .with_for_update()
        ).all()

        index = 1
        if depart is not None and depart.ouvrage_index and ouvrage_cible_id is None:
            index = depart.ouvrage_index
        graine_libre = depart is not None and ouvrage_cible_id is None

        for ouvrage in ouvrages:
            existante = regles.nettoyer(ouvrage.designation)
            est_cible = ouvrage_cible_id is not None and ouvrage.id == ouvrage_cible_id
            semee = est_cible and depart is not None

            if existante is not None:
                pass
            elif semee:
                ouvrage.designation = self._graine_ouvrage(depart, lot_index, utilisees)
            elif graine_libre and depart.ouvrage is not None and depart.ouvrage not in utilisees:
                ouvrage.designation = depart.ouvrage
                semee = True
                graine_libre = False
            else:
                ouvrage.designation, trouve = regles.premier_libre(
                    lot_index, index, utilisees, self.max_attempts
                )
                index = trouve + 1

            if existante is None:
                utilisees.add(ouvrage.designation)
                rapport.ouvrages += 1
            self._renumeroter_enfants(session, ouvrage, depart if semee else None, rapport)

    def _graine_ouvrage(self, depart: DesignationDepart, lot_index: int, utilisees: set[str]) -> str:
        if depart.ouvrage is not None:
            candidat = depart.ouvrage
        else:
            candidat = regles.joindre(lot_index, depart.ouvrage_index)
        if candidat in utilisees:
            raise ConflictError(f"Désignation d'ouvrage {candidat!r} déjà utilisée")
        return candidat

    def _renumeroter_enfants(
        self,
        session,
        ouvrage: Ouvrage,
        depart: DesignationDepart | None,
        rapport: RapportDesignations,
    ) -> None:
        base = ouvrage.designation
        directs = session.scalars(
            select(ArticleProjet)
            .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
            .where(LienStructure.ouvrage_id == ouvrage.id, LienStructure.bloc_id.is_(None))
            .order_by(ArticleProjet.id)
            .with_for_update()
        ).all()
        blocs = session.scalars(
            select(Bloc).where(Bloc.ouvrage_id == ouvrage.id).order_by(Bloc.id).with_for_update()
        ).all()

        utilisees = {
            d.strip()
            for d in [a.designation for a in directs] + [b.designation for b in blocs]
            if not regles.est_vide(d)
        }

        index = 1
        for article in directs:
            if regles.est_vide(article.designation):
                article.designation, trouve = regles.premier_libre(base, index, utilisees, self.max_attempts)
                index = trouve + 1
                utilisees.add(article.designation)
                rapport.articles += 1

        nb_directs = len(directs)
        graine_bloc = depart.bloc if depart is not None else None
        for ordinal, bloc in enumerate(blocs, start=1):
            graine_article = None
            if regles.est_vide(bloc.designation):
                if graine_bloc is not None and graine_bloc not in utilisees:
                    bloc.designation = graine_bloc
                    graine_article = depart.article
                else:
                    bloc.designation, _ = regles.premier_libre(
                        base, nb_directs + ordinal, utilisees, self.max_attempts
                    )
                graine_bloc = None
                utilisees.add(bloc.designation)
                rapport.blocs += 1
            self._renumeroter_articles_bloc(session, bloc, graine_article, rapport)

    def _renumeroter_articles_bloc(
        self,
        session,
        bloc: Bloc,
        graine: str | None,
        rapport: RapportDesignations,
    ) -> None:
        base = regles.nettoyer(bloc.designation)
        if base is None:
            return
        articles = session.scalars(
            select(ArticleProjet)
            .join(LienStructure, ArticleProjet.structure_link_id == LienStructure.id)
            .where(LienStructure.bloc_id == bloc.id)
            .order_by(ArticleProjet.id)
            .with_for_update()
        ).all()
        utilisees = {a.designation.strip() for a in articles if not regles.est_vide(a.designation)}

        index = 1
        for article in articles:
            if not regles.est_vide(article.designation):
                continue
            if graine is not None and graine not in utilisees:
                article.designation = graine
            else:
                article.designation, trouve = regles.premier_libre(base, index, utilisees, self.max_attempts)
                index = trouve + 1
            graine = None
            utilisees.add(article.designation)
            rapport.articles += 1

    def _renumeroter_blocs_autonomes(self, session, projet_id: int, rapport: RapportDesignations) -> None:
        blocs = session.scalars(
            select(Bloc)
            .where(Bloc.projet_id == projet_id, Bloc.ouvrage_id.is_(None))
            .order_by(Bloc.id)
            .with_for_update()
        ).all()
        utilisees = {b.designation.strip() for b in blocs if not regles.est_vide(b.designation)}
        index = 1
        for bloc in blocs:
            if not regles.est_vide(bloc.designation):
                continue
            for _ in range(self.max_attempts):
                candidat = regles.joindre(index, 1)
                index += 1
                if candidat not in utilisees:
                    break
            else:
                raise ConflictError(f"Aucune désignation libre pour le bloc autonome {bloc.id}")
            bloc.designation = candidat
            utilisees.add(candidat)
            rapport.blocs += 1
