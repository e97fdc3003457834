"""Identifier space arbiter for Ouvrage and Bloc ids.

Historical data shares one id space between the two node tables: an id
used by an Ouvrage must never be used by a Bloc, and vice versa, counting
ids referenced from ``structure_link`` as well. Ids are therefore never
left to autoincrement. The arbiter proposes one, checks it against the
opposite kind before insert, and re-checks it after insert because the
pre-insert check alone is racy. Proposals come from max(id)+1 across
every project, so two writers holding different project locks can pick
the same id; the insert runs in a savepoint and a duplicate key moves on
to the next id.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.util import identity_key

from domain.errors import FatalError
from domain.models import TypeNoeud
from domain.designation import DEFAULT_MAX_ATTEMPTS
from estimation.adapters.outbound.sqlalchemy_models import Bloc, LienStructure, Ouvrage

logger = logging.getLogger(__name__)

_TABLES = {TypeNoeud.OUVRAGE: Ouvrage, TypeNoeud.BLOC: Bloc}
_COLONNES_LIEN = {
    TypeNoeud.OUVRAGE: LienStructure.ouvrage_id,
    TypeNoeud.BLOC: LienStructure.bloc_id,
}


class IdentifierSpaceArbiter:
    """Allocates node ids disjoint from the opposite kind's id space."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self.max_attempts = max_attempts

    # ── Checks ──────────────────────────────────────────────────────────

    def est_pris_par_oppose(self, session, kind: TypeNoeud, candidate: int) -> bool:
        """True if *candidate* is used by the opposite kind (table or links)."""
        oppose = kind.oppose
        modele = _TABLES[oppose]
        colonne = _COLONNES_LIEN[oppose]
        dans_table = select(modele.id).where(modele.id == candidate)
        dans_liens = select(LienStructure.id).where(colonne == candidate)
        stmt = select(
            or_(dans_table.exists(), dans_liens.exists())
        )
        return bool(session.scalar(stmt))

    def next_safe_id(self, session, kind: TypeNoeud, proposed: int) -> int:
        """Smallest id >= *proposed* not held by the opposite kind."""
        candidate = int(proposed)
        for _ in range(self.max_attempts):
            if not self.est_pris_par_oppose(session, kind, candidate):
                return candidate
            candidate += 1
        logger.critical(
            "Espace d'identifiants épuisé pour %s à partir de %s (%s tentatives)",
            kind.value, proposed, self.max_attempts,
        )
        raise FatalError(
            f"Aucun identifiant {kind.value} sûr trouvé à partir de {proposed} "
            f"après {self.max_attempts} tentatives"
        )

    # ── Allocation ──────────────────────────────────────────────────────

    def proposer(self, session, kind: TypeNoeud, minimum: int | None = None) -> int:
        """Next id past the highest one of *kind*, raised to *minimum*."""
        modele = _TABLES[kind]
        courant = session.scalar(select(func.max(modele.id))) or 0
        proposed = courant + 1
        if minimum is not None:
            proposed = max(proposed, int(minimum))
        return proposed

    def allocate(self, session, kind: TypeNoeud, minimum: int | None = None) -> int:
        return self.next_safe_id(session, kind, self.proposer(session, kind, minimum))

    def inserer(self, session, kind: TypeNoeud, noeud, minimum: int | None = None) -> int:
        """Insert the ORM *noeud* under an arbitrated id and return its final id.

        The returned id may differ from the one first allocated when a
        concurrent writer took it in the meantime; callers must use it.
        """
        modele = _TABLES[kind]
        candidat = self.allocate(session, kind, minimum)
        for _ in range(self.max_attempts):
            noeud.id = candidat
            try:
                with session.begin_nested():
                    session.add(noeud)
            except IntegrityError:
                # Only a duplicate primary key is retried
                if session.scalar(select(modele.id).where(modele.id == candidat)) is None:
                    raise
                logger.info(
                    "Identifiant %s %s pris par une autre transaction, nouvel essai",
                    kind.value, candidat,
                )
                candidat = self.allocate(session, kind, minimum=candidat + 1)
                continue
            return self.verify_and_fix(session, kind, noeud.id)
        logger.critical(
            "Insertion %s impossible après %s identifiants déjà pris",
            kind.value, self.max_attempts,
        )
        raise FatalError(
            f"Aucun identifiant {kind.value} libre après {self.max_attempts} tentatives d'insertion"
        )

    def verify_and_fix(self, session, kind: TypeNoeud, node_id: int) -> int:
        """Move a freshly inserted node off an id the opposite kind holds.

        Rewrites the primary key and every reference to it (structure links,
        and child blocs for an Ouvrage) in the current transaction.
        """
        if not self.est_pris_par_oppose(session, kind, node_id):
            return node_id

        nouvel_id = self.allocate(session, kind, minimum=node_id + 1)
        logger.warning(
            "Identifiant %s %s en collision avec un %s, réattribué à %s",
            kind.value, node_id, kind.oppose.value, nouvel_id,
        )
        modele = _TABLES[kind]
        stale = session.identity_map.get(identity_key(modele, node_id))
        if stale is not None:
            session.expunge(stale)

        options = {"synchronize_session": False}
        session.execute(
            update(modele).where(modele.id == node_id).values(id=nouvel_id),
            execution_options=options,
        )
        session.execute(
            update(LienStructure)
            .where(_COLONNES_LIEN[kind] == node_id)
            .values({_COLONNES_LIEN[kind]: nouvel_id}),
            execution_options=options,
        )
        if kind is TypeNoeud.OUVRAGE:
            session.execute(
                update(Bloc).where(Bloc.ouvrage_id == node_id).values(ouvrage_id=nouvel_id),
                execution_options=options,
            )
        # Children loaded before the move still point at the old id
        session.expire_all()
        return nouvel_id
