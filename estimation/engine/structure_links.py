"""Structure links: the attachment point of Articles.

Each link is the pair (ouvrage_id, bloc_id), bloc_id being NULL for
Articles attached directly to the Ouvrage. There is at most one link per
pair. Deleting a node goes through the helpers at the bottom so that
articles, links and nodes disappear together.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.errors import ConflictError, NotFoundError
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleProjet,
    Bloc,
    LienStructure,
    Ouvrage,
)

logger = logging.getLogger(__name__)


def find(session, ouvrage_id: int, bloc_id: int | None = None) -> LienStructure | None:
    stmt = select(LienStructure).where(LienStructure.ouvrage_id == ouvrage_id)
    if bloc_id is None:
        stmt = stmt.where(LienStructure.bloc_id.is_(None))
    else:
        stmt = stmt.where(LienStructure.bloc_id == bloc_id)
    return session.scalars(stmt).first()


def find_or_create(session, ouvrage_id: int, bloc_id: int | None = None) -> LienStructure:
    """Return the link for (ouvrage, bloc), creating it if absent.

    Raises NotFoundError when either node is missing and ConflictError when
    the Bloc belongs to another Ouvrage.
    """
    if session.get(Ouvrage, ouvrage_id) is None:
        raise NotFoundError(f"Ouvrage {ouvrage_id} introuvable")
    if bloc_id is not None:
        bloc = session.get(Bloc, bloc_id)
        if bloc is None:
            raise NotFoundError(f"Bloc {bloc_id} introuvable")
        if bloc.ouvrage_id != ouvrage_id:
            raise ConflictError(
                f"Le bloc {bloc_id} n'appartient pas à l'ouvrage {ouvrage_id}"
            )

    existing = find(session, ouvrage_id, bloc_id)
    if existing is not None:
        return existing

    lien = LienStructure(ouvrage_id=ouvrage_id, bloc_id=bloc_id)
    try:
        with session.begin_nested():
            session.add(lien)
    except IntegrityError:
        # Created concurrently since the lookup
        logger.info("Lien (%s, %s) déjà créé, relecture", ouvrage_id, bloc_id)
        existing = find(session, ouvrage_id, bloc_id)
        if existing is None:
            raise
        return existing
    return lien


# ── Cascading deletes ───────────────────────────────────────────────────


def _supprimer_liens(session, liens: list[LienStructure]) -> int:
    """Delete *liens* and their articles, children first. Returns article count."""
    if not liens:
        return 0
    articles = session.scalars(
        select(ArticleProjet).where(
            ArticleProjet.structure_link_id.in_([lien.id for lien in liens])
        )
    ).all()
    for article in articles:
        session.delete(article)
    session.flush()
    for lien in liens:
        # loaded collections still hold the deleted rows
        session.expire(lien, ["articles"])
        session.delete(lien)
    session.flush()
    return len(articles)


def supprimer_bloc(session, bloc: Bloc) -> int:
    liens = session.scalars(select(LienStructure).where(LienStructure.bloc_id == bloc.id)).all()
    nb_articles = _supprimer_liens(session, list(liens))
    session.expire(bloc, ["liens"])
    session.delete(bloc)
    session.flush()
    return nb_articles


def supprimer_ouvrage(session, ouvrage: Ouvrage) -> dict:
    """Delete an Ouvrage with its Blocs, links and Articles. Returns counts."""
    liens = session.scalars(
        select(LienStructure).where(LienStructure.ouvrage_id == ouvrage.id)
    ).all()
    nb_articles = _supprimer_liens(session, list(liens))
    blocs = session.scalars(select(Bloc).where(Bloc.ouvrage_id == ouvrage.id)).all()
    for bloc in blocs:
        session.expire(bloc, ["liens"])
        session.delete(bloc)
    session.flush()
    session.expire(ouvrage, ["blocs", "liens"])
    session.delete(ouvrage)
    session.flush()
    return {"articles": nb_articles, "blocs": len(blocs), "liens": len(liens)}
