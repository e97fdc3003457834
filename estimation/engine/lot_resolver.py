"""Lot resolution: caller-supplied lot reference -> catalog id -> per-project lot.

A reference is either a catalog identifier (int or digit string) or a
label. Labels are matched case- and accent-insensitively after trimming;
an unknown label is inserted into the catalog unless the caller forbids it.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.errors import InvalidError, NotFoundError
from domain.normalization import coerce_identifier, lot_label_key, normalize_lot_label
from estimation.adapters.outbound.sqlalchemy_models import LotCatalogue, ProjetLot

logger = logging.getLogger(__name__)


def find_lot_catalogue_id(session, label) -> int | None:
    key = lot_label_key(label)
    if key is None:
        return None
    return session.scalar(select(LotCatalogue.id).where(LotCatalogue.libelle_normalise == key))


def resolve_lot_catalogue_id(session, lot_ref, allow_insert: bool = True) -> int | None:
    """Resolve *lot_ref* to a catalog id.

    Returns None only when the label is unknown and *allow_insert* is False.
    Raises InvalidError for a blank reference and NotFoundError for an
    unknown identifier.
    """
    identifier = coerce_identifier(lot_ref)
    if identifier is not None:
        if session.get(LotCatalogue, identifier) is None:
            raise NotFoundError(f"Lot {identifier} introuvable dans le catalogue")
        return identifier

    label = normalize_lot_label(lot_ref)
    if label is None:
        raise InvalidError("Référence de lot vide")

    existing = find_lot_catalogue_id(session, label)
    if existing is not None or not allow_insert:
        return existing

    lot = LotCatalogue(libelle=label, libelle_normalise=lot_label_key(label))
    try:
        with session.begin_nested():
            session.add(lot)
    except IntegrityError:
        # Another writer inserted the same label: read theirs
        existing = find_lot_catalogue_id(session, label)
        if existing is None:
            raise
        return existing
    logger.info("Lot %r ajouté au catalogue (id=%s)", label, lot.id)
    return lot.id


def find_projet_lot(session, projet_id: int, lot_catalogue_id: int) -> ProjetLot | None:
    return session.scalars(
        select(ProjetLot).where(
            ProjetLot.projet_id == projet_id,
            ProjetLot.lot_catalogue_id == lot_catalogue_id,
        )
    ).first()


def ensure_projet_lot(session, projet_id: int, lot_catalogue_id: int) -> ProjetLot:
    """Per-project lot for the catalog entry, created with zero totals if absent."""
    existing = find_projet_lot(session, projet_id, lot_catalogue_id)
    if existing is not None:
        return existing
    projet_lot = ProjetLot(projet_id=projet_id, lot_catalogue_id=lot_catalogue_id)
    try:
        with session.begin_nested():
            session.add(projet_lot)
    except IntegrityError:
        existing = find_projet_lot(session, projet_id, lot_catalogue_id)
        if existing is None:
            raise
        return existing
    return projet_lot


def resolve_projet_lot(session, projet_id: int, lot_ref, allow_insert: bool = True) -> ProjetLot:
    """Catalog resolution followed by the per-project lot lookup.

    Without *allow_insert* neither the catalog entry nor the per-project lot
    is created, and a missing one raises NotFoundError.
    """
    lot_catalogue_id = resolve_lot_catalogue_id(session, lot_ref, allow_insert=allow_insert)
    if lot_catalogue_id is None:
        raise NotFoundError(f"Lot {lot_ref!r} introuvable")
    if allow_insert:
        return ensure_projet_lot(session, projet_id, lot_catalogue_id)
    projet_lot = find_projet_lot(session, projet_id, lot_catalogue_id)
    if projet_lot is None:
        raise NotFoundError(f"Lot {lot_ref!r} absent du projet {projet_id}")
    return projet_lot
