"""Designation rules: pure functions over dotted hierarchical numbering.

A designation is a dotted numeric string such as ``"1.2.3"``: lot index,
ouvrage index, then bloc / article sub-indices. Nothing here touches the
database; the renumbering pass in ``estimation.engine.designations`` feeds
these helpers with the designations already in use.

Only stdlib and domain imports allowed.
"""

from __future__ import annotations

import re
from collections.abc import Collection

from domain.errors import ConflictError, InvalidError
from domain.models import DesignationDepart

_DESIGNATION = re.compile(r"^\d+(\.\d+)*$")

DEFAULT_MAX_ATTEMPTS = 1000


def est_vide(designation: str | None) -> bool:
    """True when *designation* is None or only whitespace."""
    return designation is None or not str(designation).strip()


def nettoyer(designation: str | None) -> str | None:
    """Strip a designation, mapping blank values to None."""
    if est_vide(designation):
        return None
    return str(designation).strip()


def valider(designation: str | None) -> str:
    """Return the cleaned designation or raise InvalidError if malformed."""
    cleaned = nettoyer(designation)
    if cleaned is None or not _DESIGNATION.match(cleaned):
        raise InvalidError(f"Désignation invalide: {designation!r}")
    return cleaned


def segments(designation: str) -> list[str]:
    return str(designation).strip().split(".")


def joindre(prefixe: str | int, index: int) -> str:
    return f"{prefixe}.{index}"


def cle_tri(designation: str | None) -> tuple:
    """Natural sort key: "1.10" sorts after "1.9"; blanks sort last."""
    if est_vide(designation):
        return (1, ())
    parts = []
    for part in segments(designation):
        parts.append((0, int(part), "") if part.isdigit() else (1, 0, part))
    return (0, tuple(parts))


def increment_last(designation: str) -> str:
    """"1.2" -> "1.3"; a non-numeric last segment gets ".1" appended."""
    parts = segments(designation)
    last = parts[-1]
    if last.isdigit() and int(last) > 0:
        parts[-1] = str(int(last) + 1)
        return ".".join(parts)
    return f"{designation}.1"


def rebase(designation: str | None, ancien_prefixe: str | None, nouveau_prefixe: str) -> str | None:
    """Move *designation* from under *ancien_prefixe* to under *nouveau_prefixe*.

    Returns None when the designation does not live under the old prefix,
    so that the renumbering pass assigns a fresh one.
    """
    designation = nettoyer(designation)
    ancien_prefixe = nettoyer(ancien_prefixe)
    if designation is None or ancien_prefixe is None:
        return None
    if designation == ancien_prefixe:
        return nouveau_prefixe
    if designation.startswith(ancien_prefixe + "."):
        return nouveau_prefixe + designation[len(ancien_prefixe):]
    return None


def premier_libre(
    prefixe: str | int,
    depart: int,
    utilisees: Collection[str],
    max_tentatives: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[str, int]:
    """Return ``(designation, index)`` for the first free ``prefixe.index``.

    The search starts at *depart* and advances past every candidate found in
    *utilisees*. Raises ConflictError once *max_tentatives* candidates have
    been rejected.
    """
    index = max(int(depart), 1)
    for _ in range(max_tentatives):
        candidat = joindre(prefixe, index)
        if candidat not in utilisees:
            return candidat, index
        index += 1
    raise ConflictError(
        f"Aucune désignation libre sous {prefixe!r} après {max_tentatives} tentatives"
    )


def prochaine_designation_article(
    base: str | None,
    utilisees: Collection[str],
    max_tentatives: int = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Designation for a new Article appended under *base* (bloc or ouvrage)."""
    designation, _ = premier_libre(base or "1", 1, utilisees, max_tentatives)
    return designation


def parse_depart(valeur: str | None) -> DesignationDepart | None:
    """Split a starting designation into per-level seeds.

    - ``"3"``        -> the seeded Ouvrage gets ``lotIndex.3``
    - ``"2.1"``      -> the Ouvrage gets ``"2.1"`` verbatim
    - ``"1.1.1"``    -> Ouvrage ``"1.1"``, first Bloc ``"1.1.1"``
    - ``"1.1.1.1"``  -> additionally the first Article of that Bloc
    """
    if est_vide(valeur):
        return None
    brute = valider(valeur)
    parts = segments(brute)
    if len(parts) > 4:
        raise InvalidError(f"Désignation de départ trop profonde: {brute!r}")
    if len(parts) == 1:
        return DesignationDepart(brute=brute, ouvrage_index=int(parts[0]))
    ouvrage = ".".join(parts[:2])
    bloc = ".".join(parts[:3]) if len(parts) >= 3 else None
    article = brute if len(parts) == 4 else None
    return DesignationDepart(brute=brute, ouvrage=ouvrage, bloc=bloc, article=article)
