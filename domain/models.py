"""Domain models: pure Python, zero external dependencies.

Only stdlib imports allowed: dataclasses, datetime, enum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TypeNoeud(Enum):
    """Kind of structural node sharing the historical id space."""

    OUVRAGE = "ouvrage"
    BLOC = "bloc"

    @property
    def oppose(self) -> TypeNoeud:
        return TypeNoeud.BLOC if self is TypeNoeud.OUVRAGE else TypeNoeud.OUVRAGE


class ActionEvenement(Enum):
    """Structural mutation recorded in the project audit trail."""

    OUVRAGE_CREE = "ouvrage_cree"
    OUVRAGE_DUPLIQUE = "ouvrage_duplique"
    OUVRAGE_SUPPRIME = "ouvrage_supprime"
    BLOC_CREE = "bloc_cree"
    BLOC_SUPPRIME = "bloc_supprime"
    ARTICLE_AJOUTE = "article_ajoute"
    ARTICLE_MODIFIE = "article_modifie"
    ARTICLE_SUPPRIME = "article_supprime"
    LOT_SUPPRIME = "lot_supprime"
    DESIGNATIONS_RECALCULEES = "designations_recalculees"
    PRIX_RECALCULES = "prix_recalcules"


# ── Value Objects ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class MargesClient:
    """Gross and net margin rates (percent) carried by a client."""

    brute: float = 0.0
    nette: float = 0.0


@dataclass(frozen=True)
class TotauxArticle:
    """Computed totals of a priced line item."""

    total_ht: float
    total_ttc: float


@dataclass(frozen=True)
class DesignationDepart:
    """Starting designation split into the seeds of each hierarchy level.

    ``ouvrage_index`` is set when only one segment was given: the seeded
    Ouvrage then receives ``lotIndex.ouvrage_index``.
    """

    brute: str
    ouvrage: str | None = None
    ouvrage_index: int | None = None
    bloc: str | None = None
    article: str | None = None


# ── Entities ────────────────────────────────────────────────────────────


@dataclass
class Ouvrage:
    """A work package within a per-project Lot."""

    nom: str
    projet_lot_id: int
    designation: str | None = None
    total: float = 0.0
    id: int | None = None


@dataclass
class Bloc:
    """Optional sub-grouping of Articles within an Ouvrage."""

    nom: str
    ouvrage_id: int | None
    quantite: float = 0.0
    unite: str | None = None
    prix_unitaire: float | None = None
    total: float = 0.0
    designation: str | None = None
    id: int | None = None


@dataclass
class ArticleProjet:
    """A priced line item attached to one structure link."""

    structure_link_id: int
    quantite: float
    prix_unitaire: float
    tva: float = 0.0
    total_ht: float = 0.0
    total_ttc: float = 0.0
    article_catalogue_id: int | None = None
    localisation: str | None = None
    description: str | None = None
    designation: str | None = None
    id: int | None = None


@dataclass
class LotProjet:
    """A catalog Lot attached to a project, with its aggregated totals."""

    projet_id: int
    lot_catalogue_id: int
    libelle: str
    total: float = 0.0
    total_vente: float = 0.0
    id: int | None = None


@dataclass
class EvenementProjet:
    """Audit event emitted after a structural mutation has committed."""

    projet_id: int
    action: ActionEvenement
    cible: str
    details: dict = field(default_factory=dict)
    timestamp: datetime | None = None
