"""Structural operations on a project estimate.

Every mutation runs as one unit of work: open a session, take the project
lock, mutate, roll the prices up, commit. Cache invalidation and audit
events happen only once the commit has succeeded, and a failure there is
logged without affecting the result returned to the caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select

from domain import designation as regles
from domain.errors import ConflictError, InvalidError, NotFoundError
from domain.models import (
    ActionEvenement,
    ArticleProjet as DomainArticle,
    Bloc as DomainBloc,
    EvenementProjet,
    LotProjet as DomainLot,
    Ouvrage as DomainOuvrage,
    TypeNoeud,
)
from domain.ports import CachePort, EventPublisherPort, ProjectLockPort
from estimation.adapters.outbound.redis_cache import cle_generation, cle_projet
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleCatalogue as OrmArticleCatalogue,
    ArticleProjet as OrmArticle,
    Bloc as OrmBloc,
    LienStructure as OrmLien,
    Ouvrage as OrmOuvrage,
    Projet as OrmProjet,
    ProjetLot as OrmProjetLot,
)
from estimation.engine import structure_links
from estimation.engine.designations import (
    MoteurDesignations,
    RapportDesignations,
    designations_ouvrages,
    lots_avec_ouvrages,
)
from estimation.engine.identifier_space import IdentifierSpaceArbiter
from estimation.engine.lot_resolver import resolve_projet_lot
from estimation.engine.pricing import (
    coefficient_projet,
    rafraichir_branche,
    recalculer_article,
    recalculer_tout,
)

logger = logging.getLogger(__name__)

CHAMPS_ARTICLE_MODIFIABLES = frozenset(
    {"quantite", "prix_unitaire", "tva", "localisation", "description", "designation"}
)


# ── Conversions ─────────────────────────────────────────────────────────


def _ouvrage_to_domain(orm: OrmOuvrage) -> DomainOuvrage:
    return DomainOuvrage(
        id=orm.id,
        nom=orm.nom,
        projet_lot_id=orm.projet_lot_id,
        designation=orm.designation,
        total=orm.total or 0.0,
    )


def _bloc_to_domain(orm: OrmBloc) -> DomainBloc:
    return DomainBloc(
        id=orm.id,
        nom=orm.nom,
        ouvrage_id=orm.ouvrage_id,
        quantite=orm.quantite or 0.0,
        unite=orm.unite,
        prix_unitaire=orm.prix_unitaire,
        total=orm.total or 0.0,
        designation=orm.designation,
    )


def _article_to_domain(orm: OrmArticle) -> DomainArticle:
    return DomainArticle(
        id=orm.id,
        structure_link_id=orm.structure_link_id,
        article_catalogue_id=orm.article_catalogue_id,
        quantite=orm.quantite,
        prix_unitaire=orm.prix_unitaire,
        tva=orm.tva or 0.0,
        total_ht=orm.total_ht or 0.0,
        total_ttc=orm.total_ttc or 0.0,
        localisation=orm.localisation,
        description=orm.description,
        designation=orm.designation,
    )


def _lot_to_domain(orm: OrmProjetLot) -> DomainLot:
    return DomainLot(
        id=orm.id,
        projet_id=orm.projet_id,
        lot_catalogue_id=orm.lot_catalogue_id,
        libelle=orm.lot_catalogue.libelle,
        total=orm.total or 0.0,
        total_vente=orm.total_vente or 0.0,
    )


def _article_vue(orm: OrmArticle) -> dict:
    vue = asdict(_article_to_domain(orm))
    vue["libelle"] = orm.article_catalogue.libelle if orm.article_catalogue else None
    return vue


def _tri(noeuds):
    return sorted(noeuds, key=lambda n: (regles.cle_tri(n.designation), n.id))


# ── Input checks ────────────────────────────────────────────────────────


def _texte_requis(valeur, champ: str) -> str:
    if valeur is None or not str(valeur).strip():
        raise InvalidError(f"Champ requis manquant: {champ}")
    return str(valeur).strip()


def _nombre(valeur, champ: str, minimum: float | None = None) -> float:
    if isinstance(valeur, bool):
        raise InvalidError(f"{champ} doit être numérique")
    try:
        nombre = float(valeur)
    except (TypeError, ValueError):
        raise InvalidError(f"{champ} doit être numérique: {valeur!r}") from None
    if minimum is not None and nombre < minimum:
        raise InvalidError(f"{champ} doit être >= {minimum}: {nombre}")
    return nombre


class EstimationService:
    """Entry point for structural mutations and reads of a project estimate."""

    def __init__(
        self,
        session_factory,
        verrou: ProjectLockPort,
        arbitre: IdentifierSpaceArbiter | None = None,
        designations: MoteurDesignations | None = None,
        publisher: EventPublisherPort | None = None,
        cache: CachePort | None = None,
        cache_ttl: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._verrou = verrou
        self._arbitre = arbitre or IdentifierSpaceArbiter()
        self._designations = designations or MoteurDesignations(verrou)
        self._publisher = publisher
        self._cache = cache
        self._cache_ttl = cache_ttl

    # ── Unit of work ────────────────────────────────────────────────────

    @contextmanager
    def _unite_de_travail(self, projet_id: int):
        session = self._session_factory()
        evenements: list[EvenementProjet] = []
        try:
            with self._verrou.verrouiller(session, projet_id):
                try:
                    yield session, evenements
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
        finally:
            session.close()
        self._apres_commit(projet_id, evenements)

    def _apres_commit(self, projet_id: int, evenements: list[EvenementProjet]) -> None:
        if self._cache is not None:
            try:
                # A new generation first: views built before this commit stay unusable
                self._cache.set(cle_generation(projet_id), uuid4().hex, ttl=self._cache_ttl)
                self._cache.invalidate(cle_projet(projet_id))
            except Exception:
                logger.exception("Invalidation du cache du projet %s échouée", projet_id)
        if self._publisher is None:
            return
        for evenement in evenements:
            try:
                self._publisher.publish(evenement)
            except Exception:
                logger.exception(
                    "Publication de l'événement %s du projet %s échouée",
                    evenement.action.value, projet_id,
                )

    @staticmethod
    def _evenement(projet_id: int, action: ActionEvenement, cible: str, **details) -> EvenementProjet:
        return EvenementProjet(
            projet_id=projet_id,
            action=action,
            cible=cible,
            details=details,
            timestamp=datetime.now(timezone.utc),
        )

    def _projet_de(self, stmt, message: str) -> int:
        """Project owning a row, read before the lock is taken."""
        with self._session_factory() as session:
            projet_id = session.scalar(stmt)
        if projet_id is None:
            raise NotFoundError(message)
        return projet_id

    # ── Lookups ─────────────────────────────────────────────────────────

    @staticmethod
    def _projet(session, projet_id: int) -> OrmProjet:
        projet = session.get(OrmProjet, projet_id)
        if projet is None:
            raise NotFoundError(f"Projet {projet_id} introuvable")
        return projet

    @staticmethod
    def _ouvrage_du_projet(session, projet_id: int, ouvrage_id: int) -> OrmOuvrage:
        ouvrage = session.scalars(
            select(OrmOuvrage)
            .join(OrmProjetLot, OrmOuvrage.projet_lot_id == OrmProjetLot.id)
            .where(OrmOuvrage.id == ouvrage_id, OrmProjetLot.projet_id == projet_id)
            .with_for_update(of=OrmOuvrage)
        ).first()
        if ouvrage is None:
            raise NotFoundError(f"Ouvrage {ouvrage_id} introuvable dans le projet {projet_id}")
        return ouvrage

    # ── Ouvrages ────────────────────────────────────────────────────────

    def creer_ouvrage(
        self,
        projet_id: int,
        lot,
        nom: str,
        designation: str | None = None,
        creer_lot: bool = True,
    ) -> DomainOuvrage:
        """Create an Ouvrage in *lot* (catalog id or label).

        A *designation* seeds the new Ouvrage: two segments are used
        verbatim, one segment is an index within the lot.
        """
        nom = _texte_requis(nom, "nom")
        regles.parse_depart(designation)

        with self._unite_de_travail(projet_id) as (session, evenements):
            self._projet(session, projet_id)
            projet_lot = resolve_projet_lot(session, projet_id, lot, allow_insert=creer_lot)
            projet_lot_id = projet_lot.id

            ouvrage_id = self._arbitre.inserer(
                session, TypeNoeud.OUVRAGE, OrmOuvrage(projet_lot_id=projet_lot_id, nom=nom),
            )
            structure_links.find_or_create(session, ouvrage_id)
            self._designations.recalculer(
                session, projet_id,
                projet_lot_id=projet_lot_id,
                designation_depart=designation,
                ouvrage_cible_id=ouvrage_id,
            )
            rafraichir_branche(session, projet_id, ouvrage_ids=[ouvrage_id], projet_lot_ids=[projet_lot_id])

            ouvrage = _ouvrage_to_domain(session.get(OrmOuvrage, ouvrage_id))
            evenements.append(self._evenement(
                projet_id, ActionEvenement.OUVRAGE_CREE, f"ouvrage:{ouvrage.id}",
                designation=ouvrage.designation, projet_lot_id=projet_lot_id,
            ))
        logger.info("Ouvrage %s (%s) créé dans le projet %s", ouvrage.id, ouvrage.designation, projet_id)
        return ouvrage

    def dupliquer_ouvrage(
        self,
        projet_id: int,
        ouvrage_id: int,
        nom: str | None = None,
        designation: str | None = None,
    ) -> DomainOuvrage:
        """Deep-copy an Ouvrage with its Blocs and Articles into the same lot.

        Without *designation* the copy takes the source designation with its
        last segment incremented past any designation already in use.
        Copied Bloc and Article designations are moved under the new prefix.
        """
        depart = regles.parse_depart(designation)

        with self._unite_de_travail(projet_id) as (session, evenements):
            source = self._ouvrage_du_projet(session, projet_id, ouvrage_id)
            projet_lot_id = source.projet_lot_id
            designation_source = regles.nettoyer(source.designation)
            utilisees = designations_ouvrages(session, projet_id)

            if depart is not None:
                cible = depart.ouvrage
                if cible is not None and cible in utilisees:
                    raise ConflictError(f"Désignation d'ouvrage {cible!r} déjà utilisée")
            elif designation_source is not None:
                cible = regles.increment_last(designation_source)
                for _ in range(self._designations.max_attempts):
                    if cible not in utilisees:
                        break
                    cible = regles.increment_last(cible)
                else:
                    raise ConflictError(
                        f"Aucune désignation libre après {designation_source!r}"
                    )
            else:
                cible = None

            def rebaser(valeur):
                return regles.rebase(valeur, designation_source, cible) if cible else None

            # Snapshot the source tree: id reassignment may expire loaded rows
            liens_source = {
                lien.bloc_id: [
                    {
                        "article_catalogue_id": a.article_catalogue_id,
                        "quantite": a.quantite,
                        "prix_unitaire": a.prix_unitaire,
                        "tva": a.tva,
                        "localisation": a.localisation,
                        "description": a.description,
                        "designation": a.designation,
                    }
                    for a in lien.articles
                ]
                for lien in session.scalars(select(OrmLien).where(OrmLien.ouvrage_id == source.id))
            }
            blocs_source = [
                {
                    "id": b.id,
                    "nom": b.nom,
                    "unite": b.unite,
                    "quantite": b.quantite,
                    "designation": b.designation,
                }
                for b in session.scalars(
                    select(OrmBloc).where(OrmBloc.ouvrage_id == source.id).order_by(OrmBloc.id)
                )
            ]

            nouvel_id = self._arbitre.inserer(
                session, TypeNoeud.OUVRAGE,
                OrmOuvrage(projet_lot_id=projet_lot_id, nom=nom or source.nom, designation=cible),
            )
            lien = structure_links.find_or_create(session, nouvel_id)
            self._copier_articles(session, lien.id, liens_source.get(None, []), rebaser)

            nouveaux_blocs = []
            minimum = nouvel_id + 1
            for bloc in blocs_source:
                bloc_id = self._arbitre.inserer(
                    session, TypeNoeud.BLOC,
                    OrmBloc(
                        projet_id=projet_id,
                        ouvrage_id=nouvel_id,
                        nom=bloc["nom"],
                        unite=bloc["unite"],
                        quantite=bloc["quantite"],
                        designation=rebaser(bloc["designation"]),
                    ),
                    minimum=minimum,
                )
                minimum = bloc_id + 1
                nouveaux_blocs.append(bloc_id)
                lien = structure_links.find_or_create(session, nouvel_id, bloc_id)
                self._copier_articles(session, lien.id, liens_source.get(bloc["id"], []), rebaser)

            self._designations.recalculer(
                session, projet_id,
                projet_lot_id=projet_lot_id,
                designation_depart=designation,
                ouvrage_cible_id=nouvel_id,
            )
            rafraichir_branche(
                session, projet_id,
                bloc_ids=nouveaux_blocs, ouvrage_ids=[nouvel_id], projet_lot_ids=[projet_lot_id],
            )

            copie = _ouvrage_to_domain(session.get(OrmOuvrage, nouvel_id))
            evenements.append(self._evenement(
                projet_id, ActionEvenement.OUVRAGE_DUPLIQUE, f"ouvrage:{copie.id}",
                source=ouvrage_id, designation=copie.designation, blocs=len(nouveaux_blocs),
            ))
        logger.info("Ouvrage %s dupliqué en %s (%s)", ouvrage_id, copie.id, copie.designation)
        return copie

    @staticmethod
    def _copier_articles(session, lien_id: int, articles: list[dict], rebaser) -> None:
        for valeurs in articles:
            copie = OrmArticle(structure_link_id=lien_id, **{**valeurs, "designation": rebaser(valeurs["designation"])})
            recalculer_article(copie)
            session.add(copie)
        session.flush()

    def supprimer_ouvrage(self, ouvrage_id: int) -> dict:
        projet_id = self._projet_de(
            select(OrmProjetLot.projet_id)
            .join(OrmOuvrage, OrmOuvrage.projet_lot_id == OrmProjetLot.id)
            .where(OrmOuvrage.id == ouvrage_id),
            f"Ouvrage {ouvrage_id} introuvable",
        )
        with self._unite_de_travail(projet_id) as (session, evenements):
            ouvrage = self._ouvrage_du_projet(session, projet_id, ouvrage_id)
            projet_lot_id = ouvrage.projet_lot_id
            compte = structure_links.supprimer_ouvrage(session, ouvrage)
            rafraichir_branche(session, projet_id, projet_lot_ids=[projet_lot_id])
            evenements.append(self._evenement(
                projet_id, ActionEvenement.OUVRAGE_SUPPRIME, f"ouvrage:{ouvrage_id}", **compte,
            ))
        return compte

    # ── Blocs ───────────────────────────────────────────────────────────

    def creer_bloc(
        self,
        projet_id: int,
        ouvrage_id: int,
        nom: str,
        quantite: float = 0.0,
        unite: str | None = None,
        designation: str | None = None,
    ) -> DomainBloc:
        nom = _texte_requis(nom, "nom")
        quantite = _nombre(quantite, "quantite", minimum=0)

        with self._unite_de_travail(projet_id) as (session, evenements):
            ouvrage = self._ouvrage_du_projet(session, projet_id, ouvrage_id)
            projet_lot_id = ouvrage.projet_lot_id
            if regles.est_vide(designation):
                designation = None
            else:
                designation = self._designations.verifier_soeur(session, designation, ouvrage_id)

            bloc_id = self._arbitre.inserer(
                session, TypeNoeud.BLOC,
                OrmBloc(
                    projet_id=projet_id,
                    ouvrage_id=ouvrage_id,
                    nom=nom,
                    unite=unite,
                    quantite=quantite,
                    designation=designation,
                ),
            )
            structure_links.find_or_create(session, ouvrage_id, bloc_id)
            if designation is None:
                self._designations.recalculer(
                    session, projet_id, projet_lot_id=projet_lot_id, ouvrage_cible_id=ouvrage_id,
                )
            rafraichir_branche(
                session, projet_id,
                bloc_ids=[bloc_id], ouvrage_ids=[ouvrage_id], projet_lot_ids=[projet_lot_id],
            )

            bloc = _bloc_to_domain(session.get(OrmBloc, bloc_id))
            evenements.append(self._evenement(
                projet_id, ActionEvenement.BLOC_CREE, f"bloc:{bloc.id}",
                ouvrage_id=ouvrage_id, designation=bloc.designation,
            ))
        return bloc

    def supprimer_bloc(self, bloc_id: int) -> int:
        """Delete a Bloc with its link and Articles; returns the article count."""
        projet_id = self._projet_de(
            select(OrmBloc.projet_id).where(OrmBloc.id == bloc_id),
            f"Bloc {bloc_id} introuvable",
        )
        with self._unite_de_travail(projet_id) as (session, evenements):
            bloc = session.get(OrmBloc, bloc_id, with_for_update=True)
            if bloc is None:
                raise NotFoundError(f"Bloc {bloc_id} introuvable")
            ouvrage = bloc.ouvrage
            ouvrage_ids = [ouvrage.id] if ouvrage is not None else []
            projet_lot_ids = [ouvrage.projet_lot_id] if ouvrage is not None else []

            nb_articles = structure_links.supprimer_bloc(session, bloc)
            rafraichir_branche(session, projet_id, ouvrage_ids=ouvrage_ids, projet_lot_ids=projet_lot_ids)
            evenements.append(self._evenement(
                projet_id, ActionEvenement.BLOC_SUPPRIME, f"bloc:{bloc_id}", articles=nb_articles,
            ))
        return nb_articles

    # ── Articles ────────────────────────────────────────────────────────

    def ajouter_article(
        self,
        projet_id: int,
        ouvrage_id: int,
        quantite,
        article_catalogue_id: int | None = None,
        bloc_id: int | None = None,
        prix_unitaire=None,
        tva=None,
        localisation: str | None = None,
        description: str | None = None,
        designation: str | None = None,
    ) -> DomainArticle:
        """Attach an Article to an Ouvrage, or to one of its Blocs.

        Adding a catalog article already present at the same place adds to
        the existing line's quantity instead of creating a second line. Any
        other field given for such a merge must match the existing line,
        otherwise ConflictError is raised and nothing is merged.
        """
        quantite = _nombre(quantite, "quantite", minimum=0)
        fournis = {
            "prix_unitaire": _nombre(prix_unitaire, "prix_unitaire") if prix_unitaire is not None else None,
            "tva": _nombre(tva, "tva", minimum=0) if tva is not None else None,
            "localisation": localisation,
            "description": description,
            "designation": None if regles.est_vide(designation) else designation,
        }
        tva = fournis["tva"] if fournis["tva"] is not None else 0.0

        with self._unite_de_travail(projet_id) as (session, evenements):
            ouvrage = self._ouvrage_du_projet(session, projet_id, ouvrage_id)
            projet_lot_id = ouvrage.projet_lot_id
            bloc = None
            if bloc_id is not None:
                bloc = session.get(OrmBloc, bloc_id, with_for_update=True)
                if bloc is None:
                    raise NotFoundError(f"Bloc {bloc_id} introuvable")
                if bloc.ouvrage_id != ouvrage_id:
                    raise ConflictError(f"Le bloc {bloc_id} n'appartient pas à l'ouvrage {ouvrage_id}")
                if regles.est_vide(bloc.designation):
                    raise InvalidError(f"Le bloc {bloc_id} n'a pas de désignation")

            catalogue = None
            if article_catalogue_id is not None:
                catalogue = session.get(OrmArticleCatalogue, article_catalogue_id)
                if catalogue is None:
                    raise NotFoundError(f"Article catalogue {article_catalogue_id} introuvable")
            if prix_unitaire is None and catalogue is not None:
                prix_unitaire = catalogue.prix_unitaire
            if prix_unitaire is None:
                raise InvalidError("Champ requis manquant: prix_unitaire")
            prix_unitaire = _nombre(prix_unitaire, "prix_unitaire")

            lien = structure_links.find_or_create(session, ouvrage_id, bloc_id)
            existant = None
            if catalogue is not None:
                existant = session.scalars(
                    select(OrmArticle)
                    .where(
                        OrmArticle.structure_link_id == lien.id,
                        OrmArticle.article_catalogue_id == catalogue.id,
                    )
                    .order_by(OrmArticle.id)
                    .with_for_update()
                ).first()

            if existant is not None:
                ecarts = [
                    champ for champ, valeur in fournis.items()
                    if valeur is not None and valeur != getattr(existant, champ)
                ]
                if ecarts:
                    raise ConflictError(
                        f"L'article {existant.id} existe déjà pour ce catalogue avec "
                        f"d'autres valeurs: {', '.join(ecarts)}"
                    )
                existant.quantite = (existant.quantite or 0) + quantite
                article = recalculer_article(existant)
            else:
                if regles.est_vide(designation):
                    designation = self._designations.prochaine_article(session, ouvrage, bloc)
                else:
                    designation = self._designations.verifier_soeur(session, designation, ouvrage_id, bloc_id)
                article = recalculer_article(OrmArticle(
                    structure_link_id=lien.id,
                    article_catalogue_id=article_catalogue_id,
                    quantite=quantite,
                    prix_unitaire=prix_unitaire,
                    tva=tva,
                    localisation=localisation,
                    description=description,
                    designation=designation,
                ))
                session.add(article)
            session.flush()
            article_id = article.id

            rafraichir_branche(
                session, projet_id,
                bloc_ids=[bloc_id] if bloc_id is not None else [],
                ouvrage_ids=[ouvrage_id],
                projet_lot_ids=[projet_lot_id],
            )
            resultat = _article_to_domain(session.get(OrmArticle, article_id))
            evenements.append(self._evenement(
                projet_id, ActionEvenement.ARTICLE_AJOUTE, f"article:{article_id}",
                ouvrage_id=ouvrage_id, bloc_id=bloc_id, fusion=existant is not None,
            ))
        return resultat

    def _projet_de_article(self, article_id: int) -> int:
        return self._projet_de(
            select(OrmProjetLot.projet_id)
            .join(OrmOuvrage, OrmOuvrage.projet_lot_id == OrmProjetLot.id)
            .join(OrmLien, OrmLien.ouvrage_id == OrmOuvrage.id)
            .join(OrmArticle, OrmArticle.structure_link_id == OrmLien.id)
            .where(OrmArticle.id == article_id),
            f"Article {article_id} introuvable",
        )

    @staticmethod
    def _article_verrouille(session, article_id: int) -> OrmArticle:
        article = session.get(OrmArticle, article_id, with_for_update=True)
        if article is None:
            raise NotFoundError(f"Article {article_id} introuvable")
        return article

    def modifier_article(self, article_id: int, **champs) -> DomainArticle:
        """Update editable fields of an Article and roll the prices up.

        A designation can be set on an Article that has none; an assigned
        designation never changes.
        """
        inconnus = set(champs) - CHAMPS_ARTICLE_MODIFIABLES
        if inconnus:
            raise InvalidError(f"Champs non modifiables: {', '.join(sorted(inconnus))}")

        projet_id = self._projet_de_article(article_id)
        with self._unite_de_travail(projet_id) as (session, evenements):
            article = self._article_verrouille(session, article_id)
            lien = article.lien
            ouvrage_id, bloc_id = lien.ouvrage_id, lien.bloc_id
            projet_lot_id = lien.ouvrage.projet_lot_id

            for champ, valeur in champs.items():
                if champ == "designation":
                    nouvelle = regles.nettoyer(valeur)
                    actuelle = regles.nettoyer(article.designation)
                    if nouvelle == actuelle or nouvelle is None:
                        continue
                    if actuelle is not None:
                        raise InvalidError(
                            f"La désignation {actuelle!r} de l'article {article_id} est déjà attribuée"
                        )
                    article.designation = self._designations.verifier_soeur(
                        session, nouvelle, ouvrage_id, bloc_id, exclure_article_id=article_id,
                    )
                elif champ in ("quantite", "tva"):
                    setattr(article, champ, _nombre(valeur, champ, minimum=0))
                elif champ == "prix_unitaire":
                    article.prix_unitaire = _nombre(valeur, champ)
                else:
                    setattr(article, champ, valeur)

            recalculer_article(article)
            rafraichir_branche(
                session, projet_id,
                bloc_ids=[bloc_id] if bloc_id is not None else [],
                ouvrage_ids=[ouvrage_id],
                projet_lot_ids=[projet_lot_id],
            )
            resultat = _article_to_domain(session.get(OrmArticle, article_id))
            evenements.append(self._evenement(
                projet_id, ActionEvenement.ARTICLE_MODIFIE, f"article:{article_id}",
                champs=sorted(champs),
            ))
        return resultat

    def supprimer_article(self, article_id: int) -> None:
        projet_id = self._projet_de_article(article_id)
        with self._unite_de_travail(projet_id) as (session, evenements):
            article = self._article_verrouille(session, article_id)
            lien = article.lien
            ouvrage_id, bloc_id = lien.ouvrage_id, lien.bloc_id
            projet_lot_id = lien.ouvrage.projet_lot_id

            session.delete(article)
            session.flush()
            rafraichir_branche(
                session, projet_id,
                bloc_ids=[bloc_id] if bloc_id is not None else [],
                ouvrage_ids=[ouvrage_id],
                projet_lot_ids=[projet_lot_id],
            )
            evenements.append(self._evenement(
                projet_id, ActionEvenement.ARTICLE_SUPPRIME, f"article:{article_id}",
                ouvrage_id=ouvrage_id, bloc_id=bloc_id,
            ))

    # ── Lots ────────────────────────────────────────────────────────────

    def supprimer_lot(self, projet_id: int, lot) -> dict:
        """Remove a lot from the project with everything under it."""
        with self._unite_de_travail(projet_id) as (session, evenements):
            self._projet(session, projet_id)
            projet_lot = resolve_projet_lot(session, projet_id, lot, allow_insert=False)
            ouvrages = session.scalars(
                select(OrmOuvrage).where(OrmOuvrage.projet_lot_id == projet_lot.id).with_for_update()
            ).all()
            compte = {"ouvrages": len(ouvrages), "blocs": 0, "articles": 0}
            for ouvrage in ouvrages:
                supprime = structure_links.supprimer_ouvrage(session, ouvrage)
                compte["blocs"] += supprime["blocs"]
                compte["articles"] += supprime["articles"]
            session.expire(projet_lot, ["ouvrages"])
            lot_catalogue_id = projet_lot.lot_catalogue_id
            session.delete(projet_lot)
            session.flush()
            rafraichir_branche(session, projet_id)
            evenements.append(self._evenement(
                projet_id, ActionEvenement.LOT_SUPPRIME, f"lot:{lot_catalogue_id}", **compte,
            ))
        return compte

    # ── Recalculation ───────────────────────────────────────────────────

    def recalculer_designations(self, projet_id: int, lot=None) -> RapportDesignations:
        """Fill in missing designations of the whole project or of one lot."""
        with self._unite_de_travail(projet_id) as (session, evenements):
            self._projet(session, projet_id)
            projet_lot_id = None
            if lot is not None:
                projet_lot_id = resolve_projet_lot(session, projet_id, lot, allow_insert=False).id
            rapport = self._designations.recalculer(session, projet_id, projet_lot_id=projet_lot_id)
            if rapport.total:
                evenements.append(self._evenement(
                    projet_id, ActionEvenement.DESIGNATIONS_RECALCULEES, f"projet:{projet_id}",
                    projet_lot_id=projet_lot_id,
                    ouvrages=rapport.ouvrages, blocs=rapport.blocs, articles=rapport.articles,
                ))
        return rapport

    def recalculer_prix(self, projet_id: int) -> dict:
        """Recompute every total of the project, e.g. after a margin change."""
        with self._unite_de_travail(projet_id) as (session, evenements):
            self._projet(session, projet_id)
            resume = recalculer_tout(session, projet_id)
            evenements.append(self._evenement(
                projet_id, ActionEvenement.PRIX_RECALCULES, f"projet:{projet_id}",
                cout=resume["cout"], prix_vente=resume["prix_vente"],
            ))
        return resume

    # ── Reads ───────────────────────────────────────────────────────────

    def lots(self, projet_id: int) -> list[DomainLot]:
        with self._session_factory() as session:
            projet = self._projet(session, projet_id)
            return [_lot_to_domain(pl) for pl in projet.lots]

    def structure(self, projet_id: int) -> dict:
        """Nested, JSON-serializable view: lots, ouvrages, blocs and articles.

        Reads take no lock; the view reflects the last committed state.
        Cached views are tagged with the project's generation token read
        before the view was built, and only served while that token is
        still current.
        """
        cle = cle_projet(projet_id, "structure")
        generation = None
        if self._cache is not None:
            try:
                generation = self._cache.get(cle_generation(projet_id))
                cached = self._cache.get(cle)
            except Exception:
                logger.exception("Lecture du cache %s échouée", cle)
                cached = None
            if isinstance(cached, dict) and cached.get("generation") == generation:
                return cached["vue"]

        with self._session_factory() as session:
            vue = self._construire_structure(session, projet_id)

        if self._cache is not None:
            try:
                self._cache.set(cle, {"generation": generation, "vue": vue}, ttl=self._cache_ttl)
            except Exception:
                logger.exception("Écriture du cache %s échouée", cle)
        return vue

    def _construire_structure(self, session, projet_id: int) -> dict:
        projet = self._projet(session, projet_id)
        index_lots = {pl_id: i for i, pl_id in enumerate(lots_avec_ouvrages(session, projet_id), start=1)}

        lots = []
        for projet_lot in projet.lots:
            ouvrages = []
            for ouvrage in _tri(projet_lot.ouvrages):
                liens = {lien.bloc_id: lien for lien in ouvrage.liens}
                directs = liens[None].articles if None in liens else []
                blocs = []
                for bloc in _tri(ouvrage.blocs):
                    articles = liens[bloc.id].articles if bloc.id in liens else []
                    blocs.append({
                        **asdict(_bloc_to_domain(bloc)),
                        "articles": [_article_vue(a) for a in _tri(articles)],
                    })
                ouvrages.append({
                    **asdict(_ouvrage_to_domain(ouvrage)),
                    "articles": [_article_vue(a) for a in _tri(directs)],
                    "blocs": blocs,
                })
            lots.append({
                **asdict(_lot_to_domain(projet_lot)),
                "index": index_lots.get(projet_lot.id),
                "ouvrages": ouvrages,
            })

        autonomes = session.scalars(
            select(OrmBloc).where(OrmBloc.projet_id == projet_id, OrmBloc.ouvrage_id.is_(None))
        ).all()
        return {
            "projet": {
                "id": projet.id,
                "nom": projet.nom,
                "cout": projet.cout or 0.0,
                "prix_vente": projet.prix_vente or 0.0,
                "coefficient": coefficient_projet(session, projet_id),
            },
            "lots": lots,
            "blocs_autonomes": [asdict(_bloc_to_domain(b)) for b in _tri(autonomes)],
        }
