"""Command line entry point.

Usage:
    estimation init-db
    estimation demo
    estimation designations PROJET_ID [--lot LOT]
    estimation prix PROJET_ID
    estimation structure PROJET_ID
    estimation recap PROJET_ID
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, replace

from domain.errors import EstimationError
from estimation.adapters.outbound.sqlalchemy_models import ArticleCatalogue, Client, Projet
from estimation.analytics.recapitulatif import lignes_structure, recap_lots
from estimation.app import creer_service
from estimation.config import load_config
from estimation.data.db import get_engine, get_session, init_db

logger = logging.getLogger("estimation.cli")


def _charger_demo(service, engine) -> int:
    """Create a small priced project and return its id."""
    with get_session(engine) as session:
        client = Client(nom="Client démo", marge_brute=20, marge_nette=5)
        projet = Projet(nom="Maison individuelle", client=client)
        beton = ArticleCatalogue(libelle="Béton C25/30", unite="m3", prix_unitaire=120.0)
        acier = ArticleCatalogue(libelle="Acier HA", unite="kg", prix_unitaire=1.8)
        parpaing = ArticleCatalogue(libelle="Parpaing 20x20x50", unite="u", prix_unitaire=1.5)
        session.add_all([client, projet, beton, acier, parpaing])
        session.commit()
        projet_id, ids = projet.id, (beton.id, acier.id, parpaing.id)

    beton_id, acier_id, parpaing_id = ids
    fondations = service.creer_ouvrage(projet_id, "Gros oeuvre", "Fondations")
    service.ajouter_article(projet_id, fondations.id, 12, article_catalogue_id=beton_id, tva=20)
    semelles = service.creer_bloc(projet_id, fondations.id, "Semelles filantes", quantite=24, unite="ml")
    service.ajouter_article(projet_id, fondations.id, 350, article_catalogue_id=acier_id, bloc_id=semelles.id, tva=20)

    murs = service.creer_ouvrage(projet_id, "Gros oeuvre", "Murs")
    service.ajouter_article(projet_id, murs.id, 900, article_catalogue_id=parpaing_id, tva=20)
    service.dupliquer_ouvrage(projet_id, murs.id, nom="Murs garage")
    return projet_id


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Moteur de structure et de prix des estimations")
    parser.add_argument("--config", help="Chemin du fichier config.yaml")
    parser.add_argument("--database-url", help="URL SQLAlchemy (remplace la configuration)")
    parser.add_argument("--log-level", help="Niveau de log (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="commande", required=True)

    sub.add_parser("init-db", help="Créer les tables")
    sub.add_parser("demo", help="Charger un projet de démonstration")

    p = sub.add_parser("designations", help="Recalculer les désignations manquantes")
    p.add_argument("projet_id", type=int)
    p.add_argument("--lot", help="Identifiant ou libellé du lot")

    p = sub.add_parser("prix", help="Recalculer tous les prix du projet")
    p.add_argument("projet_id", type=int)

    p = sub.add_parser("structure", help="Afficher la structure du projet en JSON")
    p.add_argument("projet_id", type=int)

    p = sub.add_parser("recap", help="Récapitulatif par lot et lignes d'articles")
    p.add_argument("projet_id", type=int)

    args = parser.parse_args(argv)

    config = load_config(args.config)
    # Short-lived process: deliver events before exiting
    config = replace(config, events_async=False)
    if args.database_url:
        config = replace(config, database_url=args.database_url)

    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = get_engine(config.database_url)
    if args.commande == "init-db":
        init_db(engine)
        print(f"Base initialisée: {engine.url}")
        return 0

    service = creer_service(config, engine=engine)
    try:
        if args.commande == "demo":
            projet_id = _charger_demo(service, engine)
            print(f"Projet de démonstration créé: {projet_id}")
        elif args.commande == "designations":
            rapport = service.recalculer_designations(args.projet_id, lot=args.lot)
            print(json.dumps(asdict(rapport), indent=2))
        elif args.commande == "prix":
            print(json.dumps(service.recalculer_prix(args.projet_id), indent=2))
        elif args.commande == "structure":
            print(json.dumps(service.structure(args.projet_id), indent=2, ensure_ascii=False))
        elif args.commande == "recap":
            with get_session(engine) as session:
                print(recap_lots(session, args.projet_id).to_string(index=False))
                print()
                print(lignes_structure(session, args.projet_id).to_string(index=False))
    except EstimationError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
