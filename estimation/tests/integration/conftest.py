"""Shared fixtures for engine integration tests.

Tests run against a temporary SQLite file rather than ``:memory:`` so that
the service's sessions, and the threads of the concurrency tests, all see
the same database.
"""

import pytest

from estimation.adapters.outbound.evenements import ListEventSink, PublicationSynchrone
from estimation.adapters.outbound.redis_cache import InMemoryCacheAdapter
from estimation.adapters.outbound.sqlalchemy_models import (
    ArticleCatalogue,
    Client,
    LotCatalogue,
    Ouvrage,
    Projet,
    ProjetLot,
)
from estimation.data.db import get_engine, get_session_factory, init_db
from estimation.engine.locking import VerrouProjetMemoire
from estimation.engine.operations import EstimationService


@pytest.fixture
def engine(tmp_path):
    engine = get_engine(f"sqlite:///{tmp_path / 'estimation.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture
def verrou():
    return VerrouProjetMemoire(timeout_seconds=10)


@pytest.fixture
def sink():
    return ListEventSink()


@pytest.fixture
def cache():
    return InMemoryCacheAdapter()


@pytest.fixture
def service(session_factory, verrou, sink, cache):
    return EstimationService(
        session_factory,
        verrou,
        publisher=PublicationSynchrone([sink]),
        cache=cache,
    )


@pytest.fixture
def nouveau_projet(session_factory):
    """Factory creating a committed project, optionally with client margins."""

    def _creer(nom="Projet test", marge_brute=None, marge_nette=None):
        with session_factory() as s:
            client = None
            if marge_brute is not None or marge_nette is not None:
                client = Client(nom=f"Client {nom}", marge_brute=marge_brute, marge_nette=marge_nette)
                s.add(client)
            projet = Projet(nom=nom, client=client)
            s.add(projet)
            s.commit()
            return projet.id

    return _creer


@pytest.fixture
def projet_id(nouveau_projet):
    return nouveau_projet()


@pytest.fixture
def catalogue(session_factory):
    """Catalog articles keyed by short name."""
    with session_factory() as s:
        articles = {
            "beton": ArticleCatalogue(libelle="Béton C25/30", unite="m3", prix_unitaire=100.0),
            "acier": ArticleCatalogue(libelle="Acier HA", unite="kg", prix_unitaire=2.0),
            "enduit": ArticleCatalogue(libelle="Enduit", unite="m2", prix_unitaire=10.0),
        }
        s.add_all(articles.values())
        s.commit()
        return {nom: article.id for nom, article in articles.items()}


@pytest.fixture
def lot_ouvrage(session_factory, projet_id):
    """Factory inserting a bare Ouvrage row with an explicit id, bypassing the service."""

    def _creer(ouvrage_id, libelle="Gros oeuvre", designation=None):
        with session_factory() as s:
            lot = s.query(LotCatalogue).filter_by(libelle_normalise=libelle.casefold()).first()
            if lot is None:
                lot = LotCatalogue(libelle=libelle, libelle_normalise=libelle.casefold())
                s.add(lot)
                s.flush()
            projet_lot = s.query(ProjetLot).filter_by(projet_id=projet_id, lot_catalogue_id=lot.id).first()
            if projet_lot is None:
                projet_lot = ProjetLot(projet_id=projet_id, lot_catalogue_id=lot.id)
                s.add(projet_lot)
                s.flush()
            s.add(Ouvrage(id=ouvrage_id, projet_lot_id=projet_lot.id, nom=f"O{ouvrage_id}", designation=designation))
            s.commit()
            return projet_lot.id

    return _creer
