"""Integration tests for the SQL pricing rollup."""

import pytest
from sqlalchemy import select, update

from estimation.adapters.outbound.sqlalchemy_models import Bloc, Client, Ouvrage, Projet, ProjetLot
from estimation.engine.pricing import coefficient_projet, recalculer_lots, recalculer_projet


def _lire(session_factory, modele, node_id):
    with session_factory() as s:
        return s.get(modele, node_id)


@pytest.fixture
def chantier(service, projet_id):
    """Ouvrage with one direct Article (240 TTC) and a Bloc holding 2 x 60 TTC."""
    ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "Fondations")
    service.ajouter_article(projet_id, ouvrage.id, 2, prix_unitaire=100, tva=20)
    bloc = service.creer_bloc(projet_id, ouvrage.id, "Semelles", quantite=4)
    service.ajouter_article(projet_id, ouvrage.id, 5, bloc_id=bloc.id, prix_unitaire=10, tva=20)
    service.ajouter_article(projet_id, ouvrage.id, 1, bloc_id=bloc.id, prix_unitaire=50, tva=20)
    return ouvrage.id, bloc.id


class TestRollup:
    def test_article_totals(self, service, projet_id):
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        article = service.ajouter_article(projet_id, ouvrage.id, 3, prix_unitaire=12.5, tva=10)
        assert article.total_ht == pytest.approx(37.5)
        assert article.total_ttc == pytest.approx(41.25)

    def test_bloc_total_and_unit_price(self, session_factory, chantier):
        _, bloc_id = chantier
        bloc = _lire(session_factory, Bloc, bloc_id)
        assert bloc.total == pytest.approx(120.0)
        assert bloc.prix_unitaire == pytest.approx(30.0)

    def test_bloc_without_quantity_has_no_unit_price(self, service, session_factory, projet_id):
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        bloc = service.creer_bloc(projet_id, ouvrage.id, "B", quantite=0)
        service.ajouter_article(projet_id, ouvrage.id, 1, bloc_id=bloc.id, prix_unitaire=10)
        relu = _lire(session_factory, Bloc, bloc.id)
        assert relu.total == pytest.approx(10.0)
        assert relu.prix_unitaire is None

    def test_ouvrage_counts_direct_and_bloc_articles(self, session_factory, chantier):
        ouvrage_id, _ = chantier
        assert _lire(session_factory, Ouvrage, ouvrage_id).total == pytest.approx(360.0)

    def test_lot_and_project_totals(self, service, session_factory, projet_id, chantier):
        autre = service.creer_ouvrage(projet_id, "Charpente", "Toiture")
        service.ajouter_article(projet_id, autre.id, 1, prix_unitaire=40)

        lots = {lot.libelle: lot for lot in service.lots(projet_id)}
        assert lots["Gros oeuvre"].total == pytest.approx(360.0)
        assert lots["Charpente"].total == pytest.approx(40.0)
        projet = _lire(session_factory, Projet, projet_id)
        assert projet.cout == pytest.approx(400.0)
        assert projet.prix_vente == pytest.approx(400.0)


class TestMargins:
    def test_coefficient_applied_to_lots(self, service, session_factory, nouveau_projet):
        projet_id = nouveau_projet(marge_brute=20, marge_nette=5)
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        service.ajouter_article(projet_id, ouvrage.id, 1, prix_unitaire=75)

        lot = service.lots(projet_id)[0]
        assert lot.total == pytest.approx(75.0)
        assert lot.total_vente == pytest.approx(100.0)
        assert _lire(session_factory, Projet, projet_id).prix_vente == pytest.approx(100.0)

    def test_degenerate_margins_fall_back_to_one(self, service, session_factory, nouveau_projet):
        projet_id = nouveau_projet(marge_brute=60, marge_nette=50)
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        service.ajouter_article(projet_id, ouvrage.id, 1, prix_unitaire=75)
        with session_factory() as s:
            assert coefficient_projet(s, projet_id) == 1.0
        assert service.lots(projet_id)[0].total_vente == pytest.approx(75.0)

    def test_margin_change_needs_recompute(self, service, session_factory, nouveau_projet):
        projet_id = nouveau_projet(marge_brute=0, marge_nette=0)
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        service.ajouter_article(projet_id, ouvrage.id, 1, prix_unitaire=50)
        with session_factory() as s:
            client_id = s.scalar(select(Projet.client_id).where(Projet.id == projet_id))
            s.execute(update(Client).where(Client.id == client_id).values(marge_brute=50))
            s.commit()

        resume = service.recalculer_prix(projet_id)

        assert resume["cout"] == pytest.approx(50.0)
        assert resume["prix_vente"] == pytest.approx(100.0)

    def test_recompute_is_idempotent(self, service, session_factory, nouveau_projet):
        projet_id = nouveau_projet(marge_brute=12.5, marge_nette=7.5)
        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        service.ajouter_article(projet_id, ouvrage.id, 3, prix_unitaire=33.3, tva=5.5)

        premier = service.recalculer_prix(projet_id)
        second = service.recalculer_prix(projet_id)

        assert premier == second
        with session_factory() as s:
            avant = s.scalars(select(ProjetLot.total_vente)).all()
            recalculer_lots(s, projet_id)
            recalculer_projet(s, projet_id)
            s.flush()
            s.expire_all()
            assert s.scalars(select(ProjetLot.total_vente)).all() == avant
            s.rollback()
