"""Tests for post-commit audit event delivery."""

import json
import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import select

from domain.models import ActionEvenement, EvenementProjet
from domain.ports import EventSinkPort
from estimation.adapters.outbound.evenements import (
    FileEvenements,
    ListEventSink,
    LoggingEventSink,
    PublicationSynchrone,
    SqlAlchemyAuditSink,
)
from estimation.adapters.outbound.sqlalchemy_models import EvenementProjetLog
from estimation.engine.operations import EstimationService


def _evenement(projet_id=1, **details):
    return EvenementProjet(
        projet_id=projet_id,
        action=ActionEvenement.OUVRAGE_CREE,
        cible="ouvrage:1",
        details=details,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class SinkCasse(EventSinkPort):
    def deliver(self, evenement):
        raise RuntimeError("sink indisponible")


class TestSinks:
    def test_audit_sink_writes_row(self, session_factory):
        SqlAlchemyAuditSink(session_factory).deliver(_evenement(7, designation="1.1"))
        with session_factory() as s:
            ligne = s.scalars(select(EvenementProjetLog)).one()
        assert (ligne.projet_id, ligne.action, ligne.cible) == (7, "ouvrage_cree", "ouvrage:1")
        assert json.loads(ligne.details_json) == {"designation": "1.1"}

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO, logger="estimation.evenements"):
            LoggingEventSink().deliver(_evenement(3))
        assert "projet=3 action=ouvrage_cree" in caplog.text


class TestPublishers:
    def test_failing_sink_does_not_stop_others(self, caplog):
        liste = ListEventSink()
        PublicationSynchrone([SinkCasse(), liste]).publish(_evenement())
        assert len(liste.evenements) == 1
        assert "sink indisponible" in caplog.text

    def test_queue_delivers_in_background(self):
        liste = ListEventSink()
        file = FileEvenements([liste])
        for i in range(5):
            file.publish(_evenement(i))
        file.attendre()
        assert [e.projet_id for e in liste.evenements] == [0, 1, 2, 3, 4]

    def test_full_queue_drops_event(self, caplog):
        debloque = threading.Event()

        class SinkLent(EventSinkPort):
            def deliver(self, evenement):
                debloque.wait(5)

        file = FileEvenements([SinkLent()], maxsize=1)
        for i in range(3):
            file.publish(_evenement(i))
        debloque.set()
        file.attendre()
        assert "pleine" in caplog.text

    def test_service_events_reach_audit_table(self, session_factory, verrou, projet_id):
        file = FileEvenements([SqlAlchemyAuditSink(session_factory)])
        service = EstimationService(session_factory, verrou, publisher=file)

        ouvrage = service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        # SQLite has a single writer
        file.attendre()
        service.creer_bloc(projet_id, ouvrage.id, "B")
        file.attendre()

        with session_factory() as s:
            actions = s.scalars(select(EvenementProjetLog.action).order_by(EvenementProjetLog.id)).all()
        assert actions == ["ouvrage_cree", "bloc_cree"]
