"""Audit event delivery, decoupled from the mutation that produced the event.

The service hands events to a publisher only after its transaction has
committed. A sink failure is logged and never reaches the caller.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone

from domain.models import EvenementProjet
from domain.ports import EventPublisherPort, EventSinkPort
from estimation.adapters.outbound.sqlalchemy_models import EvenementProjetLog

logger = logging.getLogger(__name__)


# ── Sinks ───────────────────────────────────────────────────────────────


class LoggingEventSink(EventSinkPort):
    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logging.getLogger("estimation.evenements")

    def deliver(self, evenement: EvenementProjet) -> None:
        self._log.info(
            "projet=%s action=%s cible=%s details=%s",
            evenement.projet_id, evenement.action.value, evenement.cible,
            json.dumps(evenement.details, default=str, sort_keys=True),
        )


class SqlAlchemyAuditSink(EventSinkPort):
    """Writes each event to ``evenement_projet`` in its own session."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def deliver(self, evenement: EvenementProjet) -> None:
        with self._session_factory() as session:
            session.add(EvenementProjetLog(
                projet_id=evenement.projet_id,
                action=evenement.action.value,
                cible=evenement.cible,
                details_json=json.dumps(evenement.details, default=str),
                cree_le=evenement.timestamp or datetime.now(timezone.utc),
            ))
            session.commit()


class ListEventSink(EventSinkPort):
    """Keeps delivered events in memory."""

    def __init__(self):
        self.evenements: list[EvenementProjet] = []

    def deliver(self, evenement: EvenementProjet) -> None:
        self.evenements.append(evenement)


# ── Publishers ──────────────────────────────────────────────────────────


def _livrer(sinks, evenement: EvenementProjet) -> None:
    for sink in sinks:
        try:
            sink.deliver(evenement)
        except Exception:
            logger.exception(
                "Échec de livraison de l'événement %s du projet %s via %s",
                evenement.action.value, evenement.projet_id, type(sink).__name__,
            )


class PublicationSynchrone(EventPublisherPort):
    """Delivers in the caller's thread, right after commit."""

    def __init__(self, sinks: list[EventSinkPort]):
        self._sinks = list(sinks)

    def publish(self, evenement: EvenementProjet) -> None:
        _livrer(self._sinks, evenement)


class FileEvenements(EventPublisherPort):
    """Queue drained by a daemon worker thread.

    ``publish`` only enqueues, so a slow sink never holds up a mutation.
    ``attendre`` blocks until everything queued so far has been delivered.
    """

    def __init__(self, sinks: list[EventSinkPort], maxsize: int = 0):
        self._sinks = list(sinks)
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._worker = threading.Thread(
            target=self._run, name="estimation-evenements", daemon=True,
        )
        self._worker.start()

    def publish(self, evenement: EvenementProjet) -> None:
        try:
            self._queue.put_nowait(evenement)
        except queue.Full:
            logger.warning(
                "File d'événements pleine, événement %s du projet %s perdu",
                evenement.action.value, evenement.projet_id,
            )

    def attendre(self) -> None:
        self._queue.join()

    def _run(self) -> None:
        while True:
            evenement = self._queue.get()
            try:
                _livrer(self._sinks, evenement)
            finally:
                self._queue.task_done()
