"""Project-scoped locking for structural mutations.

At most one structural mutation per project is in flight. On PostgreSQL
this is a transaction-scoped advisory lock, so unrelated readers of the
``projet`` row are never blocked. Other backends use an in-process,
re-entrant lock per project that the unit of work holds until commit.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from domain.errors import LockTimeoutError
from domain.ports import ProjectLockPort

logger = logging.getLogger(__name__)

# First key of the two-int advisory lock; keeps project locks apart from
# any other advisory lock class used on the same database.
ADVISORY_LOCK_CLASS = 1


class VerrouProjetMemoire(ProjectLockPort):
    """In-process lock table: one RLock per project, guarded by its own lock."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._timeout = timeout_seconds
        self._garde = threading.Lock()
        self._verrous: dict[int, threading.RLock] = {}

    def _verrou(self, projet_id: int) -> threading.RLock:
        with self._garde:
            verrou = self._verrous.get(projet_id)
            if verrou is None:
                verrou = threading.RLock()
                self._verrous[projet_id] = verrou
            return verrou

    @contextmanager
    def verrouiller(self, session, projet_id: int):
        verrou = self._verrou(projet_id)
        timeout = -1 if self._timeout is None else self._timeout
        if not verrou.acquire(timeout=timeout):
            raise LockTimeoutError(
                f"Verrou du projet {projet_id} non obtenu après {self._timeout}s"
            )
        try:
            yield
        finally:
            verrou.release()


class VerrouProjetAdvisory(ProjectLockPort):
    """``pg_advisory_xact_lock(1, projet_id)``: released by commit or rollback."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._timeout = timeout_seconds

    @contextmanager
    def verrouiller(self, session, projet_id: int):
        try:
            if self._timeout is not None:
                # SET does not accept bind parameters
                session.execute(text(f"SET LOCAL lock_timeout = '{int(self._timeout * 1000)}ms'"))
            session.execute(
                text("SELECT pg_advisory_xact_lock(:classe, :projet)"),
                {"classe": ADVISORY_LOCK_CLASS, "projet": int(projet_id)},
            )
        except OperationalError as exc:
            raise LockTimeoutError(f"Verrou du projet {projet_id} non obtenu: {exc}") from exc
        yield


def creer_verrou(backend: str, dialect_name: str, timeout_seconds: float | None = None) -> ProjectLockPort:
    """Pick the lock implementation for *backend* ("auto", "advisory", "memoire")."""
    if backend == "advisory" or (backend == "auto" and dialect_name == "postgresql"):
        if dialect_name != "postgresql":
            raise ValueError(f"Verrou advisory indisponible pour le dialecte {dialect_name!r}")
        return VerrouProjetAdvisory(timeout_seconds)
    if dialect_name == "postgresql":
        logger.warning("Verrou en mémoire sur PostgreSQL: non partagé entre processus")
    return VerrouProjetMemoire(timeout_seconds)
