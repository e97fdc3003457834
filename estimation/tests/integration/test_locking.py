"""Tests for project lock selection and the in-process lock table."""

import threading

import pytest

from domain.errors import LockTimeoutError
from estimation.engine.locking import (
    VerrouProjetAdvisory,
    VerrouProjetMemoire,
    creer_verrou,
)
from estimation.engine.operations import EstimationService


class TestVerrouProjetMemoire:
    def test_reentrant_in_same_thread(self):
        verrou = VerrouProjetMemoire(timeout_seconds=0.1)
        with verrou.verrouiller(None, 1):
            with verrou.verrouiller(None, 1):
                pass

    def _tenir(self, verrou, projet_id):
        pris = threading.Event()
        libere = threading.Event()

        def tenir():
            with verrou.verrouiller(None, projet_id):
                pris.set()
                libere.wait(5)

        thread = threading.Thread(target=tenir)
        thread.start()
        pris.wait(5)
        return thread, libere

    def test_other_thread_times_out(self):
        verrou = VerrouProjetMemoire(timeout_seconds=0.05)
        thread, libere = self._tenir(verrou, 1)
        try:
            with pytest.raises(LockTimeoutError):
                with verrou.verrouiller(None, 1):
                    pass
        finally:
            libere.set()
            thread.join()

    def test_projects_are_independent(self):
        verrou = VerrouProjetMemoire(timeout_seconds=0.05)
        thread, libere = self._tenir(verrou, 1)
        try:
            with verrou.verrouiller(None, 2):
                pass
        finally:
            libere.set()
            thread.join()

    def test_mutation_fails_while_project_is_locked(self, session_factory, projet_id):
        verrou = VerrouProjetMemoire(timeout_seconds=0.05)
        service = EstimationService(session_factory, verrou)
        thread, libere = self._tenir(verrou, projet_id)
        try:
            with pytest.raises(LockTimeoutError):
                service.creer_ouvrage(projet_id, "Gros oeuvre", "O")
        finally:
            libere.set()
            thread.join()
        assert service.creer_ouvrage(projet_id, "Gros oeuvre", "O").designation == "1.1"


class TestCreerVerrou:
    def test_auto_on_postgresql_is_advisory(self):
        assert isinstance(creer_verrou("auto", "postgresql", 5), VerrouProjetAdvisory)

    def test_auto_on_sqlite_is_in_memory(self):
        assert isinstance(creer_verrou("auto", "sqlite", 5), VerrouProjetMemoire)

    def test_advisory_requires_postgresql(self):
        with pytest.raises(ValueError):
            creer_verrou("advisory", "sqlite")

    def test_memory_on_postgresql_warns(self, caplog):
        assert isinstance(creer_verrou("memoire", "postgresql"), VerrouProjetMemoire)
        assert "non partagé" in caplog.text
