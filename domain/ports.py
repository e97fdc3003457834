"""Domain ports: abstract interfaces for infrastructure collaborators.

Only stdlib (abc, contextlib) and domain.models imports allowed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager

from domain.models import EvenementProjet


# ── Infrastructure Ports ──────────────────────────────────────────────────


class CachePort(ABC):
    """Port for key-value caching (Redis, in-memory, etc.)."""

    @abstractmethod
    def get(self, key: str) -> object | None: ...

    @abstractmethod
    def set(self, key: str, value: object, ttl: int = 3600) -> None: ...

    @abstractmethod
    def invalidate(self, prefix: str) -> None: ...


class ProjectLockPort(ABC):
    """Port serializing structural mutations of one project.

    The returned context manager must be re-entrant for the same
    transaction and hold the lock until that transaction ends.
    """

    @abstractmethod
    def verrouiller(self, session, projet_id: int) -> AbstractContextManager: ...


class EventPublisherPort(ABC):
    """Port receiving audit events once their transaction has committed."""

    @abstractmethod
    def publish(self, evenement: EvenementProjet) -> None: ...


class EventSinkPort(ABC):
    """Final destination of audit events (log, audit table, broker...)."""

    @abstractmethod
    def deliver(self, evenement: EvenementProjet) -> None: ...
