"""Domain error taxonomy for the structure and pricing engine.

NotFound, Conflict and Invalid are recoverable by the caller. Fatal signals
identifier-space corruption and must abort the operation.
"""

from __future__ import annotations


class EstimationError(Exception):
    """Base class for every engine error."""


class NotFoundError(EstimationError, LookupError):
    """A referenced project, lot, node or article does not exist."""


class ConflictError(EstimationError):
    """Designation collision or hierarchy mismatch that cannot be auto-resolved."""


class InvalidError(EstimationError, ValueError):
    """Missing or malformed input (e.g. Bloc without designation)."""


class LockTimeoutError(EstimationError):
    """The project lock could not be acquired in time. Safe to retry."""


class FatalError(EstimationError):
    """Identifier space exhausted after bounded retries; operator action needed."""
