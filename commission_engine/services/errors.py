"""
Commission engine error taxonomy.

Limit clamping is not an error: it is a successful result with
was_clamped=True.
"""

from typing import Iterable, Optional


class CommissionEngineError(Exception):
    """Base class for all engine errors."""


class DuplicateAttributionError(CommissionEngineError):
    """The order was already attributed; carries the existing attribution."""

    def __init__(self, existing):
        self.existing = existing
        super().__init__(f"Order {existing.order_id} is already attributed (attribution #{existing.id})")


class ConfigurationError(CommissionEngineError):
    """Organizer configuration is missing or inconsistent (e.g. tier gaps)."""


class InvalidRecordStateError(CommissionEngineError):
    """A transition is not allowed from the record's current state."""

    def __init__(
        self,
        message: str,
        record_ids: Optional[Iterable[int]] = None,
        current_states: Optional[dict] = None,
    ):
        self.record_ids = list(record_ids or [])
        self.current_states = dict(current_states or {})
        super().__init__(message)


class SerializationConflictError(CommissionEngineError):
    """Concurrent updates kept conflicting after the bounded retries."""


class InsufficientDataError(CommissionEngineError):
    """Upstream sale event is malformed or references unknown data."""


class NotFoundError(CommissionEngineError):
    """Referenced entity does not exist."""


class PermissionDeniedError(CommissionEngineError):
    """Actor is not allowed to perform the transition."""
