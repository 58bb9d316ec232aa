"""Domain error taxonomy.

Every user-facing failure carries a stable ``code`` and an HTTP status so the
API layer can render it without inspecting messages.
"""

from __future__ import annotations


class TreasureError(Exception):
    """Base class for engine errors surfaced to callers."""

    code: str = "internal"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(TreasureError):
    """Malformed or ineligible request."""

    code = "invalid_argument"
    status_code = 400


class InvalidState(TreasureError):
    """Illegal lifecycle transition."""

    code = "invalid_state"
    status_code = 409


class NotFound(TreasureError):
    """Missing entity reference."""

    code = "not_found"
    status_code = 404


class CapacityExceeded(TreasureError):
    """Slot reservation failed."""

    code = "capacity_exceeded"
    status_code = 409


class PolicyConflict(TreasureError):
    """Invalid progression policy scope / scope_ref combination."""

    code = "policy_conflict"
    status_code = 422


class Unavailable(TreasureError):
    """Transient dependency failure after retries were exhausted."""

    code = "unavailable"
    status_code = 503
