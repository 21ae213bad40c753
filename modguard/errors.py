"""Error taxonomy shared by every moderation component.

Each error carries a stable ``code`` that is written into audit outcomes and
an ``http_status`` used by the web layer.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for all engine errors."""

    code = "moderation_error"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(ModerationError):
    """Malformed input, rejected before any store write."""

    code = "validation_error"
    http_status = 400


class NotFoundError(ModerationError):
    """A referenced entity does not exist."""

    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class PolicyViolation(ModerationError):
    """The caller lacks the authority for the requested change."""

    code = "policy_violation"
    http_status = 403


class DependencyUnavailable(ModerationError):
    """The Content Analyzer or the durable store timed out or is down."""

    code = "dependency_unavailable"
    http_status = 503


class StoreCorruption(DependencyUnavailable):
    """A store file could not be parsed."""

    code = "store_corruption"


class ConflictError(ModerationError):
    """Concurrent modification, duplicate key, or an illegal state transition."""

    code = "conflict"
    http_status = 409
