"""
Domain exceptions for the routing service.

Classifier failures never surface here (the classifier fails open), and an
exceeded budget is reported as data, so everything below is an error the
caller is expected to see.
"""

from enum import Enum
from typing import Any, Optional


class RoutingError(Exception):
    """Base class for routing-layer errors."""


class ConfigNotFoundError(RoutingError):
    """A complexity config, fallback chain, cost strategy, etc. is missing or disabled."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key!r}")


class ConfigIntegrityError(RoutingError):
    """Stored config violates an invariant that validation should have caught."""


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class DbErrorKind(str, Enum):
    UNIQUE_CONSTRAINT = "unique_constraint"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    NOT_FOUND = "not_found"
    TRANSACTION_CONFLICT = "transaction_conflict"
    UNKNOWN = "unknown"


class DbError(RoutingError):
    def __init__(self, kind: DbErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)


# ---------------------------------------------------------------------------
# Upstream (model provider) errors
# ---------------------------------------------------------------------------

class UpstreamError(RoutingError):
    """
    A failed call to a model endpoint, normalised across protocols.

    status_code is None for transport-level failures (timeouts, refused
    connections); error_type is the tag matched against a fallback chain's
    trigger_error_types.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        model: Optional[str] = None,
        body: Any = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.model = model
        self.body = body
        super().__init__(message)

    def __str__(self) -> str:
        parts = []
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.error_type:
            parts.append(f"type={self.error_type}")
        if self.model:
            parts.append(f"model={self.model}")
        prefix = f"[{' '.join(parts)}] " if parts else ""
        return prefix + super().__str__()
