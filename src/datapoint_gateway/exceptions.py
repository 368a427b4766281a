"""Error taxonomy for the datapoint_gateway package.

Every error raised across a component boundary derives from
:class:`GatewayError` and carries a stable ``error_type`` string that the
runner surfaces to callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from datapoint_gateway.result import Decision


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    error_type: ClassVar[str] = "GatewayError"


class AdmissionBlockedError(GatewayError):
    """Raised when the admission rules block a request.  Terminal, never retried."""

    error_type = "AdmissionBlocked"

    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        rule = decision.rule_name or "default action"
        super().__init__(f"Request blocked by '{rule}'")


class UnauthenticatedError(GatewayError):
    """Credential missing, invalid or expired."""

    error_type = "Unauthenticated"


class UnauthorizedError(GatewayError):
    """Authenticated, but not allowed to invoke this operation."""

    error_type = "Unauthorized"


class NotFoundError(GatewayError):
    """The operation targeted a key that does not exist."""

    error_type = "NotFound"

    def __init__(self, name: str, created_at: str) -> None:
        self.name = name
        self.created_at = created_at
        super().__init__(f"Data point ({name!r}, {created_at!r}) not found")


class AlreadyExistsError(GatewayError):
    """A create collided with an existing key."""

    error_type = "AlreadyExists"

    def __init__(self, name: str, created_at: str) -> None:
        self.name = name
        self.created_at = created_at
        super().__init__(f"Data point ({name!r}, {created_at!r}) already exists")


class InvalidArgumentError(GatewayError):
    """Malformed key, input payload or range bounds."""

    error_type = "InvalidArgument"


class ConfigError(GatewayError):
    """Raised when gateway configuration is invalid."""

    error_type = "ConfigError"


class RuleConfigError(ConfigError):
    """Raised when an admission rule or statement tree is malformed."""

    error_type = "RuleConfigError"

    def __init__(self, rule_name: str, message: str) -> None:
        self.rule_name = rule_name
        super().__init__(f"Rule '{rule_name}' misconfigured: {message}")


class StoreError(GatewayError):
    """Raised when a table operation fails."""

    error_type = "StoreError"

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        msg = f"Store error during '{operation}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ConditionalCheckFailedError(StoreError):
    """A conditional write found the item in the wrong state."""

    error_type = "ConditionalCheckFailed"


class StoreUnavailableError(StoreError):
    """Transient backend failure.  Safe for the caller to retry with backoff."""

    error_type = "StoreUnavailable"
