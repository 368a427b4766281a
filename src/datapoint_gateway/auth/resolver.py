"""AuthorizationResolver: picks the governing auth mode and verifies the credential."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

from datapoint_gateway._internal.clock import Clock, SystemClock
from datapoint_gateway._internal.logging import get_logger
from datapoint_gateway.auth.modes import AuthMode, AuthType, Principal
from datapoint_gateway.exceptions import ConfigError, UnauthenticatedError, UnauthorizedError

if TYPE_CHECKING:
    from datapoint_gateway.context import Credential

logger = get_logger("auth")


class GovernedOperation(Protocol):
    """What the resolver needs to know about the operation being invoked."""

    @property
    def qualified_name(self) -> str: ...

    @property
    def auth_types(self) -> frozenset[AuthType] | None: ...


class AuthorizationResolver:
    """Resolves which :class:`AuthMode` governs a request and runs it.

    Exactly one configured mode is the default; it governs every request
    that does not name a mode.  The others are opt-in overrides (for
    example an API key for development access).

    Authentication failures raise :class:`UnauthenticatedError`.  A valid
    credential for a mode the operation does not accept raises
    :class:`UnauthorizedError`.  The resolver holds no per-request state.
    """

    def __init__(self, modes: Iterable[AuthMode], *, clock: Clock | None = None) -> None:
        self._modes: dict[AuthType, AuthMode] = {}
        for mode in modes:
            if mode.auth_type in self._modes:
                raise ConfigError(f"Auth mode {mode.auth_type.value} configured twice")
            self._modes[mode.auth_type] = mode
        defaults = [m for m in self._modes.values() if m.is_default]
        if len(defaults) != 1:
            raise ConfigError(f"Exactly one auth mode must be default, found {len(defaults)}")
        self._default = defaults[0]
        self._clock = clock or SystemClock()

    @property
    def default_mode(self) -> AuthMode:
        return self._default

    def mode_for(self, credential: Credential) -> AuthMode:
        if credential.auth_type is None:
            return self._default
        try:
            return self._modes[AuthType(credential.auth_type)]
        except (KeyError, ValueError):
            raise UnauthenticatedError(
                f"Auth mode {credential.auth_type!r} is not enabled"
            ) from None

    async def authorize(self, operation: GovernedOperation, credential: Credential) -> Principal:
        """Return the principal for *credential*, or raise."""
        mode = self.mode_for(credential)
        try:
            principal = await mode.authenticate(credential, self._clock.now())
        except UnauthenticatedError as exc:
            logger.info(
                "Authentication failed",
                operation=operation.qualified_name,
                mode=mode.auth_type.value,
                reason=str(exc),
            )
            raise

        allowed = operation.auth_types
        if allowed is not None and mode.auth_type not in allowed:
            logger.info(
                "Operation not permitted for auth mode",
                operation=operation.qualified_name,
                mode=mode.auth_type.value,
            )
            raise UnauthorizedError(
                f"{operation.qualified_name} does not accept {mode.auth_type.value} credentials"
            )
        return principal

    def export(self) -> dict[str, Any]:
        return {"modes": [m.export() for m in self._modes.values()]}
