"""Auth modes: the mechanisms a deployment accepts, one of them the default."""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from datapoint_gateway.exceptions import UnauthenticatedError

if TYPE_CHECKING:
    from datapoint_gateway.auth.verifiers import IdentityVerifier
    from datapoint_gateway.context import Credential


class AuthType(str, Enum):
    USER_POOL = "USER_POOL"
    API_KEY = "API_KEY"


@dataclass(frozen=True)
class Principal:
    """Who the request runs as.

    API-key principals carry no subject or claims: they are service-level,
    not tied to an identity.
    """

    auth_type: AuthType
    subject: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def anonymous(self) -> bool:
        return self.subject is None


def api_key_expiry(anchor: datetime | None = None, *, days: int = 7) -> datetime:
    """Start of the anchor day (UTC) plus *days*."""
    anchor = (anchor or datetime.now(UTC)).astimezone(UTC)
    start = anchor.replace(hour=0, minute=0, second=0, microsecond=0)
    return start + timedelta(days=days)


class AuthMode(ABC):
    """Base class for an authentication mechanism.

    Subclasses verify a :class:`Credential` and return a :class:`Principal`,
    or raise :class:`UnauthenticatedError`.
    """

    auth_type: ClassVar[AuthType]

    def __init__(self, *, is_default: bool = False) -> None:
        self.is_default = is_default

    @abstractmethod
    async def authenticate(self, credential: Credential, now: datetime) -> Principal: ...

    def export(self) -> dict[str, Any]:
        return {"type": self.auth_type.value, "is_default": self.is_default, "config": {}}


class UserPoolMode(AuthMode):
    """Bearer tokens issued by an external identity provider.

    Verification is delegated to *verifier*; this class never inspects the
    token itself.
    """

    auth_type = AuthType.USER_POOL

    def __init__(
        self,
        *,
        user_pool_ref: str,
        verifier: IdentityVerifier,
        is_default: bool = False,
    ) -> None:
        super().__init__(is_default=is_default)
        self.user_pool_ref = user_pool_ref
        self.verifier = verifier

    async def authenticate(self, credential: Credential, now: datetime) -> Principal:
        if not credential.token:
            raise UnauthenticatedError("Missing bearer token")
        return await self.verifier.verify(credential.token)

    def export(self) -> dict[str, Any]:
        data = super().export()
        data["config"] = {"user_pool_ref": self.user_pool_ref}
        return data


class ApiKeyMode(AuthMode):
    """A static API key, valid until ``expires_at`` (inclusive).

    When ``key`` is set, the presented key must equal it.
    """

    auth_type = AuthType.API_KEY

    def __init__(
        self,
        *,
        name: str = "ApiKey1",
        expires_at: datetime,
        key: str | None = None,
        description: str = "",
        is_default: bool = False,
    ) -> None:
        super().__init__(is_default=is_default)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        self.name = name
        self.expires_at = expires_at
        self.key = key
        self.description = description

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    async def authenticate(self, credential: Credential, now: datetime) -> Principal:
        if not credential.api_key:
            raise UnauthenticatedError("Missing API key")
        if self.is_expired(now):
            raise UnauthenticatedError(f"API key '{self.name}' expired at {self.expires_at.isoformat()}")
        if self.key is not None and not hmac.compare_digest(
            credential.api_key.encode(), self.key.encode()
        ):
            raise UnauthenticatedError("Invalid API key")
        return Principal(auth_type=AuthType.API_KEY)

    def export(self) -> dict[str, Any]:
        data = super().export()
        data["config"] = {
            "name": self.name,
            "description": self.description,
            "expires_at": self.expires_at.isoformat(),
            "has_key": self.key is not None,
        }
        return data
