"""Identity verifiers: the external collaborators behind ``USER_POOL`` mode."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from datapoint_gateway._internal.logging import get_logger
from datapoint_gateway.auth.modes import AuthType, Principal
from datapoint_gateway.exceptions import UnauthenticatedError

logger = get_logger("auth.verifier")


def _strip_bearer(token: str) -> str:
    if token[:7].lower() == "bearer ":
        return token[7:].strip()
    return token.strip()


class IdentityVerifier(Protocol):
    """``verify(token) -> Principal``, raising :class:`UnauthenticatedError` on failure."""

    async def verify(self, token: str) -> Principal: ...


class StaticTokenVerifier:
    """Looks tokens up in a fixed table of ``token -> claims``.

    For development and tests.  Claims must contain ``sub``.
    """

    def __init__(self, tokens: dict[str, dict[str, Any]]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> Principal:
        claims = self._tokens.get(_strip_bearer(token))
        if claims is None:
            raise UnauthenticatedError("Unknown token")
        return Principal(auth_type=AuthType.USER_POOL, subject=claims.get("sub"), claims=dict(claims))


class HttpTokenVerifier:
    """Verifies tokens against a token-introspection endpoint.

    POSTs ``{"token": ...}`` to *introspection_url*.  A 200 response whose
    JSON body has ``"active": true`` and a ``sub`` claim yields a principal;
    anything else is :class:`UnauthenticatedError`.

    Parameters:
        introspection_url: Full URL of the introspection endpoint.
        client_token:      Optional bearer token the gateway authenticates with.
        timeout:           HTTP timeout in seconds.
    """

    def __init__(
        self,
        introspection_url: str,
        *,
        client_token: str = "",
        timeout: float = 5.0,
    ) -> None:
        self._url = introspection_url
        self._client_token = client_token
        self._timeout = timeout

    async def verify(self, token: str) -> Principal:
        headers = {"Authorization": f"Bearer {self._client_token}"} if self._client_token else {}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._url,
                    json={"token": _strip_bearer(token)},
                    headers=headers,
                    timeout=self._timeout,
                )
        except httpx.TimeoutException as exc:
            logger.warning("Identity provider timed out", url=self._url)
            raise UnauthenticatedError(
                f"Identity provider timed out after {self._timeout} seconds"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Identity provider unreachable", url=self._url, error=str(exc))
            raise UnauthenticatedError("Could not reach identity provider") from exc

        if response.status_code != 200:
            raise UnauthenticatedError(f"Token rejected: HTTP {response.status_code}")

        try:
            claims = response.json()
        except ValueError as exc:
            logger.warning("Identity provider sent a malformed response", url=self._url)
            raise UnauthenticatedError("Malformed introspection response") from exc
        if not isinstance(claims, dict) or not claims.get("active") or not claims.get("sub"):
            raise UnauthenticatedError("Token is not active")
        return Principal(auth_type=AuthType.USER_POOL, subject=claims["sub"], claims=claims)
