"""RequestContext: the inbound request as seen by admission and auth."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class Credential:
    """What the transport says the caller presented.

    Attributes:
        auth_type: Auth mode the caller selected (``"USER_POOL"``,
                   ``"API_KEY"``), or ``None`` for the deployment default.
        token:     Bearer token for identity-provider modes.
        api_key:   Static API key for ``API_KEY`` mode.
    """

    auth_type: str | None = None
    token: str | None = None
    api_key: str | None = None


@dataclass
class RequestContext:
    """Transport-created context that travels through admission and auth.

    Attributes:
        source_ip:  Address of the client as seen by the gateway.
        headers:    Request headers.  Keys are normalized to lowercase.
        method:     HTTP method of the transport request.
        path:       URI path of the transport request.
        query_string: Raw query string, without the leading ``?``.
        credential: Authentication material extracted by the transport.
        metadata:   Scratchpad components may annotate (rate counts, principal).
        timestamp:  When the request arrived.  Auto-set to *now* (UTC).
    """

    source_ip: str
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    path: str = "/graphql"
    query_string: str = ""
    credential: Credential = field(default_factory=Credential)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())
