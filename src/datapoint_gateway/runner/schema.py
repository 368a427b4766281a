# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Configuration and runner input/output models.

Configuration is loaded once at process start and is immutable after
validation.  Admission statements keep the nested ``*Statement`` JSON
shape and are parsed by :class:`StatementFactory`.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Config(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class TableConfigSchema(_Config):
    """Physical layout of the data point table.

    Attributes:
        key_strategy: ``"composite"`` (PK/SK strings) or ``"direct"`` (name/createdAt)
        entity_type: Partition key prefix for the composite strategy
        separator: Separator between prefix and name for the composite strategy
    """

    key_strategy: Literal["composite", "direct"] = "composite"
    entity_type: str = "DataPoint"
    separator: str = "#"


class StoreConfigSchema(_Config):
    """Table backend.

    Attributes:
        type: Store type ("memory" or "sqlite")
        path: Path to SQLite database file (for sqlite type)
        table_name: SQL table name (for sqlite type)
    """

    type: Literal["memory", "sqlite"] = "memory"
    path: str = ""
    table_name: str = "datapoints"


class MutationPolicySchema(_Config):
    """Write semantics that vary per deployment."""

    reject_duplicate_creates: bool = True
    delete_missing: Literal["error", "ignore"] = "error"


class VerifierConfigSchema(_Config):
    """Identity verifier behind a USER_POOL mode.

    Attributes:
        type: "static" (fixed token table) or "http" (introspection endpoint)
        tokens: token -> claims, for the static verifier
        introspection_url: Endpoint URL, for the http verifier
        client_token: Bearer token the gateway presents to the endpoint
        timeout: HTTP timeout in seconds
    """

    type: Literal["static", "http"]
    tokens: dict[str, dict[str, Any]] = Field(default_factory=dict)
    introspection_url: str = ""
    client_token: str = ""
    timeout: float = 5.0


class AuthModeConfigSchema(_Config):
    """One authentication mode.

    Attributes:
        type: "USER_POOL" or "API_KEY"
        is_default: Exactly one mode per deployment must set this
        user_pool_ref: Identity pool reference (USER_POOL)
        verifier: How to verify tokens (USER_POOL); may be injected instead
        name: Key name (API_KEY)
        key: Expected key value (API_KEY); any key is accepted when omitted
        expires_at: Expiry instant (API_KEY)
        description: Free text (API_KEY)
    """

    type: Literal["USER_POOL", "API_KEY"]
    is_default: bool = False
    user_pool_ref: str = ""
    verifier: VerifierConfigSchema | None = None
    name: str = "ApiKey1"
    key: str | None = None
    expires_at: datetime | None = None
    description: str = ""


class IPSetConfigSchema(_Config):
    name: str
    addresses: list[str] = Field(default_factory=list)
    ip_address_version: Literal["IPV4", "IPV6"] = Field(default="IPV4", alias="ipAddressVersion")


class RuleConfigSchema(_Config):
    """Single admission rule.

    ``action`` accepts ``"allow"``/``"block"`` or the ``{"block": {}}`` form.
    """

    name: str
    priority: int
    action: Literal["allow", "block"]
    statement: dict[str, Any]

    @field_validator("action", mode="before")
    @classmethod
    def _unwrap_action(cls, value: Any) -> Any:
        if isinstance(value, dict) and len(value) == 1:
            return next(iter(value))
        return value


class AclConfigSchema(_Config):
    default_action: Literal["allow", "block"] = Field(default="allow", alias="defaultAction")
    window_mode: Literal["sliding", "fixed"] = "sliding"
    rules: list[RuleConfigSchema] = Field(default_factory=list)
    ip_sets: list[IPSetConfigSchema] = Field(default_factory=list, alias="ipSets")

    @field_validator("default_action", mode="before")
    @classmethod
    def _unwrap_default(cls, value: Any) -> Any:
        if isinstance(value, dict) and len(value) == 1:
            return next(iter(value))
        return value


class LoggingConfigSchema(_Config):
    level: str = "info"
    json_output: bool = Field(default=False, alias="json")


class GatewayConfig(_Config):
    """Complete, process-wide gateway configuration.

    Attributes:
        table: Key layout
        store: Table backend
        mutations: Create/delete semantics
        auth_modes: Authentication modes, exactly one default
        acl: Admission rules
        operations: Optional ``{"Mutation.createDataPoint": ["USER_POOL"]}`` restrictions
        logging: Log level and format
    """

    table: TableConfigSchema = Field(default_factory=TableConfigSchema)
    store: StoreConfigSchema = Field(default_factory=StoreConfigSchema)
    mutations: MutationPolicySchema = Field(default_factory=MutationPolicySchema)
    auth_modes: list[AuthModeConfigSchema] = Field(min_length=1)
    acl: AclConfigSchema = Field(default_factory=AclConfigSchema)
    operations: dict[str, list[Literal["USER_POOL", "API_KEY"]]] = Field(default_factory=dict)
    logging: LoggingConfigSchema = Field(default_factory=LoggingConfigSchema)

    @classmethod
    def from_file(cls, path: str | Path) -> GatewayConfig:
        return cls.model_validate_json(Path(path).read_text())


class CredentialSchema(_Config):
    """Explicit auth selection.  Token and key default to the request headers."""

    type: Literal["USER_POOL", "API_KEY"] | None = None
    token: str | None = None
    api_key: str | None = None


class OperationSchema(_Config):
    type: Literal["Query", "Mutation", "Subscription"]
    field: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class RequestSchema(_Config):
    """One inbound request as the transport saw it."""

    source_ip: str
    headers: dict[str, str] = Field(default_factory=dict)
    method: str = "POST"
    path: str = "/graphql"
    query_string: str = ""
    auth: CredentialSchema = Field(default_factory=CredentialSchema)
    operation: OperationSchema


class RunnerInput(_Config):
    """Complete input read from stdin.  Give either ``config`` or ``config_path``."""

    config: GatewayConfig | None = None
    config_path: str | None = None
    request: RequestSchema


class DecisionSchema(BaseModel):
    action: Literal["allow", "block"]
    rule_name: str | None = None
    reason: str = ""


class RunnerOutput(BaseModel):
    """Complete output written to stdout.

    The runner always outputs valid JSON matching this schema, even on
    errors.

    Attributes:
        success: Whether the operation completed
        result: Operation result (on success)
        error: Error message (on failure)
        error_type: Stable error type (on failure)
        decision: Admission decision, when admission ran
    """

    success: bool
    result: Any = None
    error: str = ""
    error_type: str = ""
    decision: DecisionSchema | None = None
