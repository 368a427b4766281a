# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Factories turning configuration into live gateway components.

Uses the Registry pattern to map statement type keys to parsers.  Every
configuration problem surfaces here, at load time, never mid-request.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from datapoint_gateway._internal.clock import Clock
from datapoint_gateway.auth.modes import ApiKeyMode, AuthMode, UserPoolMode, api_key_expiry
from datapoint_gateway.auth.resolver import AuthorizationResolver
from datapoint_gateway.auth.verifiers import HttpTokenVerifier, IdentityVerifier, StaticTokenVerifier
from datapoint_gateway.exceptions import ConfigError, RuleConfigError
from datapoint_gateway.gateway import DataPointGateway
from datapoint_gateway.keys import KEY_STRATEGIES, CompositeStringKey, KeyStrategy
from datapoint_gateway.pipeline.executor import ResolverPipeline
from datapoint_gateway.pipeline.resolvers import DataPointResolvers
from datapoint_gateway.result import Action
from datapoint_gateway.rules.engine import AdmissionRule, RuleEngine
from datapoint_gateway.rules.ipset import StaticAddressSet
from datapoint_gateway.rules.statements import (
    And,
    ByteMatch,
    FieldToMatch,
    IPSetReference,
    Not,
    Or,
    RateBased,
    Statement,
)
from datapoint_gateway.stores.memory import InMemoryTable
from datapoint_gateway.subscriptions.fanout import SubscriptionHub

if TYPE_CHECKING:
    from datapoint_gateway.rules.ipset import AddressSet
    from datapoint_gateway.stores.base import Table

    from .schema import (
        AclConfigSchema,
        AuthModeConfigSchema,
        GatewayConfig,
        StoreConfigSchema,
        TableConfigSchema,
        VerifierConfigSchema,
    )

_FIELD_KINDS = {
    "singleHeader": "single_header",
    "uriPath": "uri_path",
    "method": "method",
    "queryString": "query_string",
}


class StatementFactory:
    """Parses nested ``*Statement`` dictionaries into statement nodes.

    Each dictionary must have exactly one key naming the node type.

    Example:
        factory = StatementFactory()
        node = factory.parse(
            {"notStatement": {"statement": {"ipSetReferenceStatement": {"name": "office"}}}},
            rule_name="r1",
        )
    """

    _registry: ClassVar[dict[str, str]] = {
        "rateBasedStatement": "_rate_based",
        "byteMatchStatement": "_byte_match",
        "ipSetReferenceStatement": "_ip_set_reference",
        "notStatement": "_not",
        "andStatement": "_and",
        "orStatement": "_or",
    }

    @classmethod
    def registered_types(cls) -> list[str]:
        """Return list of statement type keys the factory understands."""
        return list(cls._registry)

    def parse(self, raw: Any, rule_name: str) -> Statement:
        """Parse one statement tree.

        Raises:
            RuleConfigError: On unknown node types or missing fields.
        """
        if not isinstance(raw, dict) or len(raw) != 1:
            raise RuleConfigError(rule_name, "a statement must be an object with exactly one key")
        (kind, body), = raw.items()
        method = self._registry.get(kind)
        if method is None:
            available = ", ".join(sorted(self._registry))
            raise RuleConfigError(
                rule_name, f"unknown statement type '{kind}'. Available types: {available}"
            )
        if not isinstance(body, dict):
            raise RuleConfigError(rule_name, f"'{kind}' must be an object")
        parser: Callable[[dict[str, Any], str], Statement] = getattr(self, method)
        return parser(body, rule_name)

    @staticmethod
    def _require(body: dict[str, Any], name: str, kind: str, rule_name: str) -> Any:
        if name not in body:
            raise RuleConfigError(rule_name, f"'{kind}' requires '{name}'")
        return body[name]

    def _rate_based(self, body: dict[str, Any], rule_name: str) -> Statement:
        limit = self._require(body, "limit", "rateBasedStatement", rule_name)
        return RateBased(
            limit=limit,
            aggregate_key=body.get("aggregateKeyType", "IP"),
            window_seconds=body.get("windowSeconds", 300),
        )

    def _byte_match(self, body: dict[str, Any], rule_name: str) -> Statement:
        kind = "byteMatchStatement"
        raw_field = self._require(body, "fieldToMatch", kind, rule_name)
        if not isinstance(raw_field, dict) or len(raw_field) != 1:
            raise RuleConfigError(rule_name, "'fieldToMatch' must name exactly one field")
        (field_key, field_body), = raw_field.items()
        if field_key not in _FIELD_KINDS:
            raise RuleConfigError(rule_name, f"unknown field to match '{field_key}'")
        header = None
        if isinstance(field_body, dict):
            header = field_body.get("name", field_body.get("Name"))

        transforms = body.get("textTransformations") or [{"priority": 0, "type": "NONE"}]
        try:
            ordered = tuple(t["type"] for t in sorted(transforms, key=lambda t: t.get("priority", 0)))
        except (KeyError, TypeError, AttributeError) as exc:
            raise RuleConfigError(rule_name, "malformed 'textTransformations'") from exc

        return ByteMatch(
            field=FieldToMatch(kind=_FIELD_KINDS[field_key], name=header),  # type: ignore[arg-type]
            search=self._require(body, "searchString", kind, rule_name),
            constraint=body.get("positionalConstraint", "EXACTLY"),
            transforms=ordered,
        )

    def _ip_set_reference(self, body: dict[str, Any], rule_name: str) -> Statement:
        return IPSetReference(self._require(body, "name", "ipSetReferenceStatement", rule_name))

    def _not(self, body: dict[str, Any], rule_name: str) -> Statement:
        child = self._require(body, "statement", "notStatement", rule_name)
        return Not(self.parse(child, rule_name))

    def _children(self, body: dict[str, Any], kind: str, rule_name: str) -> tuple[Statement, ...]:
        children = self._require(body, "statements", kind, rule_name)
        if not isinstance(children, list):
            raise RuleConfigError(rule_name, f"'{kind}.statements' must be a list")
        return tuple(self.parse(c, rule_name) for c in children)

    def _and(self, body: dict[str, Any], rule_name: str) -> Statement:
        return And(self._children(body, "andStatement", rule_name))

    def _or(self, body: dict[str, Any], rule_name: str) -> Statement:
        return Or(self._children(body, "orStatement", rule_name))


class GatewayFactory:
    """Builds a :class:`DataPointGateway` from a :class:`GatewayConfig`.

    Parameters:
        clock:     Shared clock for rate windows and key expiry.
        verifiers: Identity verifiers keyed by ``user_pool_ref``.  Used for
                   USER_POOL modes that do not configure their own verifier.
        table:     Pre-built table, overriding ``config.store``.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        verifiers: Mapping[str, IdentityVerifier] | None = None,
        table: Table | None = None,
    ) -> None:
        self._clock = clock
        self._verifiers = dict(verifiers or {})
        self._table = table
        self._statements = StatementFactory()

    def build(self, config: GatewayConfig) -> DataPointGateway:
        strategy = self.create_key_strategy(config.table)
        table = self._table or self.create_table(config.store, strategy)
        try:
            resolvers = DataPointResolvers(
                strategy,
                reject_duplicate_creates=config.mutations.reject_duplicate_creates,
                delete_missing=config.mutations.delete_missing,
                auth_types=config.operations,
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e
        pipeline = ResolverPipeline(table, resolvers.specs(), hub=SubscriptionHub())
        return DataPointGateway(
            engine=self.create_engine(config.acl),
            auth=AuthorizationResolver(
                [self.create_auth_mode(m) for m in config.auth_modes],
                clock=self._clock,
            ),
            pipeline=pipeline,
        )

    # ── table ────────────────────────────────────────────────

    def create_key_strategy(self, config: TableConfigSchema) -> KeyStrategy:
        strategy_class = KEY_STRATEGIES.get(config.key_strategy)
        if strategy_class is None:
            raise ConfigError(f"Unknown key strategy: '{config.key_strategy}'")
        if strategy_class is CompositeStringKey:
            return CompositeStringKey(config.entity_type, config.separator)
        return strategy_class()

    def create_table(self, config: StoreConfigSchema, strategy: KeyStrategy) -> Table:
        attrs = {"partition_attr": strategy.partition_attr, "sort_attr": strategy.sort_attr}
        if config.type == "sqlite":
            if not config.path:
                raise ConfigError("SQLite store requires 'path' configuration")
            from datapoint_gateway.stores.sqlite import SQLiteTable

            return SQLiteTable(config.path, table_name=config.table_name, **attrs)
        return InMemoryTable(**attrs)

    # ── auth ─────────────────────────────────────────────────

    def create_verifier(self, config: VerifierConfigSchema) -> IdentityVerifier:
        if config.type == "http":
            if not config.introspection_url:
                raise ConfigError("http verifier requires 'introspection_url'")
            return HttpTokenVerifier(
                config.introspection_url,
                client_token=config.client_token,
                timeout=config.timeout,
            )
        return StaticTokenVerifier(config.tokens)

    def create_auth_mode(self, config: AuthModeConfigSchema) -> AuthMode:
        if config.type == "USER_POOL":
            if config.verifier is not None:
                verifier = self.create_verifier(config.verifier)
            elif config.user_pool_ref in self._verifiers:
                verifier = self._verifiers[config.user_pool_ref]
            else:
                raise ConfigError(
                    f"USER_POOL mode '{config.user_pool_ref}' has no verifier configured or injected"
                )
            return UserPoolMode(
                user_pool_ref=config.user_pool_ref,
                verifier=verifier,
                is_default=config.is_default,
            )

        return ApiKeyMode(
            name=config.name,
            key=config.key,
            expires_at=config.expires_at or api_key_expiry(),
            description=config.description,
            is_default=config.is_default,
        )

    # ── admission ────────────────────────────────────────────

    def create_address_sets(self, config: AclConfigSchema) -> dict[str, AddressSet]:
        sets: dict[str, AddressSet] = {}
        for ip_set in config.ip_sets:
            if ip_set.name in sets:
                raise ConfigError(f"IP set '{ip_set.name}' defined twice")
            try:
                sets[ip_set.name] = StaticAddressSet(
                    ip_set.name, ip_set.addresses, version=ip_set.ip_address_version
                )
            except ValueError as e:
                raise ConfigError(f"IP set '{ip_set.name}' is invalid: {e}") from e
        return sets

    def create_rules(self, config: AclConfigSchema) -> list[AdmissionRule]:
        return [
            AdmissionRule(
                name=rule.name,
                priority=rule.priority,
                action=Action(rule.action),
                statement=self._statements.parse(rule.statement, rule.name),
            )
            for rule in config.rules
        ]

    def create_engine(self, config: AclConfigSchema) -> RuleEngine:
        return RuleEngine(
            self.create_rules(config),
            default_action=Action(config.default_action),
            address_sets=self.create_address_sets(config),
            window_mode=config.window_mode,
            clock=self._clock,
        )


def build_gateway(config: GatewayConfig, **kwargs: Any) -> DataPointGateway:
    """Shorthand for ``GatewayFactory(**kwargs).build(config)``."""
    return GatewayFactory(**kwargs).build(config)
