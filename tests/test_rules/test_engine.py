"""Tests for RuleEngine."""

import pytest

from datapoint_gateway import Action, RequestContext, RuleConfigError
from datapoint_gateway.rules import (
    AdmissionRule,
    And,
    ByteMatch,
    FieldToMatch,
    IPSetReference,
    Not,
    RateBased,
    RuleEngine,
    StaticAddressSet,
)

API_KEY = "da2-workshop-key"


class ExplodingSet:
    name = "boom"

    def contains(self, ip: str) -> bool:
        raise RuntimeError("lookup backend down")


def is_method(method):
    return ByteMatch(FieldToMatch("method"), method)


@pytest.fixture
def office():
    return StaticAddressSet("ApiKeyAllowedIPs", ["146.198.93.180/32"])


@pytest.fixture
def reference_engine(clock, office):
    rules = [
        AdmissionRule(
            name="RestrictAPIKey",
            priority=2,
            action=Action.BLOCK,
            statement=And(
                (
                    ByteMatch(
                        FieldToMatch("single_header", "x-api-key"),
                        API_KEY,
                        transforms=("LOWERCASE",),
                    ),
                    Not(IPSetReference("ApiKeyAllowedIPs")),
                )
            ),
        ),
        AdmissionRule(
            name="FloodProtection",
            priority=1,
            action=Action.BLOCK,
            statement=RateBased(limit=1000),
        ),
    ]
    return RuleEngine(rules, address_sets={office.name: office}, clock=clock)


# ── ordering and default ─────────────────────────────────────


async def test_priority_order_not_declaration_order(clock):
    engine = RuleEngine(
        [
            AdmissionRule("late-allow", 20, Action.ALLOW, is_method("POST")),
            AdmissionRule("early-block", 10, Action.BLOCK, is_method("POST")),
        ],
        clock=clock,
    )
    decision = await engine.evaluate(RequestContext(source_ip="10.0.0.1"))
    assert not decision.allowed
    assert decision.rule_name == "early-block"
    assert [r.name for r in engine.rules] == ["early-block", "late-allow"]


async def test_first_match_wins(clock):
    engine = RuleEngine(
        [
            AdmissionRule("allow-post", 1, Action.ALLOW, is_method("POST")),
            AdmissionRule("block-post", 2, Action.BLOCK, is_method("POST")),
        ],
        clock=clock,
    )
    decision = await engine.evaluate(RequestContext(source_ip="10.0.0.1"))
    assert decision.allowed
    assert decision.rule_name == "allow-post"


async def test_default_action_allow(reference_engine):
    decision = await reference_engine.evaluate(RequestContext(source_ip="10.0.0.1"))
    assert decision.allowed
    assert decision.rule_name is None


async def test_default_action_block(clock):
    engine = RuleEngine(
        [AdmissionRule("allow-get", 1, Action.ALLOW, is_method("GET"))],
        default_action=Action.BLOCK,
        clock=clock,
    )
    assert not (await engine.evaluate(RequestContext(source_ip="10.0.0.1"))).allowed
    assert (await engine.evaluate(RequestContext(source_ip="10.0.0.1", method="GET"))).allowed


async def test_no_rules_uses_default(clock):
    engine = RuleEngine([], clock=clock)
    assert (await engine.evaluate(RequestContext(source_ip="10.0.0.1"))).allowed


# ── reference rules ──────────────────────────────────────────


async def test_flood_protection_blocks_request_1001(reference_engine):
    ctx = RequestContext(source_ip="203.0.113.7")
    for _ in range(1000):
        assert (await reference_engine.evaluate(ctx)).allowed

    decision = await reference_engine.evaluate(ctx)
    assert not decision.allowed
    assert decision.rule_name == "FloodProtection"


async def test_flood_protection_is_per_ip(reference_engine):
    flooder = RequestContext(source_ip="203.0.113.7")
    for _ in range(1001):
        await reference_engine.evaluate(flooder)
    assert (await reference_engine.evaluate(RequestContext(source_ip="203.0.113.8"))).allowed


async def test_flood_protection_recovers_after_window(reference_engine, clock):
    ctx = RequestContext(source_ip="203.0.113.7")
    for _ in range(1001):
        await reference_engine.evaluate(ctx)
    clock.advance(301)
    assert (await reference_engine.evaluate(ctx)).allowed


async def test_api_key_blocked_outside_allowed_ips(reference_engine, outside_ip):
    ctx = RequestContext(source_ip=outside_ip, headers={"x-api-key": API_KEY})
    decision = await reference_engine.evaluate(ctx)
    assert not decision.allowed
    assert decision.rule_name == "RestrictAPIKey"


async def test_api_key_match_ignores_case(reference_engine, outside_ip):
    ctx = RequestContext(source_ip=outside_ip, headers={"X-API-KEY": API_KEY.upper()})
    assert not (await reference_engine.evaluate(ctx)).allowed


async def test_api_key_allowed_from_allowed_ip(reference_engine, office_ip):
    ctx = RequestContext(source_ip=office_ip, headers={"x-api-key": API_KEY})
    assert (await reference_engine.evaluate(ctx)).allowed


async def test_other_api_key_not_restricted(reference_engine, outside_ip):
    ctx = RequestContext(source_ip=outside_ip, headers={"x-api-key": "some-other-key"})
    assert (await reference_engine.evaluate(ctx)).allowed


async def test_blocked_requests_still_counted(clock):
    engine = RuleEngine(
        [
            AdmissionRule("no-post", 1, Action.BLOCK, is_method("POST")),
            AdmissionRule("rate", 2, Action.BLOCK, RateBased(limit=2)),
        ],
        clock=clock,
    )
    for _ in range(3):
        assert (await engine.evaluate(RequestContext(source_ip="10.0.0.1"))).rule_name == "no-post"

    decision = await engine.evaluate(RequestContext(source_ip="10.0.0.1", method="GET"))
    assert decision.rule_name == "rate"


async def test_fixed_window_mode(clock):
    engine = RuleEngine(
        [AdmissionRule("rate", 1, Action.BLOCK, RateBased(limit=2, window_seconds=60))],
        window_mode="fixed",
        clock=clock,
    )
    ctx = RequestContext(source_ip="10.0.0.1")
    results = [(await engine.evaluate(ctx)).allowed for _ in range(3)]
    assert results == [True, True, False]
    clock.advance(60)
    assert (await engine.evaluate(ctx)).allowed


# ── failure handling ─────────────────────────────────────────


async def test_internal_error_blocks(clock):
    engine = RuleEngine(
        [AdmissionRule("office-only", 1, Action.ALLOW, IPSetReference("boom"))],
        address_sets={"boom": ExplodingSet()},
        clock=clock,
    )
    decision = await engine.evaluate(RequestContext(source_ip="10.0.0.1"))
    assert not decision.allowed
    assert decision.rule_name is None
    assert decision.reason == "Admission evaluation failed"


async def test_duplicate_priority_rejected(clock):
    with pytest.raises(RuleConfigError, match="priority 1"):
        RuleEngine(
            [
                AdmissionRule("a", 1, Action.BLOCK, is_method("GET")),
                AdmissionRule("b", 1, Action.BLOCK, is_method("PUT")),
            ],
            clock=clock,
        )


async def test_duplicate_name_rejected(clock):
    with pytest.raises(RuleConfigError):
        RuleEngine(
            [
                AdmissionRule("a", 1, Action.BLOCK, is_method("GET")),
                AdmissionRule("a", 2, Action.BLOCK, is_method("PUT")),
            ],
            clock=clock,
        )


async def test_unknown_ip_set_rejected_at_load(clock):
    with pytest.raises(RuleConfigError, match="unknown IP set"):
        RuleEngine([AdmissionRule("a", 1, Action.BLOCK, IPSetReference("missing"))], clock=clock)


async def test_invalid_action_rejected(clock):
    with pytest.raises(RuleConfigError):
        RuleEngine([AdmissionRule("a", 1, "count", is_method("GET"))], clock=clock)  # type: ignore[arg-type]


# ── introspection ────────────────────────────────────────────


async def test_get_rule(reference_engine):
    assert reference_engine.get_rule("FloodProtection").priority == 1
    assert reference_engine.get_rule("nope") is None


async def test_export(reference_engine):
    data = reference_engine.export()
    assert data["default_action"] == "allow"
    assert data["window_mode"] == "sliding"
    assert [r["name"] for r in data["rules"]] == ["FloodProtection", "RestrictAPIKey"]
    assert data["ip_sets"] == ["ApiKeyAllowedIPs"]
    assert API_KEY not in str(data)


async def test_purge_counters(reference_engine, clock):
    await reference_engine.evaluate(RequestContext(source_ip="10.0.0.1"))
    await reference_engine.evaluate(RequestContext(source_ip="10.0.0.2"))
    clock.advance(301)
    assert reference_engine.purge_counters() == 2
