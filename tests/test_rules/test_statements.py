"""Tests for the statement algebra."""

import pytest

from datapoint_gateway import RequestContext, RuleConfigError
from datapoint_gateway.rules import (
    And,
    ByteMatch,
    FieldToMatch,
    IPSetReference,
    Not,
    Or,
    RateBased,
    StaticAddressSet,
    evaluate_statement,
)
from datapoint_gateway.rules.statements import (
    EvaluationScope,
    aggregate_value,
    export_statement,
    iter_rate_statements,
    validate_statement,
)

API_KEY_HEADER = FieldToMatch("single_header", "x-api-key")


@pytest.fixture
def sets():
    return {"office": StaticAddressSet("office", ["146.198.93.180/32", "10.1.0.0/16"])}


def scope_for(ctx, sets=None, **rate_counts):
    return EvaluationScope(context=ctx, address_sets=sets or {}, rate_counts=dict(rate_counts))


def make_ctx(**kwargs):
    kwargs.setdefault("source_ip", "198.51.100.4")
    return RequestContext(**kwargs)


# ── ByteMatch ────────────────────────────────────────────────


def test_byte_match_exact():
    stmt = ByteMatch(API_KEY_HEADER, "da2-secret")
    assert evaluate_statement(stmt, scope_for(make_ctx(headers={"X-Api-Key": "da2-secret"})))
    assert not evaluate_statement(stmt, scope_for(make_ctx(headers={"X-Api-Key": "da2-other"})))


def test_byte_match_lowercase_applies_to_both_sides():
    stmt = ByteMatch(API_KEY_HEADER, "DA2-Secret", transforms=("LOWERCASE",))
    assert evaluate_statement(stmt, scope_for(make_ctx(headers={"x-api-key": "da2-SECRET"})))


def test_byte_match_missing_header_is_false():
    stmt = ByteMatch(API_KEY_HEADER, "da2-secret")
    assert not evaluate_statement(stmt, scope_for(make_ctx()))


@pytest.mark.parametrize(
    "constraint, search, expected",
    [
        ("STARTS_WITH", "/graph", True),
        ("ENDS_WITH", "ql", True),
        ("CONTAINS", "aph", True),
        ("CONTAINS_WORD", "graphql", True),
        ("CONTAINS_WORD", "graph", False),
        ("EXACTLY", "/graph", False),
    ],
)
def test_byte_match_constraints(constraint, search, expected):
    stmt = ByteMatch(FieldToMatch("uri_path"), search, constraint=constraint)
    assert evaluate_statement(stmt, scope_for(make_ctx())) is expected


def test_byte_match_url_decode_then_compress():
    stmt = ByteMatch(
        FieldToMatch("query_string"),
        "q=a b",
        transforms=("URL_DECODE", "COMPRESS_WHITE_SPACE"),
    )
    assert evaluate_statement(stmt, scope_for(make_ctx(query_string="q=a%20%20%20b")))


def test_byte_match_method():
    stmt = ByteMatch(FieldToMatch("method"), "GET")
    assert evaluate_statement(stmt, scope_for(make_ctx(method="GET")))
    assert not evaluate_statement(stmt, scope_for(make_ctx()))


# ── IP sets and combinators ──────────────────────────────────


def test_ip_set_reference(sets):
    stmt = IPSetReference("office")
    assert evaluate_statement(stmt, scope_for(make_ctx(source_ip="146.198.93.180"), sets))
    assert evaluate_statement(stmt, scope_for(make_ctx(source_ip="10.1.44.2"), sets))
    assert not evaluate_statement(stmt, scope_for(make_ctx(source_ip="146.198.93.181"), sets))


def test_not(sets):
    stmt = Not(IPSetReference("office"))
    assert evaluate_statement(stmt, scope_for(make_ctx(), sets))


def test_and_requires_all(sets):
    stmt = And((ByteMatch(API_KEY_HEADER, "k"), Not(IPSetReference("office"))))
    outside_with_key = make_ctx(headers={"x-api-key": "k"})
    inside_with_key = make_ctx(source_ip="146.198.93.180", headers={"x-api-key": "k"})
    outside_without_key = make_ctx()
    assert evaluate_statement(stmt, scope_for(outside_with_key, sets))
    assert not evaluate_statement(stmt, scope_for(inside_with_key, sets))
    assert not evaluate_statement(stmt, scope_for(outside_without_key, sets))


def test_or_requires_any():
    stmt = Or((ByteMatch(FieldToMatch("method"), "GET"), ByteMatch(FieldToMatch("method"), "PUT")))
    assert evaluate_statement(stmt, scope_for(make_ctx(method="PUT")))
    assert not evaluate_statement(stmt, scope_for(make_ctx(method="POST")))


def test_rate_based_reads_recorded_count():
    stmt = RateBased(limit=3)
    ctx = make_ctx()
    assert not evaluate_statement(stmt, EvaluationScope(ctx, {}, {stmt: 3}))
    assert evaluate_statement(stmt, EvaluationScope(ctx, {}, {stmt: 4}))
    assert not evaluate_statement(stmt, EvaluationScope(ctx, {}))


def test_aggregate_value_forwarded_ip():
    stmt = RateBased(limit=10, aggregate_key="FORWARDED_IP")
    ctx = make_ctx(headers={"X-Forwarded-For": "192.0.2.9, 10.0.0.1"})
    assert aggregate_value(stmt, ctx) == "192.0.2.9"
    assert aggregate_value(stmt, make_ctx()) == "198.51.100.4"
    assert aggregate_value(RateBased(limit=10), ctx) == "198.51.100.4"


def test_iter_rate_statements():
    a, b = RateBased(limit=5), RateBased(limit=9)
    tree = Or((a, Not(And((b, IPSetReference("office"))))))
    assert list(iter_rate_statements(tree)) == [a, b]


# ── validation ───────────────────────────────────────────────


@pytest.mark.parametrize(
    "stmt",
    [
        RateBased(limit=0),
        RateBased(limit=10, window_seconds=0),
        ByteMatch(FieldToMatch("single_header"), "x"),
        ByteMatch(API_KEY_HEADER, ""),
        ByteMatch(API_KEY_HEADER, "x", constraint="SOUNDS_LIKE"),
        ByteMatch(API_KEY_HEADER, "x", transforms=("BASE64",)),
        ByteMatch(API_KEY_HEADER, "x", transforms=()),
        IPSetReference("nowhere"),
        And((IPSetReference("office"),)),
        Not(Or(())),
        "rateBasedStatement",
    ],
)
def test_validate_rejects(stmt, sets):
    with pytest.raises(RuleConfigError) as exc_info:
        validate_statement(stmt, "r1", sets)
    assert exc_info.value.rule_name == "r1"


def test_validate_accepts_nested_tree(sets):
    tree = And((ByteMatch(API_KEY_HEADER, "k"), Not(IPSetReference("office"))))
    validate_statement(tree, "r1", sets)


# ── export ───────────────────────────────────────────────────


def test_export_hides_search_string():
    data = export_statement(ByteMatch(API_KEY_HEADER, "da2-secret", transforms=("LOWERCASE",)))
    body = data["byteMatchStatement"]
    assert body["fieldToMatch"] == {"singleHeader": {"name": "x-api-key"}}
    assert body["searchStringLength"] == len("da2-secret")
    assert body["textTransformations"] == [{"priority": 0, "type": "LOWERCASE"}]
    assert "da2-secret" not in str(data)


def test_export_nested():
    data = export_statement(Not(IPSetReference("office")))
    assert data == {"notStatement": {"statement": {"ipSetReferenceStatement": {"name": "office"}}}}
