"""Statement algebra: the boolean expression trees admission rules are made of.

Each node is a frozen dataclass tagged with a ``kind``.  The closed union
:data:`Statement` is interpreted by a single recursive function,
:func:`evaluate_statement`, so adding a node means touching exactly that
function, :func:`validate_statement` and :func:`export_statement`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Literal
from urllib.parse import unquote_plus

from datapoint_gateway.exceptions import RuleConfigError

if TYPE_CHECKING:
    from datapoint_gateway.context import RequestContext
    from datapoint_gateway.rules.ipset import AddressSet

AggregateKey = Literal["IP", "FORWARDED_IP"]
FieldKind = Literal["single_header", "uri_path", "method", "query_string"]
PositionalConstraint = Literal["EXACTLY", "STARTS_WITH", "ENDS_WITH", "CONTAINS", "CONTAINS_WORD"]

TRANSFORMS: dict[str, Callable[[str], str]] = {
    "NONE": lambda s: s,
    "LOWERCASE": str.lower,
    "URL_DECODE": unquote_plus,
    "COMPRESS_WHITE_SPACE": lambda s: re.sub(r"\s+", " ", s),
}


def _contains_word(value: str, word: str) -> bool:
    pattern = rf"(?<![A-Za-z0-9_]){re.escape(word)}(?![A-Za-z0-9_])"
    return re.search(pattern, value) is not None


CONSTRAINTS: dict[str, Callable[[str, str], bool]] = {
    "EXACTLY": lambda value, search: value == search,
    "STARTS_WITH": str.startswith,
    "ENDS_WITH": str.endswith,
    "CONTAINS": lambda value, search: search in value,
    "CONTAINS_WORD": _contains_word,
}


# ── nodes ────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateBased:
    """True when the aggregate key has made more than ``limit`` requests in the window."""

    kind: ClassVar[str] = "rate_based"

    limit: int
    aggregate_key: AggregateKey = "IP"
    window_seconds: float = 300


@dataclass(frozen=True)
class FieldToMatch:
    kind: FieldKind
    name: str | None = None


@dataclass(frozen=True)
class ByteMatch:
    """True when a request field matches ``search`` under ``constraint``.

    ``transforms`` are applied in order to both the field value and the
    search string before comparing.
    """

    kind: ClassVar[str] = "byte_match"

    field: FieldToMatch
    search: str
    constraint: PositionalConstraint = "EXACTLY"
    transforms: tuple[str, ...] = ("NONE",)


@dataclass(frozen=True)
class IPSetReference:
    """True when the source IP belongs to the named address set."""

    kind: ClassVar[str] = "ip_set_reference"

    set_name: str


@dataclass(frozen=True)
class Not:
    kind: ClassVar[str] = "not"

    statement: Statement


@dataclass(frozen=True)
class And:
    kind: ClassVar[str] = "and"

    statements: tuple[Statement, ...]


@dataclass(frozen=True)
class Or:
    kind: ClassVar[str] = "or"

    statements: tuple[Statement, ...]


Statement = RateBased | ByteMatch | IPSetReference | Not | And | Or


# ── evaluation ───────────────────────────────────────────────


@dataclass
class EvaluationScope:
    """Everything a statement may look at during one evaluation.

    ``rate_counts`` holds the already-recorded count for each rate-based
    node; statements only read it.
    """

    context: RequestContext
    address_sets: Mapping[str, AddressSet]
    rate_counts: dict[RateBased, int] = field(default_factory=dict)


def aggregate_value(statement: RateBased, context: RequestContext) -> str:
    """The value requests are counted under for *statement*."""
    if statement.aggregate_key == "FORWARDED_IP":
        forwarded = context.header("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return context.source_ip


def _field_value(spec: FieldToMatch, context: RequestContext) -> str | None:
    if spec.kind == "single_header":
        return context.header(spec.name or "")
    if spec.kind == "uri_path":
        return context.path
    if spec.kind == "method":
        return context.method
    if spec.kind == "query_string":
        return context.query_string
    raise TypeError(f"Unknown field kind: {spec.kind!r}")


def _transform(text: str, transforms: tuple[str, ...]) -> str:
    for name in transforms:
        text = TRANSFORMS[name](text)
    return text


def evaluate_statement(statement: Statement, scope: EvaluationScope) -> bool:
    """Recursively evaluate *statement*.  ``And``/``Or`` short-circuit."""
    if isinstance(statement, RateBased):
        return scope.rate_counts.get(statement, 0) > statement.limit

    if isinstance(statement, ByteMatch):
        value = _field_value(statement.field, scope.context)
        if value is None:
            return False
        value = _transform(value, statement.transforms)
        search = _transform(statement.search, statement.transforms)
        return CONSTRAINTS[statement.constraint](value, search)

    if isinstance(statement, IPSetReference):
        return scope.address_sets[statement.set_name].contains(scope.context.source_ip)

    if isinstance(statement, Not):
        return not evaluate_statement(statement.statement, scope)

    if isinstance(statement, And):
        return all(evaluate_statement(s, scope) for s in statement.statements)

    if isinstance(statement, Or):
        return any(evaluate_statement(s, scope) for s in statement.statements)

    raise TypeError(f"Unknown statement node: {type(statement).__name__}")


# ── load-time checks ─────────────────────────────────────────


def iter_rate_statements(statement: Statement) -> Iterator[RateBased]:
    """Yield every rate-based node in the tree, depth first."""
    if isinstance(statement, RateBased):
        yield statement
    elif isinstance(statement, Not):
        yield from iter_rate_statements(statement.statement)
    elif isinstance(statement, (And, Or)):
        for child in statement.statements:
            yield from iter_rate_statements(child)


def _is_number(value: Any, *, integral: bool = False) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) if integral else isinstance(value, (int, float))


def validate_statement(
    statement: Any,
    rule_name: str,
    address_sets: Mapping[str, AddressSet],
) -> None:
    """Reject a malformed tree before it is ever evaluated.

    Raises:
        RuleConfigError: On unknown nodes, missing fields or dangling references.
    """
    if isinstance(statement, RateBased):
        if not _is_number(statement.limit, integral=True) or statement.limit < 1:
            raise RuleConfigError(rule_name, "rate-based limit must be a positive integer")
        if not isinstance(statement.aggregate_key, str) or statement.aggregate_key not in ("IP", "FORWARDED_IP"):
            raise RuleConfigError(rule_name, f"unknown aggregate key {statement.aggregate_key!r}")
        if not _is_number(statement.window_seconds) or statement.window_seconds <= 0:
            raise RuleConfigError(rule_name, "rate-based window must be a positive number of seconds")
    elif isinstance(statement, ByteMatch):
        spec = statement.field
        if spec.kind not in ("single_header", "uri_path", "method", "query_string"):
            raise RuleConfigError(rule_name, f"unknown field to match {spec.kind!r}")
        if spec.kind == "single_header" and (not isinstance(spec.name, str) or not spec.name):
            raise RuleConfigError(rule_name, "single_header match requires a header name")
        if not isinstance(statement.constraint, str) or statement.constraint not in CONSTRAINTS:
            raise RuleConfigError(rule_name, f"unknown positional constraint {statement.constraint!r}")
        if not statement.transforms:
            raise RuleConfigError(rule_name, "byte match needs at least one text transformation")
        unknown = [t for t in statement.transforms if not isinstance(t, str) or t not in TRANSFORMS]
        if unknown:
            raise RuleConfigError(rule_name, f"unknown text transformation(s) {unknown}")
        if not isinstance(statement.search, str) or not statement.search:
            raise RuleConfigError(rule_name, "byte match requires a non-empty search string")
    elif isinstance(statement, IPSetReference):
        if not isinstance(statement.set_name, str) or statement.set_name not in address_sets:
            raise RuleConfigError(rule_name, f"references unknown IP set {statement.set_name!r}")
    elif isinstance(statement, Not):
        validate_statement(statement.statement, rule_name, address_sets)
    elif isinstance(statement, (And, Or)):
        if len(statement.statements) < 2:
            raise RuleConfigError(rule_name, f"'{statement.kind}' needs at least two statements")
        for child in statement.statements:
            validate_statement(child, rule_name, address_sets)
    else:
        raise RuleConfigError(rule_name, f"unknown statement node {type(statement).__name__}")


# ── export ───────────────────────────────────────────────────


def export_statement(statement: Statement) -> dict[str, Any]:
    """JSON-serializable form, in the same shape the config loader reads."""
    if isinstance(statement, RateBased):
        return {
            "rateBasedStatement": {
                "aggregateKeyType": statement.aggregate_key,
                "limit": statement.limit,
                "windowSeconds": statement.window_seconds,
            }
        }
    if isinstance(statement, ByteMatch):
        field_to_match: dict[str, Any]
        if statement.field.kind == "single_header":
            field_to_match = {"singleHeader": {"name": statement.field.name}}
        elif statement.field.kind == "uri_path":
            field_to_match = {"uriPath": {}}
        elif statement.field.kind == "method":
            field_to_match = {"method": {}}
        else:
            field_to_match = {"queryString": {}}
        return {
            "byteMatchStatement": {
                "fieldToMatch": field_to_match,
                "positionalConstraint": statement.constraint,
                # never echo the search string; it is often a secret
                "searchStringLength": len(statement.search),
                "textTransformations": [
                    {"priority": i, "type": t} for i, t in enumerate(statement.transforms)
                ],
            }
        }
    if isinstance(statement, IPSetReference):
        return {"ipSetReferenceStatement": {"name": statement.set_name}}
    if isinstance(statement, Not):
        return {"notStatement": {"statement": export_statement(statement.statement)}}
    if isinstance(statement, And):
        return {"andStatement": {"statements": [export_statement(s) for s in statement.statements]}}
    if isinstance(statement, Or):
        return {"orStatement": {"statements": [export_statement(s) for s in statement.statements]}}
    raise TypeError(f"Unknown statement node: {type(statement).__name__}")
