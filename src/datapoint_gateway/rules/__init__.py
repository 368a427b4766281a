"""Admission rule engine: statement algebra, rate counters, address sets."""

from datapoint_gateway.rules.counter import WindowCounter
from datapoint_gateway.rules.engine import AdmissionRule, RuleEngine
from datapoint_gateway.rules.ipset import AddressSet, StaticAddressSet
from datapoint_gateway.rules.statements import (
    And,
    ByteMatch,
    FieldToMatch,
    IPSetReference,
    Not,
    Or,
    RateBased,
    Statement,
    evaluate_statement,
)

__all__ = [
    "AddressSet",
    "AdmissionRule",
    "And",
    "ByteMatch",
    "FieldToMatch",
    "IPSetReference",
    "Not",
    "Or",
    "RateBased",
    "RuleEngine",
    "Statement",
    "StaticAddressSet",
    "WindowCounter",
    "evaluate_statement",
]
