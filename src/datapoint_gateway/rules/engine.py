"""RuleEngine: prioritized admission rules with a default action."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from datapoint_gateway._internal.clock import Clock, SystemClock
from datapoint_gateway._internal.logging import get_logger
from datapoint_gateway.exceptions import RuleConfigError
from datapoint_gateway.result import Action, Decision
from datapoint_gateway.rules.counter import WindowCounter, WindowMode
from datapoint_gateway.rules.statements import (
    EvaluationScope,
    RateBased,
    Statement,
    aggregate_value,
    evaluate_statement,
    export_statement,
    iter_rate_statements,
    validate_statement,
)

if TYPE_CHECKING:
    from datapoint_gateway.context import RequestContext
    from datapoint_gateway.rules.ipset import AddressSet

logger = get_logger("rules")


@dataclass(frozen=True)
class AdmissionRule:
    """One named statement with a priority and an action.  Lower priority runs first."""

    name: str
    priority: int
    action: Action
    statement: Statement

    def export(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "action": self.action.value,
            "statement": export_statement(self.statement),
        }


class RuleEngine:
    """Evaluates admission rules in ascending priority.

    * The first rule whose statement is true decides; later rules are not
      evaluated.
    * When nothing matches, ``default_action`` applies.
    * Every rate-based counter is bumped for the request *before* matching,
      so counts reflect all traffic, blocked or not.
    * Any internal error during evaluation yields **block**.

    The rule set is validated on construction; a malformed tree raises
    :class:`RuleConfigError` here rather than at request time.

    Parameters:
        rules:          Admission rules, in any order.
        default_action: Action when no rule matches.
        address_sets:   Named sets that ``IPSetReference`` nodes look up.
        window_mode:    ``"sliding"`` (default) or ``"fixed"`` rate windows.
        clock:          Injectable clock for testing.
    """

    def __init__(
        self,
        rules: Iterable[AdmissionRule],
        *,
        default_action: Action = Action.ALLOW,
        address_sets: Mapping[str, AddressSet] | None = None,
        window_mode: WindowMode = "sliding",
        clock: Clock | None = None,
    ) -> None:
        self._address_sets: dict[str, AddressSet] = dict(address_sets or {})
        self._clock = clock or SystemClock()
        self.default_action = Action(default_action)
        self.window_mode: WindowMode = window_mode
        self._rules = self._validate(list(rules))
        self._counters: dict[RateBased, WindowCounter] = {}
        for rule in self._rules:
            for node in iter_rate_statements(rule.statement):
                if node not in self._counters:
                    self._counters[node] = WindowCounter(
                        window_seconds=node.window_seconds,
                        mode=window_mode,
                        capacity=node.limit + 1,
                        clock=self._clock,
                    )

    def _validate(self, rules: list[AdmissionRule]) -> list[AdmissionRule]:
        names: set[str] = set()
        priorities: dict[int, str] = {}
        for rule in rules:
            if not rule.name:
                raise RuleConfigError("<unnamed>", "every rule needs a name")
            if rule.name in names:
                raise RuleConfigError(rule.name, "duplicate rule name")
            if rule.priority in priorities:
                raise RuleConfigError(
                    rule.name, f"priority {rule.priority} already used by '{priorities[rule.priority]}'"
                )
            if not isinstance(rule.action, Action):
                raise RuleConfigError(rule.name, f"unknown action {rule.action!r}")
            validate_statement(rule.statement, rule.name, self._address_sets)
            names.add(rule.name)
            priorities[rule.priority] = rule.name
        return sorted(rules, key=lambda r: r.priority)

    # ── evaluation ───────────────────────────────────────────

    async def evaluate(self, context: RequestContext) -> Decision:
        """Return the admission decision for *context*."""
        try:
            scope = EvaluationScope(context=context, address_sets=self._address_sets)
            for node, counter in self._counters.items():
                scope.rate_counts[node] = counter.record(aggregate_value(node, context))

            for rule in self._rules:
                if evaluate_statement(rule.statement, scope):
                    decision = Decision(rule.action, rule.name, f"Matched rule '{rule.name}'")
                    break
            else:
                decision = Decision(self.default_action, None, "No rule matched")
        except Exception:
            logger.exception("Admission evaluation failed", source_ip=context.source_ip)
            return Decision.block(None, "Admission evaluation failed")

        if decision.allowed:
            logger.debug("Request admitted", source_ip=context.source_ip, rule=decision.rule_name)
        else:
            logger.info("Request blocked", source_ip=context.source_ip, rule=decision.rule_name)
        return decision

    # ── introspection ────────────────────────────────────────

    @property
    def rules(self) -> list[AdmissionRule]:
        return list(self._rules)

    def get_rule(self, name: str) -> AdmissionRule | None:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def purge_counters(self) -> int:
        """Evict expired rate-counter entries.  Returns how many keys were dropped."""
        return sum(counter.purge() for counter in self._counters.values())

    def export(self) -> dict[str, Any]:
        return {
            "default_action": self.default_action.value,
            "window_mode": self.window_mode,
            "rules": [r.export() for r in self._rules],
            "ip_sets": sorted(self._address_sets),
        }
