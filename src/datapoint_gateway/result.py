"""Decision: the outcome of an admission evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Action(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


@dataclass(frozen=True)
class Decision:
    """Immutable verdict returned by :meth:`RuleEngine.evaluate`.

    Attributes:
        action:    ``Action.ALLOW`` or ``Action.BLOCK``.
        rule_name: Name of the rule that matched, or ``None`` when the
                   default action applied (or evaluation failed).
        reason:    Human-readable explanation.
    """

    action: Action
    rule_name: str | None = None
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.action is Action.ALLOW

    # ── Factory helpers ──────────────────────────────────────

    @staticmethod
    def allow(rule_name: str | None = None, reason: str = "") -> Decision:
        return Decision(action=Action.ALLOW, rule_name=rule_name, reason=reason)

    @staticmethod
    def block(rule_name: str | None = None, reason: str = "") -> Decision:
        return Decision(action=Action.BLOCK, rule_name=rule_name, reason=reason)

    def export(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "rule_name": self.rule_name,
            "reason": self.reason,
        }
