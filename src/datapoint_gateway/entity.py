"""DataPoint: the single logical entity served by the gateway."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from datapoint_gateway.exceptions import InvalidArgumentError

# Sort keys compare as text, so only one fixed-width UTC form is stored.
_TIMESTAMP = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}Z")
_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def _is_calendar_value(value: str, pattern: re.Pattern[str]) -> bool:
    if not pattern.fullmatch(value):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def validate_key(name: Any, created_at: Any) -> tuple[str, str]:
    """Check a logical ``(name, createdAt)`` pair and return it unchanged.

    ``createdAt`` must be a UTC timestamp with second precision, e.g.
    ``2024-05-01T10:00:00Z``.  Offsets, fractional seconds, date-only and
    basic-format values are rejected so that text order is time order.
    """
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError("'name' must be a non-empty string")
    if not isinstance(created_at, str) or not _is_calendar_value(created_at, _TIMESTAMP):
        raise InvalidArgumentError(
            f"'createdAt' must be a UTC timestamp like 2024-05-01T10:00:00Z, got {created_at!r}"
        )
    return name, created_at


@dataclass(frozen=True)
class DataPoint:
    """A named, timestamped value.

    Identity is ``(name, created_at)``.  ``value`` is an open payload: any
    JSON-serializable scalar or object.
    """

    name: str
    created_at: str
    value: Any = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "createdAt": self.created_at, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataPoint:
        name, created_at = validate_key(data.get("name"), data.get("createdAt"))
        return cls(name=name, created_at=created_at, value=data.get("value"))


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``createdAt`` bounds for a range query.  Either side may be open.

    A bound is a date (``2024-05-01``) or a full UTC timestamp in the
    ``createdAt`` form.  A date ``end`` covers the whole day.
    """

    start: str | None = None
    end: str | None = None

    def __post_init__(self) -> None:
        for label, bound in (("from", self.start), ("to", self.end)):
            if bound is None:
                continue
            if not isinstance(bound, str) or not (
                _is_calendar_value(bound, _DATE) or _is_calendar_value(bound, _TIMESTAMP)
            ):
                raise InvalidArgumentError(
                    f"Range bound '{label}' must be a date or a UTC timestamp, got {bound!r}"
                )
        if (
            self.start is not None
            and self.end is not None
            and self.start > self.end
            and not self.start.startswith(self.end)
        ):
            raise InvalidArgumentError(
                f"Range start {self.start!r} is after range end {self.end!r}"
            )
