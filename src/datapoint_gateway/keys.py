"""Key strategies: mapping logical ``(name, createdAt)`` onto physical keys.

A strategy is fixed per deployment.  Switching strategies changes the
physical layout of every item and needs a data migration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from datapoint_gateway.entity import DataPoint, DateRange, validate_key
from datapoint_gateway.exceptions import InvalidArgumentError

# Appended to an upper range bound so that sort keys it prefixes still match.
_PREFIX_CEILING = "\uffff"


@dataclass(frozen=True, order=True)
class PhysicalKey:
    """Partition + sort key as stored in the table."""

    partition: str
    sort: str


@dataclass(frozen=True)
class SortRange:
    """Physical range query: one partition, inclusive sort bounds."""

    partition: str
    lower: str | None
    upper: str | None


class KeyStrategy(ABC):
    """Base class for key derivation.

    Subclasses define the physical attribute names and how logical keys are
    encoded into them.  ``parse_key(derive_key(n, c)) == (n, c)`` must hold
    for every valid pair.
    """

    strategy_type: ClassVar[str] = "base"
    partition_attr: ClassVar[str]
    sort_attr: ClassVar[str]

    @abstractmethod
    def derive_key(self, name: str, created_at: str) -> PhysicalKey: ...

    @abstractmethod
    def parse_key(self, key: PhysicalKey) -> tuple[str, str]: ...

    @abstractmethod
    def partition_for(self, name: str) -> str: ...

    def to_item(self, point: DataPoint) -> dict[str, Any]:
        """Raw table item for *point*, physical key attributes included."""
        key = self.derive_key(point.name, point.created_at)
        item = point.to_dict()
        item[self.partition_attr] = key.partition
        item[self.sort_attr] = key.sort
        return item

    def from_item(self, item: dict[str, Any]) -> DataPoint:
        """Project a raw item back onto the public entity.  Never leaks physical keys."""
        name, created_at = self.parse_key(self.key_of_item(item))
        return DataPoint(name=name, created_at=created_at, value=item.get("value"))

    def key_of_item(self, item: dict[str, Any]) -> PhysicalKey:
        try:
            return PhysicalKey(item[self.partition_attr], item[self.sort_attr])
        except KeyError as exc:
            raise InvalidArgumentError(f"Item is missing key attribute {exc.args[0]!r}") from exc

    def range_for(self, name: str, bounds: DateRange) -> SortRange:
        upper = None if bounds.end is None else bounds.end + _PREFIX_CEILING
        return SortRange(self.partition_for(name), bounds.start, upper)

    def export(self) -> dict[str, Any]:
        return {
            "type": self.strategy_type,
            "partition_attr": self.partition_attr,
            "sort_attr": self.sort_attr,
        }


class CompositeStringKey(KeyStrategy):
    """``PK = "<entity_type>#<name>"``, ``SK = "<createdAt>"`` for shared tables."""

    strategy_type = "composite"
    partition_attr = "PK"
    sort_attr = "SK"

    def __init__(self, entity_type: str = "DataPoint", separator: str = "#") -> None:
        if not entity_type or separator in entity_type:
            raise InvalidArgumentError(
                f"entity_type must be non-empty and must not contain {separator!r}"
            )
        self.entity_type = entity_type
        self.separator = separator
        self._prefix = f"{entity_type}{separator}"

    def partition_for(self, name: str) -> str:
        return f"{self._prefix}{name}"

    def derive_key(self, name: str, created_at: str) -> PhysicalKey:
        name, created_at = validate_key(name, created_at)
        return PhysicalKey(self.partition_for(name), created_at)

    def parse_key(self, key: PhysicalKey) -> tuple[str, str]:
        if not key.partition.startswith(self._prefix):
            raise InvalidArgumentError(
                f"Partition key {key.partition!r} does not belong to {self.entity_type!r}"
            )
        return validate_key(key.partition[len(self._prefix) :], key.sort)

    def export(self) -> dict[str, Any]:
        data = super().export()
        data["entity_type"] = self.entity_type
        data["separator"] = self.separator
        return data


class DirectKey(KeyStrategy):
    """Uses ``name`` / ``createdAt`` verbatim.  Needs a dedicated table."""

    strategy_type = "direct"
    partition_attr = "name"
    sort_attr = "createdAt"

    def partition_for(self, name: str) -> str:
        return name

    def derive_key(self, name: str, created_at: str) -> PhysicalKey:
        return PhysicalKey(*validate_key(name, created_at))

    def parse_key(self, key: PhysicalKey) -> tuple[str, str]:
        return validate_key(key.partition, key.sort)


KEY_STRATEGIES: dict[str, type[KeyStrategy]] = {
    CompositeStringKey.strategy_type: CompositeStringKey,
    DirectKey.strategy_type: DirectKey,
}
