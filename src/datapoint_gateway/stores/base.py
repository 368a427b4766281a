"""Table protocol: the partitioned key-value store the resolvers map onto."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from datapoint_gateway.keys import PhysicalKey

if TYPE_CHECKING:
    from datapoint_gateway.keys import SortRange


@dataclass
class Page:
    """One page of a scan.  ``last_key`` is set when more items may follow."""

    items: list[dict[str, Any]] = field(default_factory=list)
    last_key: PhysicalKey | None = None


class Table(ABC):
    """Abstract base for all table backends.

    Items are ``dict[str, Any]`` blobs.  Every item carries its physical
    key under ``partition_attr`` / ``sort_attr``; the table is agnostic to
    how those were derived.

    Writes are atomic per item.  The conditional flags turn a write into a
    compare-and-swap: when the condition does not hold the backend raises
    :class:`ConditionalCheckFailedError` and changes nothing.  Transient
    backend failures raise :class:`StoreUnavailableError`.
    """

    def __init__(self, *, partition_attr: str, sort_attr: str) -> None:
        self.partition_attr = partition_attr
        self.sort_attr = sort_attr

    def _key_of(self, item: dict[str, Any]) -> PhysicalKey:
        return PhysicalKey(item[self.partition_attr], item[self.sort_attr])

    @abstractmethod
    async def get(self, key: PhysicalKey) -> dict[str, Any] | None:
        """Return the stored item, or ``None`` if not found."""
        ...

    @abstractmethod
    async def put(self, item: dict[str, Any], *, if_not_exists: bool = False) -> None:
        """Create or overwrite an item.  With *if_not_exists*, never overwrite."""
        ...

    @abstractmethod
    async def update(self, key: PhysicalKey, attributes: dict[str, Any]) -> dict[str, Any]:
        """Merge *attributes* into an existing item and return the new item.

        Key attributes cannot be changed.  Fails the condition if the item
        does not exist.
        """
        ...

    @abstractmethod
    async def delete(self, key: PhysicalKey, *, if_exists: bool = False) -> dict[str, Any] | None:
        """Delete an item and return it.  ``None`` if absent (unless *if_exists*)."""
        ...

    @abstractmethod
    async def query(
        self,
        rng: SortRange,
        *,
        limit: int | None = None,
        ascending: bool = True,
    ) -> list[dict[str, Any]]:
        """Items of one partition with sort key inside the inclusive range, in sort order."""
        ...

    @abstractmethod
    async def scan(
        self,
        *,
        limit: int | None = None,
        start_after: PhysicalKey | None = None,
    ) -> Page:
        """Table-wide listing in physical key order, resumable after *start_after*."""
        ...

    async def close(self) -> None:
        """Release backend resources.  No-op by default."""
