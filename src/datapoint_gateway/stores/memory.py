"""InMemoryTable: zero-config, dict-backed table for development and testing."""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING, Any

from datapoint_gateway.exceptions import ConditionalCheckFailedError
from datapoint_gateway.stores.base import Page, Table

if TYPE_CHECKING:
    from datapoint_gateway.keys import PhysicalKey, SortRange


class InMemoryTable(Table):
    """In-memory table keyed by :class:`PhysicalKey`.  Data is lost on process exit.

    A single lock serializes writes so conditional puts behave like a
    compare-and-swap even when many coroutines race on the same key.
    """

    def __init__(self, *, partition_attr: str = "PK", sort_attr: str = "SK") -> None:
        super().__init__(partition_attr=partition_attr, sort_attr=sort_attr)
        self._items: dict[PhysicalKey, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: PhysicalKey) -> dict[str, Any] | None:
        item = self._items.get(key)
        return copy.deepcopy(item) if item is not None else None

    async def put(self, item: dict[str, Any], *, if_not_exists: bool = False) -> None:
        key = self._key_of(item)
        async with self._lock:
            if if_not_exists and key in self._items:
                raise ConditionalCheckFailedError("put", f"item {key} already exists")
            self._items[key] = copy.deepcopy(item)

    async def update(self, key: PhysicalKey, attributes: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            current = self._items.get(key)
            if current is None:
                raise ConditionalCheckFailedError("update", f"item {key} does not exist")
            merged = {**current, **copy.deepcopy(attributes)}
            merged[self.partition_attr] = key.partition
            merged[self.sort_attr] = key.sort
            self._items[key] = merged
            return copy.deepcopy(merged)

    async def delete(self, key: PhysicalKey, *, if_exists: bool = False) -> dict[str, Any] | None:
        async with self._lock:
            if key not in self._items:
                if if_exists:
                    raise ConditionalCheckFailedError("delete", f"item {key} does not exist")
                return None
            return self._items.pop(key)

    async def query(
        self,
        rng: SortRange,
        *,
        limit: int | None = None,
        ascending: bool = True,
    ) -> list[dict[str, Any]]:
        keys = sorted(
            (
                k
                for k in self._items
                if k.partition == rng.partition
                and (rng.lower is None or k.sort >= rng.lower)
                and (rng.upper is None or k.sort <= rng.upper)
            ),
            reverse=not ascending,
        )
        if limit is not None:
            keys = keys[:limit]
        return [copy.deepcopy(self._items[k]) for k in keys]

    async def scan(
        self,
        *,
        limit: int | None = None,
        start_after: PhysicalKey | None = None,
    ) -> Page:
        keys = sorted(k for k in self._items if start_after is None or k > start_after)
        if limit is not None and len(keys) > limit:
            keys = keys[:limit]
            return Page([copy.deepcopy(self._items[k]) for k in keys], last_key=keys[-1])
        return Page([copy.deepcopy(self._items[k]) for k in keys])
