"""SQLiteTable: durable, single-file table backend using aiosqlite."""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING, Any

try:
    import aiosqlite
except ImportError as exc:
    raise ImportError(
        "SQLiteTable requires the 'aiosqlite' package. "
        "Install it with: pip install datapoint-gateway[sqlite]"
    ) from exc

from datapoint_gateway.exceptions import ConditionalCheckFailedError, StoreUnavailableError
from datapoint_gateway.stores.base import Page, Table

if TYPE_CHECKING:
    from datapoint_gateway.keys import PhysicalKey, SortRange

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    partition TEXT NOT NULL,
    sort      TEXT NOT NULL,
    item      TEXT NOT NULL,
    PRIMARY KEY (partition, sort)
)
"""


class SQLiteTable(Table):
    """Persistent table backed by a single SQLite file.

    Parameters:
        db_path:        Path to the SQLite database file.  Use ``":memory:"``
                        for an in-memory database (useful for testing).
        table_name:     SQL table holding the items.
        partition_attr: Item attribute holding the partition key.
        sort_attr:      Item attribute holding the sort key.
    """

    def __init__(
        self,
        db_path: str = "datapoints.db",
        *,
        table_name: str = "datapoints",
        partition_attr: str = "PK",
        sort_attr: str = "SK",
    ) -> None:
        super().__init__(partition_attr=partition_attr, sort_attr=sort_attr)
        if not table_name.isidentifier():
            raise ValueError(f"Invalid table name: {table_name!r}")
        self._db_path = db_path
        self._table = table_name
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

    async def _connect(self) -> aiosqlite.Connection:
        if self._db is not None:
            return self._db
        async with self._connect_lock:
            if self._db is None:
                try:
                    db = await aiosqlite.connect(self._db_path)
                    await db.execute(_CREATE_TABLE.format(table=self._table))
                    await db.commit()
                except aiosqlite.Error as exc:
                    raise StoreUnavailableError("connect", str(exc)) from exc
                self._db = db
        return self._db

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        with contextlib.suppress(aiosqlite.Error):
            await db.rollback()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _fetch(self, db: aiosqlite.Connection, key: PhysicalKey) -> dict[str, Any] | None:
        cursor = await db.execute(
            f"SELECT item FROM {self._table} WHERE partition = ? AND sort = ?",
            (key.partition, key.sort),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        result: dict[str, Any] = json.loads(row[0])
        return result

    # ── Table protocol ───────────────────────────────────────

    async def get(self, key: PhysicalKey) -> dict[str, Any] | None:
        db = await self._connect()
        try:
            return await self._fetch(db, key)
        except aiosqlite.Error as exc:
            raise StoreUnavailableError("get", str(exc)) from exc

    async def put(self, item: dict[str, Any], *, if_not_exists: bool = False) -> None:
        key = self._key_of(item)
        verb = "INSERT" if if_not_exists else "INSERT OR REPLACE"
        db = await self._connect()
        async with self._lock:
            try:
                await db.execute(
                    f"{verb} INTO {self._table} (partition, sort, item) VALUES (?, ?, ?)",
                    (key.partition, key.sort, json.dumps(item)),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                await db.rollback()
                raise ConditionalCheckFailedError("put", f"item {key} already exists") from exc
            except aiosqlite.Error as exc:
                await self._rollback(db)
                raise StoreUnavailableError("put", str(exc)) from exc

    async def update(self, key: PhysicalKey, attributes: dict[str, Any]) -> dict[str, Any]:
        db = await self._connect()
        async with self._lock:
            try:
                current = await self._fetch(db, key)
                if current is None:
                    raise ConditionalCheckFailedError("update", f"item {key} does not exist")
                merged = {**current, **attributes}
                merged[self.partition_attr] = key.partition
                merged[self.sort_attr] = key.sort
                await db.execute(
                    f"UPDATE {self._table} SET item = ? WHERE partition = ? AND sort = ?",
                    (json.dumps(merged), key.partition, key.sort),
                )
                await db.commit()
                return merged
            except aiosqlite.Error as exc:
                await self._rollback(db)
                raise StoreUnavailableError("update", str(exc)) from exc

    async def delete(self, key: PhysicalKey, *, if_exists: bool = False) -> dict[str, Any] | None:
        db = await self._connect()
        async with self._lock:
            try:
                current = await self._fetch(db, key)
                if current is None:
                    if if_exists:
                        raise ConditionalCheckFailedError("delete", f"item {key} does not exist")
                    return None
                await db.execute(
                    f"DELETE FROM {self._table} WHERE partition = ? AND sort = ?",
                    (key.partition, key.sort),
                )
                await db.commit()
                return current
            except aiosqlite.Error as exc:
                await self._rollback(db)
                raise StoreUnavailableError("delete", str(exc)) from exc

    async def query(
        self,
        rng: SortRange,
        *,
        limit: int | None = None,
        ascending: bool = True,
    ) -> list[dict[str, Any]]:
        clauses = ["partition = ?"]
        params: list[Any] = [rng.partition]
        if rng.lower is not None:
            clauses.append("sort >= ?")
            params.append(rng.lower)
        if rng.upper is not None:
            clauses.append("sort <= ?")
            params.append(rng.upper)
        sql = (
            f"SELECT item FROM {self._table} WHERE {' AND '.join(clauses)} "
            f"ORDER BY sort {'ASC' if ascending else 'DESC'}"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreUnavailableError("query", str(exc)) from exc
        return [json.loads(row[0]) for row in rows]

    async def scan(
        self,
        *,
        limit: int | None = None,
        start_after: PhysicalKey | None = None,
    ) -> Page:
        sql = f"SELECT partition, sort, item FROM {self._table}"
        params: list[Any] = []
        if start_after is not None:
            sql += " WHERE partition > ? OR (partition = ? AND sort > ?)"
            params.extend([start_after.partition, start_after.partition, start_after.sort])
        sql += " ORDER BY partition, sort"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit + 1)

        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StoreUnavailableError("scan", str(exc)) from exc

        if limit is not None and len(rows) > limit:
            rows = rows[:limit]
            last = self._key_of(json.loads(rows[-1][2]))
            return Page([json.loads(r[2]) for r in rows], last_key=last)
        return Page([json.loads(r[2]) for r in rows])
