"""Tests for SQLiteTable."""

import asyncio
from unittest.mock import AsyncMock

import pytest

pytest.importorskip("aiosqlite")

import aiosqlite  # noqa: E402

from datapoint_gateway import ConditionalCheckFailedError, PhysicalKey, StoreUnavailableError  # noqa: E402
from datapoint_gateway.keys import SortRange  # noqa: E402
from datapoint_gateway.stores.sqlite import SQLiteTable  # noqa: E402


def item(name, sort, **attrs):
    return {"PK": f"DataPoint#{name}", "SK": sort, "name": name, "createdAt": sort, **attrs}


def key(name, sort):
    return PhysicalKey(f"DataPoint#{name}", sort)


@pytest.fixture
async def table():
    t = SQLiteTable(":memory:")
    yield t
    await t.close()


async def test_put_and_get(table):
    await table.put(item("temp", "2024-05-01", value={"c": 21.5}))
    assert await table.get(key("temp", "2024-05-01")) == item("temp", "2024-05-01", value={"c": 21.5})
    assert await table.get(key("temp", "2024-05-02")) is None


async def test_conditional_put(table):
    await table.put(item("temp", "2024-05-01", value=1), if_not_exists=True)
    with pytest.raises(ConditionalCheckFailedError):
        await table.put(item("temp", "2024-05-01", value=2), if_not_exists=True)
    await table.put(item("temp", "2024-05-01", value=3))
    assert (await table.get(key("temp", "2024-05-01")))["value"] == 3


async def test_concurrent_conditional_puts_one_winner(table):
    results = await asyncio.gather(
        *[table.put(item("temp", "2024-05-01", value=i), if_not_exists=True) for i in range(10)],
        return_exceptions=True,
    )
    assert results.count(None) == 1
    assert all(isinstance(r, ConditionalCheckFailedError) for r in results if r is not None)


async def test_update_and_delete(table):
    await table.put(item("temp", "2024-05-01", value=1))
    updated = await table.update(key("temp", "2024-05-01"), {"value": 2})
    assert updated["value"] == 2
    assert (await table.get(key("temp", "2024-05-01")))["value"] == 2

    deleted = await table.delete(key("temp", "2024-05-01"))
    assert deleted["value"] == 2
    assert await table.delete(key("temp", "2024-05-01")) is None


async def test_update_and_delete_missing(table):
    with pytest.raises(ConditionalCheckFailedError):
        await table.update(key("temp", "2024-05-01"), {"value": 2})
    with pytest.raises(ConditionalCheckFailedError):
        await table.delete(key("temp", "2024-05-01"), if_exists=True)


async def test_query(table):
    for sort in ["2024-05-03T08:00:00Z", "2024-05-01T08:00:00Z", "2024-05-02T08:00:00Z"]:
        await table.put(item("temp", sort))
    await table.put(item("humidity", "2024-05-02T08:00:00Z"))

    rng = SortRange("DataPoint#temp", "2024-05-02", "2024-05-03\uffff")
    assert [i["SK"] for i in await table.query(rng)] == [
        "2024-05-02T08:00:00Z",
        "2024-05-03T08:00:00Z",
    ]
    desc = await table.query(SortRange("DataPoint#temp", None, None), limit=1, ascending=False)
    assert [i["SK"] for i in desc] == ["2024-05-03T08:00:00Z"]


async def test_scan_pages(table):
    for name in ["c", "a", "b"]:
        await table.put(item(name, "2024-05-01"))

    first = await table.scan(limit=2)
    assert [i["name"] for i in first.items] == ["a", "b"]
    assert first.last_key == key("b", "2024-05-01")

    rest = await table.scan(limit=2, start_after=first.last_key)
    assert [i["name"] for i in rest.items] == ["c"]
    assert rest.last_key is None


async def test_persists_across_connections(tmp_path):
    path = str(tmp_path / "points.db")
    first = SQLiteTable(path)
    await first.put(item("temp", "2024-05-01", value=7))
    await first.close()

    second = SQLiteTable(path)
    try:
        assert (await second.get(key("temp", "2024-05-01")))["value"] == 7
    finally:
        await second.close()


def test_invalid_table_name():
    with pytest.raises(ValueError):
        SQLiteTable(":memory:", table_name="points; DROP TABLE x")


@pytest.fixture
def failing_commit(table, monkeypatch):
    async def install():
        db = await table._connect()
        monkeypatch.setattr(db, "commit", AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error")))

    return install


async def test_failed_update_is_rolled_back(table, failing_commit, monkeypatch):
    await table.put(item("temp", "2024-05-01", value=1))
    await failing_commit()

    with pytest.raises(StoreUnavailableError):
        await table.update(key("temp", "2024-05-01"), {"value": 2})

    monkeypatch.undo()
    assert (await table.get(key("temp", "2024-05-01")))["value"] == 1


async def test_failed_delete_is_rolled_back(table, failing_commit, monkeypatch):
    await table.put(item("temp", "2024-05-01", value=1))
    await failing_commit()

    with pytest.raises(StoreUnavailableError):
        await table.delete(key("temp", "2024-05-01"), if_exists=True)

    monkeypatch.undo()
    assert await table.get(key("temp", "2024-05-01")) is not None
    await table.put(item("temp", "2024-05-02", value=2))
    assert (await table.get(key("temp", "2024-05-02")))["value"] == 2
