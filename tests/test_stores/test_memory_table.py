"""Tests for InMemoryTable."""

import asyncio

import pytest

from datapoint_gateway import ConditionalCheckFailedError, PhysicalKey
from datapoint_gateway.keys import SortRange


def item(name, sort, **attrs):
    return {"PK": f"DataPoint#{name}", "SK": sort, "name": name, "createdAt": sort, **attrs}


def key(name, sort):
    return PhysicalKey(f"DataPoint#{name}", sort)


async def test_get_nonexistent(table):
    assert await table.get(key("temp", "2024-05-01")) is None


async def test_put_and_get(table):
    await table.put(item("temp", "2024-05-01", value=1))
    assert await table.get(key("temp", "2024-05-01")) == item("temp", "2024-05-01", value=1)


async def test_put_overwrites(table):
    await table.put(item("temp", "2024-05-01", value=1))
    await table.put(item("temp", "2024-05-01", value=2))
    assert (await table.get(key("temp", "2024-05-01")))["value"] == 2


async def test_conditional_put_never_overwrites(table):
    await table.put(item("temp", "2024-05-01", value=1), if_not_exists=True)
    with pytest.raises(ConditionalCheckFailedError):
        await table.put(item("temp", "2024-05-01", value=2), if_not_exists=True)
    assert (await table.get(key("temp", "2024-05-01")))["value"] == 1


async def test_concurrent_conditional_puts_one_winner(table):
    results = await asyncio.gather(
        *[table.put(item("temp", "2024-05-01", value=i), if_not_exists=True) for i in range(20)],
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, ConditionalCheckFailedError)]
    assert len(failures) == 19
    assert results.count(None) == 1


async def test_returned_items_are_copies(table):
    await table.put(item("temp", "2024-05-01", value={"c": 1}))
    got = await table.get(key("temp", "2024-05-01"))
    got["value"]["c"] = 99
    assert (await table.get(key("temp", "2024-05-01")))["value"] == {"c": 1}


async def test_update_merges(table):
    await table.put(item("temp", "2024-05-01", value=1, unit="C"))
    updated = await table.update(key("temp", "2024-05-01"), {"value": 2})
    assert updated["value"] == 2
    assert updated["unit"] == "C"


async def test_update_cannot_move_key(table):
    await table.put(item("temp", "2024-05-01", value=1))
    updated = await table.update(key("temp", "2024-05-01"), {"PK": "DataPoint#other"})
    assert updated["PK"] == "DataPoint#temp"


async def test_update_missing(table):
    with pytest.raises(ConditionalCheckFailedError):
        await table.update(key("temp", "2024-05-01"), {"value": 2})


async def test_delete_returns_item(table):
    await table.put(item("temp", "2024-05-01", value=1))
    deleted = await table.delete(key("temp", "2024-05-01"))
    assert deleted["value"] == 1
    assert await table.get(key("temp", "2024-05-01")) is None


async def test_delete_missing(table):
    assert await table.delete(key("temp", "2024-05-01")) is None
    with pytest.raises(ConditionalCheckFailedError):
        await table.delete(key("temp", "2024-05-01"), if_exists=True)


async def test_query_range_in_sort_order(table):
    for sort in ["2024-05-03", "2024-05-01", "2024-05-02", "2024-05-04"]:
        await table.put(item("temp", sort))
    await table.put(item("humidity", "2024-05-02"))

    rng = SortRange("DataPoint#temp", "2024-05-02", "2024-05-03")
    assert [i["SK"] for i in await table.query(rng)] == ["2024-05-02", "2024-05-03"]

    everything = SortRange("DataPoint#temp", None, None)
    assert [i["SK"] for i in await table.query(everything)] == [
        "2024-05-01",
        "2024-05-02",
        "2024-05-03",
        "2024-05-04",
    ]
    assert [i["SK"] for i in await table.query(everything, limit=2, ascending=False)] == [
        "2024-05-04",
        "2024-05-03",
    ]


async def test_query_empty_partition(table):
    assert await table.query(SortRange("DataPoint#none", None, None)) == []


async def test_scan_pages(table):
    for name in ["a", "b", "c"]:
        await table.put(item(name, "2024-05-01"))

    first = await table.scan(limit=2)
    assert [i["name"] for i in first.items] == ["a", "b"]
    assert first.last_key == key("b", "2024-05-01")

    second = await table.scan(limit=2, start_after=first.last_key)
    assert [i["name"] for i in second.items] == ["c"]
    assert second.last_key is None


async def test_scan_exact_page_has_no_last_key(table):
    for name in ["a", "b"]:
        await table.put(item(name, "2024-05-01"))
    page = await table.scan(limit=2)
    assert len(page.items) == 2
    assert page.last_key is None
