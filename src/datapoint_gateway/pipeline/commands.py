"""Store commands: what a resolver asks the table to do, and what came back."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from datapoint_gateway.keys import PhysicalKey, SortRange
    from datapoint_gateway.stores.base import Table


T = TypeVar("T")


class StoreOp(str, Enum):
    GET = "GetItem"
    PUT = "PutItem"
    UPDATE = "UpdateItem"
    DELETE = "DeleteItem"
    QUERY = "Query"
    SCAN = "Scan"


@dataclass(frozen=True)
class StoreCommand:
    """A single table operation.

    ``conditional`` turns writes into compare-and-swap: a put must not
    overwrite, an update or delete must find the item.
    """

    op: StoreOp
    key: PhysicalKey | None = None
    item: dict[str, Any] | None = None
    attributes: dict[str, Any] | None = None
    range: SortRange | None = None
    conditional: bool = False
    limit: int | None = None
    start_after: PhysicalKey | None = None


@dataclass
class StoreResult:
    command: StoreCommand
    item: dict[str, Any] | None = None
    items: list[dict[str, Any]] = field(default_factory=list)
    last_key: PhysicalKey | None = None


def _required(value: T | None, command: StoreCommand) -> T:
    if value is None:
        raise ValueError(f"{command.op.value} command is incomplete")
    return value


async def run_command(table: Table, command: StoreCommand) -> StoreResult:
    """Dispatch *command* to the matching table call."""
    if command.op is StoreOp.GET:
        return StoreResult(command, item=await table.get(_required(command.key, command)))

    if command.op is StoreOp.PUT:
        await table.put(_required(command.item, command), if_not_exists=command.conditional)
        return StoreResult(command, item=command.item)

    if command.op is StoreOp.UPDATE:
        item = await table.update(_required(command.key, command), command.attributes or {})
        return StoreResult(command, item=item)

    if command.op is StoreOp.DELETE:
        item = await table.delete(_required(command.key, command), if_exists=command.conditional)
        return StoreResult(command, item=item)

    if command.op is StoreOp.QUERY:
        items = await table.query(_required(command.range, command), limit=command.limit)
        return StoreResult(command, items=items)

    if command.op is StoreOp.SCAN:
        page = await table.scan(limit=command.limit, start_after=command.start_after)
        return StoreResult(command, items=page.items, last_key=page.last_key)

    raise ValueError(f"Unsupported store operation: {command.op!r}")
