"""Resolver specs for the DataPoint operations.

A :class:`ResolverSpec` pairs one ``(operation type, field)`` with a pure
request shape (arguments -> :class:`StoreCommand`) and a pure response
shape (:class:`StoreResult` -> API result).  The specs here map the
DataPoint operation surface onto table operations through a
:class:`KeyStrategy`.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from datapoint_gateway.auth.modes import AuthType
from datapoint_gateway.entity import DataPoint, DateRange, validate_key
from datapoint_gateway.exceptions import (
    AlreadyExistsError,
    GatewayError,
    InvalidArgumentError,
    NotFoundError,
)
from datapoint_gateway.keys import PhysicalKey
from datapoint_gateway.pipeline.commands import StoreCommand, StoreOp, StoreResult

if TYPE_CHECKING:
    from datapoint_gateway.keys import KeyStrategy

OperationType = Literal["Query", "Mutation", "Subscription"]
DeleteMissing = Literal["error", "ignore"]

ON_CREATE_DATA_POINT = "onCreateDataPoint"


@dataclass(frozen=True)
class ResolverSpec:
    """One resolver.  Subscription resolvers have no request shape; they never touch the table.

    Attributes:
        operation_type:  ``"Query"``, ``"Mutation"`` or ``"Subscription"``.
        field_name:      Field on the operation type, e.g. ``"createDataPoint"``.
        request_shape:   Validates arguments and builds the store command.
        response_shape:  Projects the store result onto the API result.
        condition_error: Builds the error raised when a conditional write fails.
        auth_types:      Auth types allowed to invoke this field.  ``None`` = any.
        publishes:       Channel to publish the response on after a successful write.
    """

    operation_type: OperationType
    field_name: str
    request_shape: Callable[[dict[str, Any]], StoreCommand] | None = None
    response_shape: Callable[[StoreResult], Any] | None = None
    condition_error: Callable[[StoreCommand], GatewayError] | None = None
    auth_types: frozenset[AuthType] | None = None
    publishes: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.operation_type}.{self.field_name}"

    def export(self) -> dict[str, Any]:
        return {
            "operation": self.qualified_name,
            "data_source": "NONE" if self.request_shape is None else "TABLE",
            "auth_types": sorted(t.value for t in self.auth_types) if self.auth_types else None,
            "publishes": self.publishes,
        }


# ── inputs ───────────────────────────────────────────────────


class _Input(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class DataPointKeyInput(_Input):
    name: str = Field(min_length=1)
    created_at: str = Field(alias="createdAt", min_length=1)


class DataPointInput(DataPointKeyInput):
    value: Any = None


class ListDataPointsInput(_Input):
    limit: int | None = Field(default=None, ge=1, le=1000)
    next_token: str | None = Field(default=None, alias="nextToken")


class RangeInput(_Input):
    start: str | None = Field(default=None, alias="from")
    end: str | None = Field(default=None, alias="to")


class QueryByNameInput(_Input):
    name: str = Field(min_length=1)
    range: RangeInput = Field(default_factory=RangeInput)
    limit: int | None = Field(default=None, ge=1, le=1000)


class OnCreateInput(_Input):
    name: str | None = None


def parse_args(model: type[_Input], args: Any) -> Any:
    if not isinstance(args, Mapping):
        raise InvalidArgumentError(f"Expected an object of arguments, got {type(args).__name__}")
    try:
        return model.model_validate(dict(args))
    except ValidationError as exc:
        raise InvalidArgumentError(str(exc)) from exc


# ── pagination tokens ────────────────────────────────────────


def encode_token(key: PhysicalKey) -> str:
    raw = json.dumps([key.partition, key.sort]).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_token(token: str) -> PhysicalKey:
    try:
        partition, sort = json.loads(base64.urlsafe_b64decode(token.encode()))
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError) as exc:
        raise InvalidArgumentError("Malformed nextToken") from exc
    if not isinstance(partition, str) or not isinstance(sort, str):
        raise InvalidArgumentError("Malformed nextToken")
    return PhysicalKey(partition, sort)


# ── DataPoint resolvers ──────────────────────────────────────


class DataPointResolvers:
    """Builds the resolver specs for the DataPoint entity.

    Parameters:
        strategy:                 Key strategy of the deployment.
        reject_duplicate_creates: Use a conditional put so a create never
                                  overwrites.  When ``False``, create upserts.
        delete_missing:           ``"error"`` raises :class:`NotFoundError`
                                  for a missing key; ``"ignore"`` returns ``None``.
        auth_types:               Optional ``{"Mutation.createDataPoint": [...]}``
                                  restrictions.
    """

    def __init__(
        self,
        strategy: KeyStrategy,
        *,
        reject_duplicate_creates: bool = True,
        delete_missing: DeleteMissing = "error",
        auth_types: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        if delete_missing not in ("error", "ignore"):
            raise ValueError(f"delete_missing must be 'error' or 'ignore', not {delete_missing!r}")
        self.strategy = strategy
        self.reject_duplicate_creates = reject_duplicate_creates
        self.delete_missing: DeleteMissing = delete_missing
        self._auth_types = {
            name: frozenset(AuthType(t) for t in types) for name, types in (auth_types or {}).items()
        }

    def _spec(self, operation_type: OperationType, field_name: str, **kwargs: Any) -> ResolverSpec:
        return ResolverSpec(
            operation_type=operation_type,
            field_name=field_name,
            auth_types=self._auth_types.get(f"{operation_type}.{field_name}"),
            **kwargs,
        )

    def specs(self) -> list[ResolverSpec]:
        return [
            self._spec(
                "Mutation",
                "createDataPoint",
                request_shape=self.create_request,
                response_shape=self.item_response,
                condition_error=self._already_exists,
                publishes=ON_CREATE_DATA_POINT,
            ),
            self._spec(
                "Mutation",
                "updateDataPoint",
                request_shape=self.update_request,
                response_shape=self.item_response,
                condition_error=self._not_found,
            ),
            self._spec(
                "Mutation",
                "deleteDataPoint",
                request_shape=self.delete_request,
                response_shape=self.item_response,
                condition_error=self._not_found,
            ),
            self._spec(
                "Query",
                "getDataPoint",
                request_shape=self.get_request,
                response_shape=self.item_response,
            ),
            self._spec(
                "Query",
                "listDataPoints",
                request_shape=self.list_request,
                response_shape=self.page_response,
            ),
            self._spec(
                "Query",
                "queryDataPointsByNameAndDateTime",
                request_shape=self.query_request,
                response_shape=self.items_response,
            ),
            self._spec("Subscription", ON_CREATE_DATA_POINT),
        ]

    # ── request shapes ───────────────────────────────────────

    def create_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(DataPointInput, args.get("input", args))
        point = DataPoint(*validate_key(data.name, data.created_at), value=data.value)
        return StoreCommand(
            StoreOp.PUT,
            key=self.strategy.derive_key(point.name, point.created_at),
            item=self.strategy.to_item(point),
            conditional=self.reject_duplicate_creates,
        )

    def update_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(DataPointInput, args.get("input", args))
        attributes = {"value": data.value} if "value" in data.model_fields_set else {}
        return StoreCommand(
            StoreOp.UPDATE,
            key=self.strategy.derive_key(data.name, data.created_at),
            attributes=attributes,
            conditional=True,
        )

    def delete_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(DataPointKeyInput, args.get("input", args))
        return StoreCommand(
            StoreOp.DELETE,
            key=self.strategy.derive_key(data.name, data.created_at),
            conditional=self.delete_missing == "error",
        )

    def get_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(DataPointKeyInput, args)
        return StoreCommand(StoreOp.GET, key=self.strategy.derive_key(data.name, data.created_at))

    def list_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(ListDataPointsInput, args)
        start_after = decode_token(data.next_token) if data.next_token else None
        return StoreCommand(StoreOp.SCAN, limit=data.limit, start_after=start_after)

    def query_request(self, args: Mapping[str, Any]) -> StoreCommand:
        data = parse_args(QueryByNameInput, args)
        bounds = DateRange(data.range.start, data.range.end)
        return StoreCommand(
            StoreOp.QUERY,
            range=self.strategy.range_for(data.name, bounds),
            limit=data.limit,
        )

    # ── response shapes ──────────────────────────────────────

    def item_response(self, result: StoreResult) -> dict[str, Any] | None:
        if result.item is None:
            return None
        return self.strategy.from_item(result.item).to_dict()

    def items_response(self, result: StoreResult) -> list[dict[str, Any]]:
        return [self.strategy.from_item(item).to_dict() for item in result.items]

    def page_response(self, result: StoreResult) -> dict[str, Any]:
        return {
            "items": self.items_response(result),
            "nextToken": encode_token(result.last_key) if result.last_key else None,
        }

    # ── condition failures ───────────────────────────────────

    def _logical_key(self, command: StoreCommand) -> tuple[str, str]:
        if command.key is None:
            raise ValueError(f"{command.op.value} command has no key")
        return self.strategy.parse_key(command.key)

    def _already_exists(self, command: StoreCommand) -> GatewayError:
        return AlreadyExistsError(*self._logical_key(command))

    def _not_found(self, command: StoreCommand) -> GatewayError:
        return NotFoundError(*self._logical_key(command))
