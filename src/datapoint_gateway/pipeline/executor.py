"""ResolverPipeline: runs resolver specs against the table."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from datapoint_gateway._internal.logging import get_logger
from datapoint_gateway.exceptions import (
    ConditionalCheckFailedError,
    InvalidArgumentError,
    StoreUnavailableError,
)
from datapoint_gateway.pipeline.commands import run_command
from datapoint_gateway.pipeline.resolvers import OnCreateInput, parse_args

if TYPE_CHECKING:
    from datapoint_gateway.pipeline.resolvers import ResolverSpec
    from datapoint_gateway.stores.base import Table
    from datapoint_gateway.subscriptions.fanout import Subscription, SubscriptionHub

logger = get_logger("pipeline")


class ResolverPipeline:
    """Executes one resolver per request.

    For a table-backed resolver:

    1. Shape the request into a :class:`StoreCommand` (validation happens here).
    2. Run it against the table.  A failed condition becomes the spec's
       typed error; :class:`StoreUnavailableError` propagates unchanged.
    3. Shape the response.
    4. If the spec publishes, hand the response to the fan-out.  This only
       happens after the write succeeded; a publish failure is logged and
       never reaches the caller.

    Parameters:
        table: Table backend.
        specs: Resolver specs, one per ``(operation type, field)``.
        hub:   Subscription fan-out.  Publishing is skipped when omitted.
    """

    def __init__(
        self,
        table: Table,
        specs: Iterable[ResolverSpec],
        *,
        hub: SubscriptionHub | None = None,
    ) -> None:
        self._table = table
        self._hub = hub
        self._specs: dict[tuple[str, str], ResolverSpec] = {}
        for spec in specs:
            key = (spec.operation_type, spec.field_name)
            if key in self._specs:
                raise ValueError(f"Duplicate resolver for {spec.qualified_name}")
            self._specs[key] = spec

    @property
    def table(self) -> Table:
        return self._table

    def spec_for(self, operation_type: str, field_name: str) -> ResolverSpec:
        try:
            return self._specs[(operation_type, field_name)]
        except KeyError:
            raise InvalidArgumentError(f"Unknown operation {operation_type}.{field_name}") from None

    def list_specs(self) -> list[ResolverSpec]:
        return list(self._specs.values())

    async def resolve(self, spec: ResolverSpec, args: Mapping[str, Any]) -> Any:
        """Run a table-backed resolver and return its API result."""
        if spec.request_shape is None or spec.response_shape is None:
            raise InvalidArgumentError(f"{spec.qualified_name} is not a table-backed operation")

        command = spec.request_shape(args)
        try:
            result = await run_command(self._table, command)
        except ConditionalCheckFailedError as exc:
            if spec.condition_error is None:
                raise
            raise spec.condition_error(command) from exc
        except StoreUnavailableError as exc:
            logger.warning(
                "Store unavailable",
                operation=spec.qualified_name,
                store_operation=exc.operation,
                error=str(exc),
            )
            raise

        response = spec.response_shape(result)
        if spec.publishes and response is not None:
            self._publish(spec.publishes, response)
        return response

    def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        if self._hub is None:
            return
        try:
            delivered = self._hub.publish(channel, payload)
        except Exception:
            logger.warning("Publish failed", channel=channel, exc_info=True)
            return
        logger.debug("Published event", channel=channel, listeners=delivered)

    def subscribe(self, spec: ResolverSpec, args: Mapping[str, Any]) -> Subscription:
        """Attach a listener to the channel named by a subscription resolver."""
        if spec.operation_type != "Subscription":
            raise InvalidArgumentError(f"{spec.qualified_name} is not a subscription")
        if self._hub is None:
            raise InvalidArgumentError("Subscriptions are not enabled")
        data = parse_args(OnCreateInput, args)
        filters = {"name": data.name} if data.name is not None else None
        return self._hub.subscribe(spec.field_name, filters=filters)
