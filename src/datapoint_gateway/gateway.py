"""DataPointGateway: the central orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from datapoint_gateway.exceptions import AdmissionBlockedError, InvalidArgumentError
from datapoint_gateway.pipeline.resolvers import ON_CREATE_DATA_POINT

if TYPE_CHECKING:
    from datapoint_gateway.auth.resolver import AuthorizationResolver
    from datapoint_gateway.context import RequestContext
    from datapoint_gateway.pipeline.executor import ResolverPipeline
    from datapoint_gateway.result import Decision
    from datapoint_gateway.rules.engine import RuleEngine
    from datapoint_gateway.subscriptions.fanout import Subscription


class DataPointGateway:
    """Gates every operation behind admission and authorization.

    Per request, in order, each step short-circuiting on failure:

    1. The rule engine decides allow/block.  A block raises
       :class:`AdmissionBlockedError` before anything else runs.
    2. The authorization resolver verifies the credential under the
       governing auth mode and yields a principal.
    3. The resolver pipeline executes the operation against the table.

    Parameters:
        engine:   Admission rule engine.
        auth:     Authorization resolver.
        pipeline: Resolver pipeline.
    """

    def __init__(
        self,
        *,
        engine: RuleEngine,
        auth: AuthorizationResolver,
        pipeline: ResolverPipeline,
    ) -> None:
        self._engine = engine
        self._auth = auth
        self._pipeline = pipeline

    # ── gating ───────────────────────────────────────────────

    async def admit(self, context: RequestContext) -> Decision:
        """Run admission only.  Raises :class:`AdmissionBlockedError` on block."""
        decision = await self._engine.evaluate(context)
        context.metadata["admission"] = decision.export()
        if not decision.allowed:
            raise AdmissionBlockedError(decision)
        return decision

    async def execute(
        self,
        context: RequestContext,
        operation_type: str,
        field_name: str,
        args: dict[str, Any] | None = None,
    ) -> Any:
        """Admit, authorize and resolve one query or mutation."""
        await self.admit(context)
        spec = self._pipeline.spec_for(operation_type, field_name)
        if spec.operation_type == "Subscription":
            raise InvalidArgumentError(f"Use subscribe() for {spec.qualified_name}")
        context.metadata["principal"] = await self._auth.authorize(spec, context.credential)
        return await self._pipeline.resolve(spec, args or {})

    async def subscribe(
        self,
        context: RequestContext,
        field_name: str = ON_CREATE_DATA_POINT,
        args: dict[str, Any] | None = None,
    ) -> Subscription:
        """Admit, authorize and attach a listener to a subscription field."""
        await self.admit(context)
        spec = self._pipeline.spec_for("Subscription", field_name)
        context.metadata["principal"] = await self._auth.authorize(spec, context.credential)
        return self._pipeline.subscribe(spec, args or {})

    # ── operation surface ────────────────────────────────────

    async def create_data_point(self, context: RequestContext, data: dict[str, Any]) -> Any:
        return await self.execute(context, "Mutation", "createDataPoint", {"input": data})

    async def update_data_point(self, context: RequestContext, data: dict[str, Any]) -> Any:
        return await self.execute(context, "Mutation", "updateDataPoint", {"input": data})

    async def delete_data_point(self, context: RequestContext, key: dict[str, Any]) -> Any:
        return await self.execute(context, "Mutation", "deleteDataPoint", {"input": key})

    async def get_data_point(self, context: RequestContext, key: dict[str, Any]) -> Any:
        return await self.execute(context, "Query", "getDataPoint", key)

    async def list_data_points(
        self,
        context: RequestContext,
        *,
        limit: int | None = None,
        next_token: str | None = None,
    ) -> Any:
        args: dict[str, Any] = {}
        if limit is not None:
            args["limit"] = limit
        if next_token is not None:
            args["nextToken"] = next_token
        return await self.execute(context, "Query", "listDataPoints", args)

    async def query_data_points_by_name_and_date_time(
        self,
        context: RequestContext,
        name: str,
        date_range: dict[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> Any:
        args: dict[str, Any] = {"name": name, "range": date_range or {}}
        if limit is not None:
            args["limit"] = limit
        return await self.execute(context, "Query", "queryDataPointsByNameAndDateTime", args)

    async def on_create_data_point(
        self,
        context: RequestContext,
        name: str | None = None,
    ) -> Subscription:
        return await self.subscribe(context, ON_CREATE_DATA_POINT, {"name": name} if name else {})

    # ── introspection ────────────────────────────────────────

    @property
    def engine(self) -> RuleEngine:
        return self._engine

    @property
    def auth(self) -> AuthorizationResolver:
        return self._auth

    @property
    def pipeline(self) -> ResolverPipeline:
        return self._pipeline

    def export(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of the deployment."""
        return {
            "admission": self._engine.export(),
            "auth": self._auth.export(),
            "resolvers": [s.export() for s in self._pipeline.list_specs()],
        }

    async def close(self) -> None:
        await self._pipeline.table.close()
