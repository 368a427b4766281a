# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Executor for running one request through a configured gateway.

Orchestrates the full execution flow:
1. Load configuration (inline or from a file)
2. Build the gateway from it (unless one was injected)
3. Translate the request into a RequestContext
4. Admit, authorize and resolve the operation
5. Return structured result
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from datapoint_gateway.context import Credential, RequestContext
from datapoint_gateway.exceptions import (
    AdmissionBlockedError,
    ConfigError,
    GatewayError,
    InvalidArgumentError,
)
from datapoint_gateway.gateway import DataPointGateway

from .factory import GatewayFactory
from .schema import DecisionSchema, GatewayConfig, RequestSchema, RunnerInput, RunnerOutput

if TYPE_CHECKING:
    from datapoint_gateway.result import Decision


class Executor:
    """Executes one request against a gateway.

    The executor is designed for dependency injection to support testing.
    Pass a pre-built gateway to reuse it across requests; rate counters
    only accumulate on a gateway that outlives a single request.

    Example:
        executor = Executor()
        output = await executor.execute(input_data)

        # Long-lived gateway shared across requests:
        gateway = GatewayFactory().build(config)
        executor = Executor(gateway=gateway)
    """

    def __init__(
        self,
        gateway: DataPointGateway | None = None,
        *,
        factory: GatewayFactory | None = None,
    ) -> None:
        self._injected_gateway = gateway
        self._factory = factory or GatewayFactory()

    async def execute(self, input_data: RunnerInput) -> RunnerOutput:
        """Execute the request.

        Note:
            This method catches all exceptions and returns them as
            RunnerOutput errors, ensuring valid JSON is always returned.
        """
        try:
            return await self._execute_internal(input_data)
        except AdmissionBlockedError as e:
            return RunnerOutput(
                success=False,
                error=str(e),
                error_type=e.error_type,
                decision=self._decision_schema(e.decision),
            )
        except GatewayError as e:
            return RunnerOutput(success=False, error=str(e), error_type=e.error_type)
        except Exception as e:
            return RunnerOutput(success=False, error=str(e), error_type=type(e).__name__)

    async def _execute_internal(self, input_data: RunnerInput) -> RunnerOutput:
        gateway = self._injected_gateway or self._factory.build(self.load_config(input_data))
        owns_gateway = self._injected_gateway is None

        try:
            request = input_data.request
            operation = request.operation
            if operation.type == "Subscription":
                raise InvalidArgumentError("Subscriptions need a long-lived connection")

            ctx = self.build_context(request)
            result = await gateway.execute(ctx, operation.type, operation.field, operation.arguments)
            admission = ctx.metadata.get("admission")
            return RunnerOutput(
                success=True,
                result=result,
                decision=DecisionSchema(**admission) if admission else None,
            )
        finally:
            if owns_gateway:
                await gateway.close()

    @staticmethod
    def load_config(input_data: RunnerInput) -> GatewayConfig:
        if input_data.config is not None:
            return input_data.config
        if input_data.config_path:
            return GatewayConfig.from_file(input_data.config_path)
        raise ConfigError("Input must provide 'config' or 'config_path'")

    @staticmethod
    def build_context(request: RequestSchema) -> RequestContext:
        """Translate the wire request, taking credentials from headers when not explicit."""
        headers = {k.lower(): v for k, v in request.headers.items()}
        credential = Credential(
            auth_type=request.auth.type,
            token=request.auth.token or headers.get("authorization"),
            api_key=request.auth.api_key or headers.get("x-api-key"),
        )
        return RequestContext(
            source_ip=request.source_ip,
            headers=headers,
            method=request.method,
            path=request.path,
            query_string=request.query_string,
            credential=credential,
        )

    @staticmethod
    def _decision_schema(decision: Decision) -> DecisionSchema:
        data: dict[str, Any] = decision.export()
        return DecisionSchema(**data)
