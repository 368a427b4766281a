# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Runner submodule: configuration loading and one-shot request execution.

Usage:
    python -m datapoint_gateway.runner < input.json > output.json

Exports:
    Executor: Runs one request through a configured gateway
    GatewayFactory: Builds a gateway from configuration
    StatementFactory: Parses admission statement trees
    GatewayConfig: Process-wide configuration schema
    RunnerInput: Input schema
    RunnerOutput: Output schema
"""

from .executor import Executor
from .factory import GatewayFactory, StatementFactory, build_gateway
from .reference import reference_config
from .schema import (
    AclConfigSchema,
    AuthModeConfigSchema,
    GatewayConfig,
    RequestSchema,
    RunnerInput,
    RunnerOutput,
    StoreConfigSchema,
)

__all__ = [
    "AclConfigSchema",
    "AuthModeConfigSchema",
    "Executor",
    "GatewayConfig",
    "GatewayFactory",
    "RequestSchema",
    "RunnerInput",
    "RunnerOutput",
    "StatementFactory",
    "StoreConfigSchema",
    "build_gateway",
    "reference_config",
]
