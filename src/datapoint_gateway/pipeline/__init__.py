"""Resolver pipeline: operation specs, store commands and their execution."""

from datapoint_gateway.pipeline.commands import StoreCommand, StoreOp, StoreResult, run_command
from datapoint_gateway.pipeline.executor import ResolverPipeline
from datapoint_gateway.pipeline.resolvers import (
    ON_CREATE_DATA_POINT,
    DataPointResolvers,
    ResolverSpec,
)

__all__ = [
    "ON_CREATE_DATA_POINT",
    "DataPointResolvers",
    "ResolverPipeline",
    "ResolverSpec",
    "StoreCommand",
    "StoreOp",
    "StoreResult",
    "run_command",
]
