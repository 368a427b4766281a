"""Table backends for data point persistence."""

from datapoint_gateway.stores.base import Page, Table
from datapoint_gateway.stores.memory import InMemoryTable

__all__ = ["InMemoryTable", "Page", "Table"]
