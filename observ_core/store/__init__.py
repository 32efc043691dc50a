"""Telemetry store protocol and backends."""

from .factory import create_telemetry_store
from .memory import MemoryTelemetryStore
from .protocol import TelemetryStore, UsageTotals, get_telemetry_store, set_telemetry_store

__all__ = [
    "MemoryTelemetryStore",
    "TelemetryStore",
    "UsageTotals",
    "create_telemetry_store",
    "get_telemetry_store",
    "set_telemetry_store",
]
