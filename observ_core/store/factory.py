"""Factory function for creating telemetry store instances based on settings."""

from observ_core.settings import Settings

from .protocol import TelemetryStore


def create_telemetry_store(settings: Settings) -> TelemetryStore:
    """Create a TelemetryStore based on settings.

    Selects ClickHouseTelemetryStore when clickhouse_host is configured,
    otherwise falls back to MemoryTelemetryStore.

    Backends are imported lazily so clickhouse_connect is only loaded when used.
    """
    if settings.clickhouse_host:
        from observ_core.store.clickhouse import ClickHouseTelemetryStore

        return ClickHouseTelemetryStore(
            host=settings.clickhouse_host,
            port=settings.clickhouse_port,
            database=settings.clickhouse_database,
            username=settings.clickhouse_user,
            password=settings.clickhouse_password,
            secure=settings.clickhouse_secure,
        )

    from observ_core.store.memory import MemoryTelemetryStore

    return MemoryTelemetryStore()
