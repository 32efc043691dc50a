"""Core configuration settings for Observ Core.

@public

This module provides centralized configuration management for Observ Core,
handling the telemetry store connection, exporter credentials and guardrail
thresholds. Settings are loaded from environment variables with .env file
support via pydantic-settings.

Environment variables:
    OBSERV_ENABLED: Master switch for instrumentation (default true)
    CLICKHOUSE_HOST: ClickHouse host; selects the ClickHouse telemetry store when set
    CLICKHOUSE_PORT / CLICKHOUSE_DATABASE / CLICKHOUSE_USER / CLICKHOUSE_PASSWORD / CLICKHOUSE_SECURE
    LMNR_PROJECT_API_KEY: Laminar project key for exporting mirrored spans
    OTEL_MIRROR_ENABLED: Mirror closed observations as OpenTelemetry spans
    GUARDRAIL_*: Guardrail thresholds, sampling percentage and sweep windows

Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values

Example:
    >>> from observ_core.settings import settings
    >>> print(settings.guardrail_trace_cost)
    0.1

Note:
    Settings are loaded once at module import and frozen. The process must be
    restarted to pick up changes to environment variables or the .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core configuration for Observ Core.

    @public

    Attributes:
        observ_enabled: When False, instrumentation helpers hand back the raw
                        client and services create no observability session.

        clickhouse_host: ClickHouse host name. Empty selects the in-memory
                         telemetry store.

        lmnr_project_api_key: Laminar (LMNR) project API key. When set,
                              mirrored observation spans are exported to Laminar.

        otel_mirror_enabled: Emit one OpenTelemetry span per closed observation.

        guardrail_*: Default thresholds and windows for the guardrail evaluator.
                     See observ_core.guardrails.GuardrailConfig.from_settings().
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,  # Settings are immutable after initialization
    )

    observ_enabled: bool = True

    # Telemetry store
    clickhouse_host: str = ""
    clickhouse_port: int = 8443
    clickhouse_database: str = "default"
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_secure: bool = True

    # Exporters
    lmnr_project_api_key: str = ""
    otel_mirror_enabled: bool = False

    # Guardrails
    guardrail_trace_cost: float = 0.10
    guardrail_session_cost: float = 0.50
    guardrail_latency_ms: int = 30_000
    guardrail_tokens: int = 10_000
    guardrail_max_traces: int = 20
    guardrail_sample_percentage: float = 5.0
    guardrail_sweep_window_seconds: int = 3600
    guardrail_sample_window_seconds: int = 86_400


# Create a single, importable instance of the settings
settings = Settings()
"""Global settings instance for the entire application.

@public

Access this instance rather than creating new Settings objects, except in
tests or when a component accepts an explicit Settings argument.
"""
