"""Static guardrail configuration: thresholds, rule ordering and sampling."""

from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from observ_core.settings import Settings

TRACE_RULE_NAMES = ("error_detected", "high_cost", "high_latency", "no_output", "high_token_count")
SESSION_RULE_NAMES = ("high_cost", "short_session", "many_traces")


class GuardrailThresholds(BaseModel):
    """Numeric limits the default rules compare against."""

    model_config = ConfigDict(frozen=True)

    trace_cost: Decimal = Decimal("0.10")
    session_cost: Decimal = Decimal("0.50")
    latency_ms: float = 30_000
    tokens: int = 10_000
    max_traces: int = 20


class GuardrailConfig(BaseModel):
    """Configuration handed to ``GuardrailEvaluator``.

    ``trace_rules`` and ``session_rules`` are the evaluation order: the first
    matching rule wins, so reordering the names changes which reason and
    priority an entity is queued with.
    """

    model_config = ConfigDict(frozen=True)

    thresholds: GuardrailThresholds = Field(default_factory=GuardrailThresholds)
    trace_rules: tuple[str, ...] = TRACE_RULE_NAMES
    session_rules: tuple[str, ...] = SESSION_RULE_NAMES
    sample_percentage: float = Field(default=5.0, ge=0, le=100)
    sweep_window: timedelta = timedelta(hours=1)
    sample_window: timedelta = timedelta(days=1)

    @field_validator("trace_rules")
    @classmethod
    def _known_trace_rules(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [name for name in value if name not in TRACE_RULE_NAMES]
        if unknown:
            raise ValueError(f"Unknown trace rules: {', '.join(unknown)}")
        return value

    @field_validator("session_rules")
    @classmethod
    def _known_session_rules(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [name for name in value if name not in SESSION_RULE_NAMES]
        if unknown:
            raise ValueError(f"Unknown session rules: {', '.join(unknown)}")
        return value

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardrailConfig":
        return cls(
            thresholds=GuardrailThresholds(
                trace_cost=Decimal(str(settings.guardrail_trace_cost)),
                session_cost=Decimal(str(settings.guardrail_session_cost)),
                latency_ms=settings.guardrail_latency_ms,
                tokens=settings.guardrail_tokens,
                max_traces=settings.guardrail_max_traces,
            ),
            sample_percentage=settings.guardrail_sample_percentage,
            sweep_window=timedelta(seconds=settings.guardrail_sweep_window_seconds),
            sample_window=timedelta(seconds=settings.guardrail_sample_window_seconds),
        )
