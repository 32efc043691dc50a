"""Guardrail rules as explicit data: name, priority, predicate, detail extractor."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from observ_core.models import ReviewPriority, Session, Trace

from .config import GuardrailConfig, GuardrailThresholds

E = TypeVar("E", Trace, Session)


@dataclass(frozen=True)
class Rule(Generic[E]):
    """One guardrail check. ``details`` builds the ReviewItem's reason_details."""

    name: str
    priority: ReviewPriority
    predicate: Callable[[E], bool]
    details: Callable[[E], dict[str, Any]] | None = None

    def matches(self, entity: E) -> bool:
        return bool(self.predicate(entity))

    def describe(self, entity: E) -> dict[str, Any]:
        return self.details(entity) if self.details is not None else {}


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple)):
        return not value
    return False


def trace_rule_catalog(thresholds: GuardrailThresholds) -> dict[str, Rule[Trace]]:
    return {
        "error_detected": Rule(
            "error_detected",
            ReviewPriority.CRITICAL,
            lambda t: not _blank(t.metadata.get("error")),
            lambda t: {"error": t.metadata["error"]},
        ),
        "high_cost": Rule(
            "high_cost",
            ReviewPriority.HIGH,
            lambda t: t.total_cost > thresholds.trace_cost,
            lambda t: {"cost": float(t.total_cost), "threshold": float(thresholds.trace_cost)},
        ),
        "high_latency": Rule(
            "high_latency",
            ReviewPriority.NORMAL,
            lambda t: t.duration_ms is not None and t.duration_ms > thresholds.latency_ms,
            lambda t: {"latency_ms": t.duration_ms, "threshold": thresholds.latency_ms},
        ),
        "no_output": Rule(
            "no_output",
            ReviewPriority.HIGH,
            lambda t: _blank(t.output) and t.end_time is not None,
        ),
        "high_token_count": Rule(
            "high_token_count",
            ReviewPriority.NORMAL,
            lambda t: t.total_tokens > thresholds.tokens,
            lambda t: {"tokens": t.total_tokens, "threshold": thresholds.tokens},
        ),
    }


def session_rule_catalog(thresholds: GuardrailThresholds) -> dict[str, Rule[Session]]:
    return {
        "high_cost": Rule(
            "high_cost",
            ReviewPriority.HIGH,
            lambda s: s.total_cost > thresholds.session_cost,
            lambda s: {"cost": float(s.total_cost), "threshold": float(thresholds.session_cost)},
        ),
        "short_session": Rule(
            "short_session",
            ReviewPriority.NORMAL,
            lambda s: s.total_traces_count == 1 and s.end_time is not None,
            lambda s: {"trace_count": s.total_traces_count},
        ),
        "many_traces": Rule(
            "many_traces",
            ReviewPriority.NORMAL,
            lambda s: s.total_traces_count > thresholds.max_traces,
            lambda s: {"trace_count": s.total_traces_count, "threshold": thresholds.max_traces},
        ),
    }


def build_trace_rules(config: GuardrailConfig) -> list[Rule[Trace]]:
    """Trace rules in configured evaluation order."""
    catalog = trace_rule_catalog(config.thresholds)
    return [catalog[name] for name in config.trace_rules]


def build_session_rules(config: GuardrailConfig) -> list[Rule[Session]]:
    """Session rules in configured evaluation order."""
    catalog = session_rule_catalog(config.thresholds)
    return [catalog[name] for name in config.session_rules]
