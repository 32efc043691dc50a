"""Guardrails: rule-based and moderation-based routing of telemetry into the review queue."""

from .config import SESSION_RULE_NAMES, TRACE_RULE_NAMES, GuardrailConfig, GuardrailThresholds
from .evaluator import RANDOM_SAMPLE_REASON, GuardrailEvaluator, SweepResult
from .moderation import (
    ModerationAction,
    ModerationGuardrail,
    ModerationResult,
    build_details,
    determine_priority,
    extract_text,
)
from .rules import Rule, build_session_rules, build_trace_rules
from .worker import GuardrailWorker

__all__ = [
    "RANDOM_SAMPLE_REASON",
    "SESSION_RULE_NAMES",
    "TRACE_RULE_NAMES",
    "GuardrailConfig",
    "GuardrailEvaluator",
    "GuardrailThresholds",
    "GuardrailWorker",
    "ModerationAction",
    "ModerationGuardrail",
    "ModerationResult",
    "Rule",
    "SweepResult",
    "build_details",
    "build_session_rules",
    "build_trace_rules",
    "determine_priority",
    "extract_text",
]
