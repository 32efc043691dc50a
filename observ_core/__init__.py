"""Observ Core - LLM call telemetry, cost tracking and human review routing.

@public

Observ Core wraps LLM provider calls (chat, completions, embeddings, image
generation, transcription, moderation) and records each one as an
Observation under a Trace under a Session. Token usage and cost roll up from
observations to traces to sessions. Guardrail rules and content moderation
route suspicious traces and sessions into a prioritized human review queue,
where reviewers record pass/fail scores.

Core Capabilities:
    - **Instrumentation**: Sync and async wrappers that never alter the wrapped call
    - **Aggregation**: Usage and cost roll-ups, recomputed on every observation close
    - **Storage**: In-memory and ClickHouse telemetry stores
    - **Guardrails**: Ordered first-match rules, random sampling and moderation
    - **Review**: Queue state machine, next-item selection and manual scores
    - **Export**: Optional OpenTelemetry mirror with Laminar (LMNR) export

Quick Start:
    >>> from openai import OpenAI
    >>> from observ_core import get_recorder, instrument_openai
    >>>
    >>> recorder = get_recorder()
    >>> session = recorder.start_session(user_id="user-42")
    >>> client = instrument_openai(OpenAI(), session)
    >>> client.chat.completions.create(model="gpt-4o-mini", messages=[{"role": "user", "content": "Hi"}])
    >>> recorder.session_metrics(session.id)

Optional Environment Variables:
    - CLICKHOUSE_HOST: Use the ClickHouse telemetry store instead of memory
    - LMNR_PROJECT_API_KEY: Laminar (LMNR) API key for span export
    - OTEL_MIRROR_ENABLED: Mirror observations as OpenTelemetry spans
"""

from .exceptions import (
    DuplicateReviewItemError,
    EntityNotFoundError,
    InvalidTransitionError,
    ObservCoreError,
    PersistenceError,
    RuleEvaluationError,
    TelemetryExtractionError,
)
from .guardrails import (
    GuardrailConfig,
    GuardrailEvaluator,
    GuardrailThresholds,
    GuardrailWorker,
    ModerationGuardrail,
)
from .instrumentation import (
    InstrumentedChat,
    InstrumentedOpenAI,
    ObservableService,
    instrument_chat,
    instrument_embedding,
    instrument_image_generation,
    instrument_moderation,
    instrument_openai,
    instrument_transcription,
)
from .logging import LoggingConfig, get_pipeline_logger, setup_logging
from .logging import get_pipeline_logger as get_logger
from .models import (
    EntityRef,
    EntityType,
    Observation,
    ObservationKind,
    ObservationStatus,
    ReviewItem,
    ReviewPriority,
    ReviewStatus,
    Score,
    Session,
    Trace,
)
from .observability import TelemetryRecorder, get_recorder, initialize_observability, set_recorder
from .pricing import StaticPricingTable, default_pricing
from .review import ReviewQueue, ScoreBook
from .settings import settings
from .store import MemoryTelemetryStore, TelemetryStore, create_telemetry_store

__version__ = "0.1.0"

__all__ = [
    # Config/Settings
    "settings",
    # Logging
    "get_logger",
    "get_pipeline_logger",
    "LoggingConfig",
    "setup_logging",
    # Errors
    "ObservCoreError",
    "TelemetryExtractionError",
    "PersistenceError",
    "DuplicateReviewItemError",
    "EntityNotFoundError",
    "InvalidTransitionError",
    "RuleEvaluationError",
    # Models
    "EntityRef",
    "EntityType",
    "Observation",
    "ObservationKind",
    "ObservationStatus",
    "ReviewItem",
    "ReviewPriority",
    "ReviewStatus",
    "Score",
    "Session",
    "Trace",
    # Storage
    "TelemetryStore",
    "MemoryTelemetryStore",
    "create_telemetry_store",
    # Recording/Export
    "TelemetryRecorder",
    "get_recorder",
    "set_recorder",
    "initialize_observability",
    # Pricing
    "StaticPricingTable",
    "default_pricing",
    # Instrumentation
    "ObservableService",
    "InstrumentedChat",
    "InstrumentedOpenAI",
    "instrument_chat",
    "instrument_openai",
    "instrument_embedding",
    "instrument_image_generation",
    "instrument_transcription",
    "instrument_moderation",
    # Review
    "ReviewQueue",
    "ScoreBook",
    # Guardrails
    "GuardrailConfig",
    "GuardrailThresholds",
    "GuardrailEvaluator",
    "GuardrailWorker",
    "ModerationGuardrail",
]
