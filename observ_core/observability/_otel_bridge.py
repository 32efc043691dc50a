"""Mirror closed observations as OpenTelemetry spans.

Each observation becomes one span carrying Laminar's ``gen_ai.*`` usage and
cost attributes, so the telemetry also shows up in any OTel backend
(Laminar when ``LMNR_PROJECT_API_KEY`` is configured).
"""

import json
from datetime import datetime
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode, Tracer

from observ_core.logging import get_pipeline_logger
from observ_core.models import Observation, ObservationKind, ObservationStatus

from ._recorder import TelemetryListener
from ._trimming import trim_payload

logger = get_pipeline_logger(__name__)

_TRACER_NAME = "observ_core"


def _ns(value: datetime) -> int:
    return int(value.timestamp() * 1_000_000_000)


def _json(value: Any) -> str:
    return json.dumps(trim_payload(value), default=str)


def observation_attributes(observation: Observation) -> dict[str, str | int | float | bool]:
    """Build span attributes for an observation.

    Attribute names match Laminar's span_attributes constants:
    - gen_ai.usage.input_tokens / output_tokens / total_tokens
    - gen_ai.usage.cache_read_input_tokens, gen_ai.usage.reasoning_tokens
    - gen_ai.usage.cost
    - gen_ai.request_model for model identification
    """
    usage = observation.usage
    attrs: dict[str, str | int | float | bool] = {
        "lmnr.span.type": "LLM" if observation.kind == ObservationKind.GENERATION else "DEFAULT",
        "lmnr.span.input": _json(observation.input),
        "lmnr.span.output": _json(observation.output),
        "observ.observation_id": observation.id,
        "observ.trace_id": observation.trace_id,
        "observ.kind": str(observation.kind),
        "observ.status": str(observation.status),
        "gen_ai.usage.total_tokens": observation.total_tokens,
        "gen_ai.usage.cost": float(observation.cost),
    }
    if observation.parent_observation_id:
        attrs["observ.parent_observation_id"] = observation.parent_observation_id
    if observation.model:
        attrs["gen_ai.request_model"] = observation.model
    if usage.get("input_tokens"):
        attrs["gen_ai.usage.input_tokens"] = usage["input_tokens"]
    if usage.get("output_tokens"):
        attrs["gen_ai.usage.output_tokens"] = usage["output_tokens"]
    if usage.get("cached_input_tokens"):
        attrs["gen_ai.usage.cache_read_input_tokens"] = usage["cached_input_tokens"]
    if usage.get("reasoning_tokens"):
        attrs["gen_ai.usage.reasoning_tokens"] = usage["reasoning_tokens"]
    for key, value in observation.metadata.items():
        if isinstance(value, (str, int, float, bool)):
            attrs[f"observ.metadata.{key}"] = value
    return attrs


class OTelObservationMirror(TelemetryListener):
    """TelemetryListener that emits one OTel span per closed observation."""

    def __init__(self, tracer: Tracer | None = None) -> None:
        self._tracer = tracer or otel_trace.get_tracer(_TRACER_NAME)

    def observation_closed(self, observation: Observation) -> None:
        span = self._tracer.start_span(
            observation.name,
            start_time=_ns(observation.start_time),
            attributes=observation_attributes(observation),
        )
        if observation.status == ObservationStatus.FAILED:
            span.set_status(Status(StatusCode.ERROR, observation.status_message or "FAILED"))
        else:
            span.set_status(Status(StatusCode.OK))
        end_time = observation.end_time or observation.start_time
        span.end(end_time=_ns(end_time))
