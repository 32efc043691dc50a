"""Telemetry recording, roll-up aggregation and exporters."""

from ._aggregation import Aggregator
from ._initialization import initialize_observability
from ._otel_bridge import OTelObservationMirror, observation_attributes
from ._recorder import TelemetryListener, TelemetryRecorder, get_recorder, set_recorder
from ._trimming import MESSAGE_CONTENT_LIMIT, RAW_BODY_LIMIT, bounded_mapping, trim_payload, truncate

__all__ = [
    "MESSAGE_CONTENT_LIMIT",
    "RAW_BODY_LIMIT",
    "Aggregator",
    "OTelObservationMirror",
    "TelemetryListener",
    "TelemetryRecorder",
    "bounded_mapping",
    "get_recorder",
    "initialize_observability",
    "observation_attributes",
    "set_recorder",
    "trim_payload",
    "truncate",
]
