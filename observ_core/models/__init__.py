"""Telemetry data model: Session -> Trace -> Observation, plus ReviewItem and Score."""

from ._types import (
    REVIEWABLE_TYPES,
    ZERO_COST,
    Cost,
    EntityRef,
    EntityType,
    ObservationKind,
    ObservationStatus,
    ReviewPriority,
    ReviewStatus,
    ScoreDataType,
    ScoreSource,
    new_id,
    utcnow,
)
from .observation import (
    DETAILS_BY_KIND,
    EmbeddingDetails,
    GenerationDetails,
    ImageGenerationDetails,
    ModerationDetails,
    Observation,
    ObservationDetails,
    SpanDetails,
    TranscriptionDetails,
)
from .review import ReviewItem, Score
from .session import Session
from .trace import Trace

__all__ = [
    "DETAILS_BY_KIND",
    "REVIEWABLE_TYPES",
    "ZERO_COST",
    "Cost",
    "EmbeddingDetails",
    "EntityRef",
    "EntityType",
    "GenerationDetails",
    "ImageGenerationDetails",
    "ModerationDetails",
    "Observation",
    "ObservationDetails",
    "ObservationKind",
    "ObservationStatus",
    "ReviewItem",
    "ReviewPriority",
    "ReviewStatus",
    "Score",
    "ScoreDataType",
    "ScoreSource",
    "Session",
    "SpanDetails",
    "Trace",
    "TranscriptionDetails",
    "new_id",
    "utcnow",
]
