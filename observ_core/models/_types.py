"""Shared enums, identifiers and the polymorphic entity reference."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Cost = Annotated[Decimal, Field(ge=0)]
"""Non-negative USD amount."""

ZERO_COST = Decimal(0)


def new_id() -> str:
    """Generate a new entity identifier."""
    return uuid4().hex


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ObservationKind(StrEnum):
    """Observation variant discriminator."""

    GENERATION = "generation"
    EMBEDDING = "embedding"
    IMAGE_GENERATION = "image_generation"
    TRANSCRIPTION = "transcription"
    MODERATION = "moderation"
    SPAN = "span"


class ObservationStatus(StrEnum):
    """Observation lifecycle: open until finalized or failed."""

    OPEN = "open"
    OK = "ok"
    FAILED = "failed"


class ReviewStatus(StrEnum):
    """ReviewItem lifecycle."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"

    @property
    def is_actionable(self) -> bool:
        return self in (ReviewStatus.PENDING, ReviewStatus.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in (ReviewStatus.COMPLETED, ReviewStatus.SKIPPED)


class ReviewPriority(StrEnum):
    """Review priority. Compare with ``rank``, not string order."""

    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ReviewPriority.NORMAL: 0,
    ReviewPriority.HIGH: 1,
    ReviewPriority.CRITICAL: 2,
}


class EntityType(StrEnum):
    """Kinds of entity a ReviewItem or Score can point at."""

    SESSION = "session"
    TRACE = "trace"
    OBSERVATION = "observation"


REVIEWABLE_TYPES = frozenset({EntityType.SESSION, EntityType.TRACE})


class ScoreSource(StrEnum):
    """Who produced a Score."""

    MANUAL = "manual"
    PROGRAMMATIC = "programmatic"
    LLM_JUDGE = "llm_judge"


class ScoreDataType(StrEnum):
    """How a Score value should be read."""

    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    CATEGORICAL = "categorical"


class EntityRef(BaseModel):
    """Typed pointer to a Session, Trace or Observation."""

    model_config = ConfigDict(frozen=True)

    type: EntityType
    id: str

    @classmethod
    def session(cls, session_id: str) -> "EntityRef":
        return cls(type=EntityType.SESSION, id=session_id)

    @classmethod
    def trace(cls, trace_id: str) -> "EntityRef":
        return cls(type=EntityType.TRACE, id=trace_id)

    @classmethod
    def observation(cls, observation_id: str) -> "EntityRef":
        return cls(type=EntityType.OBSERVATION, id=observation_id)

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"
