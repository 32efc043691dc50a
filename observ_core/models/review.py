"""ReviewItem and Score: human triage and judgments."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from observ_core.exceptions import InvalidTransitionError

from ._types import (
    REVIEWABLE_TYPES,
    EntityRef,
    ReviewPriority,
    ReviewStatus,
    ScoreDataType,
    ScoreSource,
    new_id,
    utcnow,
)


class ReviewItem(BaseModel):
    """A queued human-review task over exactly one Session or Trace.

    Transitions::

        pending -> in_progress -> completed | skipped
        pending -> skipped
        pending -> completed            (implicitly passes through in_progress)

    ``completed`` and ``skipped`` are terminal.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    reviewable: EntityRef
    status: ReviewStatus = ReviewStatus.PENDING
    priority: ReviewPriority = ReviewPriority.NORMAL
    reason: str = "manual"
    reason_details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    completed_by: str | None = None

    @field_validator("reviewable")
    @classmethod
    def _only_sessions_and_traces(cls, value: EntityRef) -> EntityRef:
        if value.type not in REVIEWABLE_TYPES:
            raise ValueError(f"{value.type} entities cannot be reviewed")
        return value

    @property
    def is_actionable(self) -> bool:
        return self.status.is_actionable

    def sort_key(self) -> tuple[int, datetime, str]:
        """Queue order: priority descending, then FIFO."""
        return (-self.priority.rank, self.created_at, self.id)

    def start_review(self) -> "ReviewItem":
        """Mark the item as being looked at. No-op unless pending."""
        if self.status != ReviewStatus.PENDING:
            return self
        return self.model_copy(update={"status": ReviewStatus.IN_PROGRESS, "updated_at": utcnow()})

    def complete(self, *, by: str | None = None) -> "ReviewItem":
        return self._terminate(ReviewStatus.COMPLETED, by)

    def skip(self, *, by: str | None = None) -> "ReviewItem":
        return self._terminate(ReviewStatus.SKIPPED, by)

    def _terminate(self, status: ReviewStatus, by: str | None) -> "ReviewItem":
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Review item {self.id} is already {self.status}")
        now = utcnow()
        return self.model_copy(update={"status": status, "completed_at": now, "completed_by": by, "updated_at": now})


class Score(BaseModel):
    """A judgment attached to any entity, unique per (target, name, source)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    target: EntityRef
    name: str = Field(min_length=1)
    value: float = Field(ge=0.0, le=1.0)
    data_type: ScoreDataType = ScoreDataType.NUMERIC
    source: ScoreSource = ScoreSource.PROGRAMMATIC
    string_value: str | None = None
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[EntityRef, str, ScoreSource]:
        return (self.target, self.name, self.source)

    @property
    def passed(self) -> bool:
        return self.value >= 0.5

    @property
    def failed(self) -> bool:
        return not self.passed
