"""Session: the top-level aggregation unit."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from observ_core.exceptions import InvalidTransitionError

from ._types import ZERO_COST, Cost, new_id, utcnow


class Session(BaseModel):
    """One bounded unit of user or application interaction.

    Totals are derived by the Aggregator from the session's traces and are
    never written by callers directly.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    external_id: str | None = None
    user_id: str | None = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    total_cost: Cost = ZERO_COST
    total_tokens: int = 0
    total_traces_count: int = 0
    total_llm_calls_count: int = 0
    total_llm_duration_ms: int = 0

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def duration_s(self) -> float | None:
        """Wall-clock duration in seconds, rounded to one decimal."""
        if self.end_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds(), 1)

    def finalize(self, *, end_time: datetime | None = None) -> "Session":
        """Return a copy closed at ``end_time`` (now by default)."""
        if self.is_finalized:
            raise InvalidTransitionError(f"Session {self.id} is already finalized")
        return self.model_copy(update={"end_time": end_time or utcnow()})

    def with_metadata(self, metadata: dict[str, Any]) -> "Session":
        """Return a copy with ``metadata`` merged over the existing map."""
        return self.model_copy(update={"metadata": {**self.metadata, **metadata}})
