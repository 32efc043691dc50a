"""Trace: one logical exchange inside a session."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from observ_core.exceptions import InvalidTransitionError

from ._types import ZERO_COST, Cost, new_id, utcnow


class Trace(BaseModel):
    """One logical exchange, e.g. a user turn or a background job run.

    Immutable once finalized, except for the roll-up fields maintained by the
    Aggregator (``total_cost``, ``total_tokens``).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    session_id: str | None = None
    name: str = "chat_exchange"
    user_id: str | None = None
    input: Any = None
    output: Any = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: tuple[str, ...] = Field(default_factory=tuple)

    total_cost: Cost = ZERO_COST
    total_tokens: int = 0

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds() * 1000, 2)

    def finalize(self, *, output: Any = None, metadata: dict[str, Any] | None = None, end_time: datetime | None = None) -> "Trace":
        """Return a finalized copy carrying ``output`` and merged ``metadata``."""
        if self.is_finalized:
            raise InvalidTransitionError(f"Trace {self.id} is already finalized")
        update: dict[str, Any] = {"output": output, "end_time": end_time or utcnow()}
        if metadata:
            update["metadata"] = {**self.metadata, **metadata}
        return self.model_copy(update=update)

    def with_metadata(self, metadata: dict[str, Any]) -> "Trace":
        """Return a copy with ``metadata`` merged. Only open traces accept annotations."""
        if self.is_finalized:
            raise InvalidTransitionError(f"Trace {self.id} is finalized and cannot be annotated")
        return self.model_copy(update={"metadata": {**self.metadata, **metadata}})
