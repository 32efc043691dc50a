"""Telemetry store protocol and singleton management.

Defines the TelemetryStore protocol that all storage backends must implement,
along with get/set helpers for the process-global singleton.
"""

from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from observ_core.models import EntityRef, EntityType, Observation, ReviewItem, ReviewStatus, Score, Session, Trace


class UsageTotals(BaseModel):
    """Result of a sum-by-scope query.

    For a trace scope, ``count`` is the number of observations; for a session
    scope it is the number of traces. ``llm_calls`` and ``llm_duration_ms``
    cover generation observations only.
    """

    model_config = ConfigDict(frozen=True)

    total_cost: Decimal = Decimal(0)
    total_tokens: int = 0
    count: int = 0
    llm_calls: int = 0
    llm_duration_ms: int = 0


@runtime_checkable
class TelemetryStore(Protocol):
    """Protocol for telemetry persistence backends.

    Implementations: ClickHouseTelemetryStore (production),
    MemoryTelemetryStore (testing, single process).
    """

    # --- Sessions ---

    def create_session(self, session: Session) -> Session:
        """Persist a new session."""
        ...

    def update_session(self, session: Session) -> Session:
        """Replace a stored session. Raises EntityNotFoundError when missing."""
        ...

    def get_session(self, session_id: str) -> Session | None:
        """Load a session by id."""
        ...

    def list_sessions_since(self, since: datetime) -> list[Session]:
        """Sessions started at or after ``since``, oldest first."""
        ...

    def delete_session(self, session_id: str) -> None:
        """Delete a session with its traces, observations, review items and scores."""
        ...

    # --- Traces ---

    def create_trace(self, trace: Trace) -> Trace:
        """Persist a new trace."""
        ...

    def update_trace(self, trace: Trace) -> Trace:
        """Replace a stored trace. Raises EntityNotFoundError when missing."""
        ...

    def get_trace(self, trace_id: str) -> Trace | None:
        """Load a trace by id."""
        ...

    def list_traces(self, session_id: str) -> list[Trace]:
        """Traces owned by a session, oldest first."""
        ...

    def list_traces_since(self, since: datetime) -> list[Trace]:
        """Traces started at or after ``since``, oldest first."""
        ...

    def delete_trace(self, trace_id: str) -> None:
        """Delete a trace with its observations, review item and scores."""
        ...

    # --- Observations ---

    def create_observation(self, observation: Observation) -> Observation:
        """Persist a new observation."""
        ...

    def update_observation(self, observation: Observation) -> Observation:
        """Replace a stored observation. Raises EntityNotFoundError when missing."""
        ...

    def get_observation(self, observation_id: str) -> Observation | None:
        """Load an observation by id."""
        ...

    def list_observations(self, trace_id: str) -> list[Observation]:
        """Observations owned by a trace, ordered by start time."""
        ...

    # --- Aggregates ---

    def sum_trace_usage(self, trace_id: str) -> UsageTotals:
        """Sum cost and tokens over every observation of a trace."""
        ...

    def sum_session_usage(self, session_id: str) -> UsageTotals:
        """Sum trace totals over every trace of a session."""
        ...

    # --- Review items ---

    def insert_review_item(self, item: ReviewItem) -> ReviewItem:
        """Insert a review item. Raises DuplicateReviewItemError if the reviewable already has one."""
        ...

    def update_review_item(self, item: ReviewItem) -> ReviewItem:
        """Replace a stored review item. Raises EntityNotFoundError when missing."""
        ...

    def get_review_item(self, item_id: str) -> ReviewItem | None:
        """Load a review item by id."""
        ...

    def find_review_item(self, reviewable: EntityRef) -> ReviewItem | None:
        """Load the review item owned by ``reviewable``, if any."""
        ...

    def list_review_items(
        self,
        statuses: Iterable[ReviewStatus] | None = None,
        reviewable_type: EntityType | None = None,
    ) -> list[ReviewItem]:
        """List review items, optionally filtered by status and reviewable type."""
        ...

    # --- Scores ---

    def upsert_score(self, score: Score) -> Score:
        """Insert or replace the score for (target, name, source). Returns the stored row."""
        ...

    def list_scores(self, target: EntityRef) -> list[Score]:
        """Scores attached to ``target``, newest first."""
        ...

    def delete_score(self, score_id: str) -> None:
        """Delete a score. Raises EntityNotFoundError when missing."""
        ...

    # --- Transactions ---

    def unit_of_work(self) -> AbstractContextManager[None]:
        """Scope in which a finalize and its roll-up recomputation run atomically."""
        ...


_telemetry_store: TelemetryStore | None = None


def get_telemetry_store() -> TelemetryStore | None:
    """Get the process-global telemetry store singleton."""
    return _telemetry_store


def set_telemetry_store(store: TelemetryStore | None) -> None:
    """Set the process-global telemetry store singleton."""
    global _telemetry_store
    _telemetry_store = store
