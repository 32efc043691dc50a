"""In-memory telemetry store for testing and single-process use.

Simple dict-based storage implementing the full TelemetryStore protocol.
All data is lost when the process exits.
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from threading import RLock

from observ_core.exceptions import DuplicateReviewItemError, EntityNotFoundError
from observ_core.models import (
    EntityRef,
    EntityType,
    Observation,
    ObservationKind,
    ReviewItem,
    ReviewStatus,
    Score,
    ScoreSource,
    Session,
    Trace,
)

from .protocol import UsageTotals


class MemoryTelemetryStore:
    """Dict-based telemetry store.

    Every public method takes a re-entrant lock, and ``unit_of_work()`` holds
    the same lock so a finalize plus its roll-up is atomic for other threads.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._sessions: dict[str, Session] = {}
        self._traces: dict[str, Trace] = {}
        self._observations: dict[str, Observation] = {}
        self._review_items: dict[str, ReviewItem] = {}
        self._review_index: dict[EntityRef, str] = {}  # reviewable -> review item id
        self._scores: dict[tuple[EntityRef, str, ScoreSource], Score] = {}

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with self._lock:
            yield

    # --- Sessions ---

    def create_session(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.id] = session
        return session

    def update_session(self, session: Session) -> Session:
        with self._lock:
            if session.id not in self._sessions:
                raise EntityNotFoundError(f"Session {session.id} not found")
            self._sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions_since(self, since: datetime) -> list[Session]:
        with self._lock:
            found = [s for s in self._sessions.values() if s.start_time >= since]
        return sorted(found, key=lambda s: s.start_time)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            for trace in self.list_traces(session_id):
                self.delete_trace(trace.id)
            self._sessions.pop(session_id, None)
            self._delete_attached(EntityRef.session(session_id))

    # --- Traces ---

    def create_trace(self, trace: Trace) -> Trace:
        with self._lock:
            self._traces[trace.id] = trace
        return trace

    def update_trace(self, trace: Trace) -> Trace:
        with self._lock:
            if trace.id not in self._traces:
                raise EntityNotFoundError(f"Trace {trace.id} not found")
            self._traces[trace.id] = trace
        return trace

    def get_trace(self, trace_id: str) -> Trace | None:
        with self._lock:
            return self._traces.get(trace_id)

    def list_traces(self, session_id: str) -> list[Trace]:
        with self._lock:
            found = [t for t in self._traces.values() if t.session_id == session_id]
        return sorted(found, key=lambda t: t.start_time)

    def list_traces_since(self, since: datetime) -> list[Trace]:
        with self._lock:
            found = [t for t in self._traces.values() if t.start_time >= since]
        return sorted(found, key=lambda t: t.start_time)

    def delete_trace(self, trace_id: str) -> None:
        with self._lock:
            for observation in self.list_observations(trace_id):
                del self._observations[observation.id]
                self._delete_attached(EntityRef.observation(observation.id))
            self._traces.pop(trace_id, None)
            self._delete_attached(EntityRef.trace(trace_id))

    # --- Observations ---

    def create_observation(self, observation: Observation) -> Observation:
        with self._lock:
            self._observations[observation.id] = observation
        return observation

    def update_observation(self, observation: Observation) -> Observation:
        with self._lock:
            if observation.id not in self._observations:
                raise EntityNotFoundError(f"Observation {observation.id} not found")
            self._observations[observation.id] = observation
        return observation

    def get_observation(self, observation_id: str) -> Observation | None:
        with self._lock:
            return self._observations.get(observation_id)

    def list_observations(self, trace_id: str) -> list[Observation]:
        with self._lock:
            found = [o for o in self._observations.values() if o.trace_id == trace_id]
        return sorted(found, key=lambda o: o.start_time)

    # --- Aggregates ---

    def sum_trace_usage(self, trace_id: str) -> UsageTotals:
        observations = self.list_observations(trace_id)
        generations = [o for o in observations if o.kind == ObservationKind.GENERATION]
        return UsageTotals(
            total_cost=sum((o.cost for o in observations), Decimal(0)),
            total_tokens=sum(o.total_tokens for o in observations),
            count=len(observations),
            llm_calls=len(generations),
            llm_duration_ms=round(sum(o.duration_ms or 0 for o in generations)),
        )

    def sum_session_usage(self, session_id: str) -> UsageTotals:
        with self._lock:
            traces = self.list_traces(session_id)
            trace_usage = [self.sum_trace_usage(t.id) for t in traces]
        return UsageTotals(
            total_cost=sum((t.total_cost for t in traces), Decimal(0)),
            total_tokens=sum(t.total_tokens for t in traces),
            count=len(traces),
            llm_calls=sum(u.llm_calls for u in trace_usage),
            llm_duration_ms=sum(u.llm_duration_ms for u in trace_usage),
        )

    # --- Review items ---

    def insert_review_item(self, item: ReviewItem) -> ReviewItem:
        with self._lock:
            if item.reviewable in self._review_index:
                raise DuplicateReviewItemError(item.reviewable)
            self._review_items[item.id] = item
            self._review_index[item.reviewable] = item.id
        return item

    def update_review_item(self, item: ReviewItem) -> ReviewItem:
        with self._lock:
            if item.id not in self._review_items:
                raise EntityNotFoundError(f"Review item {item.id} not found")
            self._review_items[item.id] = item
        return item

    def get_review_item(self, item_id: str) -> ReviewItem | None:
        with self._lock:
            return self._review_items.get(item_id)

    def find_review_item(self, reviewable: EntityRef) -> ReviewItem | None:
        with self._lock:
            item_id = self._review_index.get(reviewable)
            return self._review_items.get(item_id) if item_id else None

    def list_review_items(
        self,
        statuses: Iterable[ReviewStatus] | None = None,
        reviewable_type: EntityType | None = None,
    ) -> list[ReviewItem]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            items = list(self._review_items.values())
        return [
            item
            for item in items
            if (wanted is None or item.status in wanted) and (reviewable_type is None or item.reviewable.type == reviewable_type)
        ]

    # --- Scores ---

    def upsert_score(self, score: Score) -> Score:
        with self._lock:
            existing = self._scores.get(score.key)
            if existing is not None:
                score = score.model_copy(update={"id": existing.id, "created_at": existing.created_at})
            self._scores[score.key] = score
        return score

    def list_scores(self, target: EntityRef) -> list[Score]:
        with self._lock:
            found = [s for s in self._scores.values() if s.target == target]
        return sorted(found, key=lambda s: s.updated_at, reverse=True)

    def delete_score(self, score_id: str) -> None:
        with self._lock:
            for key, score in self._scores.items():
                if score.id == score_id:
                    del self._scores[key]
                    return
        raise EntityNotFoundError(f"Score {score_id} not found")

    def _delete_attached(self, ref: EntityRef) -> None:
        item_id = self._review_index.pop(ref, None)
        if item_id:
            self._review_items.pop(item_id, None)
        for key in [k for k in self._scores if k[0] == ref]:
            del self._scores[key]
