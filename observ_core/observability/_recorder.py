"""TelemetryRecorder: the single write path for telemetry.

Every create/finalize goes through the recorder, which validates state
transitions on the models, persists through the TelemetryStore and runs the
Aggregator inside the same ``unit_of_work()`` so readers never see stale
roll-ups. Listeners are notified after the unit of work commits.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from observ_core.exceptions import EntityNotFoundError
from observ_core.logging import get_pipeline_logger
from observ_core.models import (
    DETAILS_BY_KIND,
    Observation,
    ObservationKind,
    Session,
    SpanDetails,
    Trace,
)
from observ_core.settings import settings
from observ_core.store import TelemetryStore, create_telemetry_store, get_telemetry_store, set_telemetry_store

from ._aggregation import Aggregator

logger = get_pipeline_logger(__name__)


class TelemetryListener:
    """Receives closed telemetry records. Override the hooks you need."""

    def observation_closed(self, observation: Observation) -> None:
        """Called after an observation is finalized or failed."""

    def trace_finalized(self, trace: Trace) -> None:
        """Called after a trace is finalized and its totals recomputed."""

    def session_finalized(self, session: Session) -> None:
        """Called after a session is finalized and its totals recomputed."""


class TelemetryRecorder:
    """Coordinates telemetry writes, roll-ups and listener notification.

    Raises EntityNotFoundError for unknown ids, InvalidTransitionError for
    illegal state changes and PersistenceError when the store fails.
    Callers on the instrumentation path catch all three.
    """

    def __init__(self, store: TelemetryStore, *, listeners: Iterable[TelemetryListener] = ()) -> None:
        self._store = store
        self._aggregator = Aggregator(store)
        self._listeners: list[TelemetryListener] = list(listeners)

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def aggregator(self) -> Aggregator:
        return self._aggregator

    def add_listener(self, listener: TelemetryListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: TelemetryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, hook: str, entity: BaseModel) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(entity)
            except Exception as e:
                logger.error(f"Telemetry listener {type(listener).__name__}.{hook} failed: {e}")

    # --- Lookups ---

    def get_session(self, session_id: str) -> Session:
        session = self._store.get_session(session_id)
        if session is None:
            raise EntityNotFoundError(f"Session {session_id} not found")
        return session

    def get_trace(self, trace_id: str) -> Trace:
        trace = self._store.get_trace(trace_id)
        if trace is None:
            raise EntityNotFoundError(f"Trace {trace_id} not found")
        return trace

    def get_observation(self, observation_id: str) -> Observation:
        observation = self._store.get_observation(observation_id)
        if observation is None:
            raise EntityNotFoundError(f"Observation {observation_id} not found")
        return observation

    # --- Sessions ---

    def start_session(
        self,
        *,
        user_id: str | None = None,
        external_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Session:
        """Create and persist a new open session."""
        session = Session(user_id=user_id, external_id=external_id, metadata=metadata or {})
        return self._store.create_session(session)

    def update_session_metadata(self, session_id: str, metadata: dict[str, Any]) -> Session:
        with self._store.unit_of_work():
            return self._store.update_session(self.get_session(session_id).with_metadata(metadata))

    def finalize_session(self, session_id: str) -> Session:
        """Close a session and recompute its totals."""
        with self._store.unit_of_work():
            self._store.update_session(self.get_session(session_id).finalize())
            session = self._aggregator.recompute_session(session_id)
        self._notify("session_finalized", session)
        return session

    def session_metrics(self, session_id: str) -> dict[str, Any]:
        """Summary numbers for a session, computed live from its children."""
        session = self.get_session(session_id)
        totals = self._store.sum_session_usage(session_id)
        return {
            "session_id": session.id,
            "total_traces": totals.count,
            "total_llm_calls": totals.llm_calls,
            "total_tokens": totals.total_tokens,
            "total_cost": float(totals.total_cost),
            "total_llm_duration_ms": totals.llm_duration_ms,
            "average_llm_latency_ms": round(totals.llm_duration_ms / totals.llm_calls) if totals.llm_calls else 0,
            "duration_s": session.duration_s,
        }

    # --- Traces ---

    def open_trace(
        self,
        *,
        session_id: str | None = None,
        name: str = "chat_exchange",
        input: Any = None,
        metadata: dict[str, Any] | None = None,
        tags: Iterable[str] = (),
    ) -> Trace:
        """Create a trace, optionally owned by a session."""
        with self._store.unit_of_work():
            user_id = self.get_session(session_id).user_id if session_id else None
            trace = Trace(
                session_id=session_id,
                name=name,
                user_id=user_id,
                input=input,
                metadata=metadata or {},
                tags=tuple(tags),
            )
            trace = self._store.create_trace(trace)
            if session_id:
                self._aggregator.recompute_session(session_id)
        return trace

    def annotate_trace(self, trace_id: str, metadata: dict[str, Any]) -> Trace:
        """Merge metadata into an open trace."""
        with self._store.unit_of_work():
            return self._store.update_trace(self.get_trace(trace_id).with_metadata(metadata))

    def finalize_trace(self, trace_id: str, *, output: Any = None, metadata: dict[str, Any] | None = None) -> Trace:
        """Close a trace and recompute its totals and its session's totals."""
        with self._store.unit_of_work():
            self._store.update_trace(self.get_trace(trace_id).finalize(output=output, metadata=metadata))
            trace = self._aggregator.recompute_trace(trace_id)
        self._notify("trace_finalized", trace)
        return trace

    def delete_trace(self, trace_id: str) -> None:
        """Delete a trace and everything attached to it, then fix the session totals."""
        with self._store.unit_of_work():
            trace = self.get_trace(trace_id)
            self._store.delete_trace(trace_id)
            if trace.session_id:
                self._aggregator.recompute_session(trace.session_id)

    def delete_session(self, session_id: str) -> None:
        with self._store.unit_of_work():
            self.get_session(session_id)
            self._store.delete_session(session_id)

    # --- Observations ---

    def open_observation(
        self,
        trace_id: str,
        *,
        name: str,
        kind: ObservationKind = ObservationKind.SPAN,
        details: BaseModel | None = None,
        input: Any = None,
        model: str | None = None,
        metadata: dict[str, Any] | None = None,
        parent_observation_id: str | None = None,
    ) -> Observation:
        """Create an open observation under a trace."""
        with self._store.unit_of_work():
            self.get_trace(trace_id)
            observation = Observation(
                trace_id=trace_id,
                parent_observation_id=parent_observation_id,
                name=name,
                model=model,
                input=input,
                metadata=metadata or {},
                details=details if details is not None else DETAILS_BY_KIND[kind](),
            )
            return self._store.create_observation(observation)

    def finalize_observation(
        self,
        observation_id: str,
        *,
        output: Any = None,
        usage: dict[str, int | float] | None = None,
        cost: Decimal | None = None,
        metadata: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
        input: Any = None,
    ) -> Observation:
        """Move an open observation to ``ok`` and roll its cost/usage up."""
        with self._store.unit_of_work():
            observation = self.get_observation(observation_id).finalize(
                output=output, usage=usage, cost=cost, metadata=metadata, details=details
            )
            if input is not None:
                observation = observation.model_copy(update={"input": input})
            observation = self._store.update_observation(observation)
            self._aggregator.recompute_trace(observation.trace_id)
        self._notify("observation_closed", observation)
        return observation

    def fail_observation(
        self,
        observation_id: str,
        *,
        status_message: str = "FAILED",
        metadata: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> Observation:
        """Move an open observation to ``failed``."""
        with self._store.unit_of_work():
            observation = self.get_observation(observation_id).fail(
                status_message=status_message, metadata=metadata, details=details
            )
            observation = self._store.update_observation(observation)
            self._aggregator.recompute_trace(observation.trace_id)
        self._notify("observation_closed", observation)
        return observation

    def record_span(
        self,
        trace_id: str,
        *,
        name: str,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
        parent_observation_id: str | None = None,
        level: str = "DEFAULT",
    ) -> Observation:
        """Create and immediately finalize a Span observation."""
        span = self.open_observation(
            trace_id,
            name=name,
            details=SpanDetails(level=level),
            input=input,
            metadata=metadata,
            parent_observation_id=parent_observation_id,
        )
        return self.finalize_observation(span.id, output=output)


_recorder: TelemetryRecorder | None = None


def get_recorder() -> TelemetryRecorder:
    """Get the process-global recorder, creating it over the global store on first use."""
    global _recorder
    if _recorder is None:
        store = get_telemetry_store()
        if store is None:
            store = create_telemetry_store(settings)
            set_telemetry_store(store)
        _recorder = TelemetryRecorder(store)
    return _recorder


def set_recorder(recorder: TelemetryRecorder | None) -> None:
    """Set the process-global recorder. ``None`` resets it."""
    global _recorder
    _recorder = recorder
