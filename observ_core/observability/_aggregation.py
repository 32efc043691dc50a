"""Roll-up of cost and usage totals across the Session -> Trace -> Observation hierarchy."""

from observ_core.exceptions import EntityNotFoundError
from observ_core.models import Session, Trace
from observ_core.store import TelemetryStore


class Aggregator:
    """Recomputes derived totals from finalized children.

    Totals are always rebuilt from the store's sum-by-scope queries, never
    incremented, so running a recomputation twice yields identical values.
    Observations without usage or cost contribute zero.
    """

    def __init__(self, store: TelemetryStore) -> None:
        self._store = store

    def recompute_trace(self, trace_id: str) -> Trace:
        """Rebuild ``total_cost``/``total_tokens`` of a trace, then of its session."""
        trace = self._store.get_trace(trace_id)
        if trace is None:
            raise EntityNotFoundError(f"Trace {trace_id} not found")
        totals = self._store.sum_trace_usage(trace_id)
        if trace.total_cost != totals.total_cost or trace.total_tokens != totals.total_tokens:
            trace = self._store.update_trace(
                trace.model_copy(update={"total_cost": totals.total_cost, "total_tokens": totals.total_tokens})
            )
        if trace.session_id:
            self.recompute_session(trace.session_id)
        return trace

    def recompute_session(self, session_id: str) -> Session:
        """Rebuild session totals from its traces."""
        session = self._store.get_session(session_id)
        if session is None:
            raise EntityNotFoundError(f"Session {session_id} not found")
        totals = self._store.sum_session_usage(session_id)
        update = {
            "total_cost": totals.total_cost,
            "total_tokens": totals.total_tokens,
            "total_traces_count": totals.count,
            "total_llm_calls_count": totals.llm_calls,
            "total_llm_duration_ms": totals.llm_duration_ms,
        }
        if any(getattr(session, field) != value for field, value in update.items()):
            session = self._store.update_session(session.model_copy(update=update))
        return session
