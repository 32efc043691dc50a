"""Tests for TelemetryRecorder lifecycle, roll-ups and listeners."""

from decimal import Decimal

import pytest

from observ_core.exceptions import EntityNotFoundError, InvalidTransitionError
from observ_core.models import (
    GenerationDetails,
    Observation,
    ObservationKind,
    ObservationStatus,
    Session,
    SpanDetails,
    Trace,
)
from observ_core.observability import TelemetryListener, TelemetryRecorder, get_recorder, set_recorder
from observ_core.store import MemoryTelemetryStore, set_telemetry_store


class RecordingListener(TelemetryListener):
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def observation_closed(self, observation: Observation) -> None:
        self.events.append(("observation", observation.id))

    def trace_finalized(self, trace: Trace) -> None:
        self.events.append(("trace", trace.id))

    def session_finalized(self, session: Session) -> None:
        self.events.append(("session", session.id))


class ExplodingListener(TelemetryListener):
    def trace_finalized(self, trace: Trace) -> None:
        raise RuntimeError("listener broke")


def _generation(recorder: TelemetryRecorder, trace_id: str, *, cost: str, input_tokens: int, output_tokens: int) -> Observation:
    observation = recorder.open_observation(trace_id, name="llm_call", details=GenerationDetails(), model="test-model")
    return recorder.finalize_observation(
        observation.id,
        output="ok",
        usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
        cost=Decimal(cost),
    )


class TestSessions:
    def test_start_session(self, recorder, session):
        assert session.user_id == "user-1"
        assert session.external_id == "conv-1"
        assert recorder.get_session(session.id) == session

    def test_update_metadata_merges(self, recorder, session):
        updated = recorder.update_session_metadata(session.id, {"topic": "billing"})
        assert updated.metadata == {"channel": "web", "topic": "billing"}

    def test_finalize_session_twice_rejected(self, recorder, session):
        recorder.finalize_session(session.id)
        with pytest.raises(InvalidTransitionError):
            recorder.finalize_session(session.id)

    def test_unknown_ids_raise(self, recorder):
        with pytest.raises(EntityNotFoundError):
            recorder.get_session("missing")
        with pytest.raises(EntityNotFoundError):
            recorder.open_trace(session_id="missing")
        with pytest.raises(EntityNotFoundError):
            recorder.open_observation("missing", name="x")
        with pytest.raises(EntityNotFoundError):
            recorder.finalize_observation("missing")

    def test_session_metrics(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id)
        _generation(recorder, trace.id, cost="0.003", input_tokens=100, output_tokens=50)
        _generation(recorder, trace.id, cost="0.001", input_tokens=10, output_tokens=5)
        recorder.finalize_trace(trace.id)
        recorder.finalize_session(session.id)

        metrics = recorder.session_metrics(session.id)
        assert metrics["session_id"] == session.id
        assert metrics["total_traces"] == 1
        assert metrics["total_llm_calls"] == 2
        assert metrics["total_tokens"] == 165
        assert metrics["total_cost"] == pytest.approx(0.004)
        assert metrics["duration_s"] is not None


class TestTraces:
    def test_open_trace_inherits_user_and_counts_toward_session(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id, name="chat.ask", input={"text": "hi"}, tags=["a"])
        assert trace.user_id == "user-1"
        assert trace.tags == ("a",)
        assert recorder.get_session(session.id).total_traces_count == 1

    def test_standalone_trace(self, recorder):
        trace = recorder.open_trace(name="job")
        assert trace.session_id is None
        done = recorder.finalize_trace(trace.id, output="ok")
        assert done.is_finalized

    def test_annotate_then_finalize(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id)
        recorder.annotate_trace(trace.id, {"step": 1})
        done = recorder.finalize_trace(trace.id, output="answer", metadata={"step": 2})
        assert done.metadata == {"step": 2}
        assert done.output == "answer"
        with pytest.raises(InvalidTransitionError):
            recorder.annotate_trace(trace.id, {"late": True})
        with pytest.raises(InvalidTransitionError):
            recorder.finalize_trace(trace.id)

    def test_delete_trace_updates_session_totals(self, recorder, session):
        kept = recorder.open_trace(session_id=session.id)
        dropped = recorder.open_trace(session_id=session.id)
        _generation(recorder, kept.id, cost="0.002", input_tokens=10, output_tokens=10)
        _generation(recorder, dropped.id, cost="0.005", input_tokens=50, output_tokens=50)
        assert recorder.get_session(session.id).total_cost == Decimal("0.007")

        recorder.delete_trace(dropped.id)

        refreshed = recorder.get_session(session.id)
        assert refreshed.total_cost == Decimal("0.002")
        assert refreshed.total_tokens == 20
        assert refreshed.total_traces_count == 1

    def test_delete_session_cascades(self, recorder, session, store):
        trace = recorder.open_trace(session_id=session.id)
        recorder.record_span(trace.id, name="step")
        recorder.delete_session(session.id)
        assert store.get_session(session.id) is None
        assert store.get_trace(trace.id) is None
        assert store.list_observations(trace.id) == []


class TestObservations:
    def test_kind_defaults_from_argument(self, recorder):
        trace = recorder.open_trace()
        observation = recorder.open_observation(trace.id, name="embed", kind=ObservationKind.EMBEDDING)
        assert observation.kind == ObservationKind.EMBEDDING
        assert observation.is_open

    def test_finalize_rolls_up_to_trace_and_session(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id)
        _generation(recorder, trace.id, cost="0.003", input_tokens=100, output_tokens=50)
        refreshed_trace = recorder.get_trace(trace.id)
        refreshed_session = recorder.get_session(session.id)
        assert refreshed_trace.total_cost == Decimal("0.003")
        assert refreshed_trace.total_tokens == 150
        assert refreshed_session.total_cost == Decimal("0.003")
        assert refreshed_session.total_llm_calls_count == 1

    def test_finalize_replaces_input(self, recorder):
        trace = recorder.open_trace()
        observation = recorder.open_observation(trace.id, name="transcribe", input={"audio": "..."})
        done = recorder.finalize_observation(observation.id, input="the transcript")
        assert done.input == "the transcript"

    def test_fail_observation(self, recorder):
        trace = recorder.open_trace()
        observation = recorder.open_observation(trace.id, name="llm_call", details=GenerationDetails())
        failed = recorder.fail_observation(
            observation.id, status_message="ERROR: boom", details={"finish_reason": "error"}
        )
        assert failed.status == ObservationStatus.FAILED
        assert failed.details.finish_reason == "error"
        with pytest.raises(InvalidTransitionError):
            recorder.finalize_observation(observation.id)

    def test_failed_observation_without_cost_contributes_zero(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id)
        observation = recorder.open_observation(trace.id, name="llm_call", details=GenerationDetails())
        recorder.fail_observation(observation.id)
        assert recorder.get_trace(trace.id).total_cost == Decimal(0)

    def test_record_span(self, recorder):
        trace = recorder.open_trace()
        parent = recorder.open_observation(trace.id, name="llm_call", details=GenerationDetails())
        span = recorder.record_span(
            trace.id, name="error", input={"x": 1}, output={"y": 2}, parent_observation_id=parent.id, level="ERROR"
        )
        assert span.status == ObservationStatus.OK
        assert span.parent_observation_id == parent.id
        assert isinstance(span.details, SpanDetails)
        assert span.details.level == "ERROR"
        assert span.output == {"y": 2}


class TestListeners:
    def test_notified_after_closing(self, recorder, session):
        listener = RecordingListener()
        recorder.add_listener(listener)
        trace = recorder.open_trace(session_id=session.id)
        observation = _generation(recorder, trace.id, cost="0", input_tokens=1, output_tokens=1)
        recorder.finalize_trace(trace.id)
        recorder.finalize_session(session.id)
        assert listener.events == [("observation", observation.id), ("trace", trace.id), ("session", session.id)]

    def test_add_listener_is_idempotent_and_removable(self, recorder):
        listener = RecordingListener()
        recorder.add_listener(listener)
        recorder.add_listener(listener)
        recorder.record_span(recorder.open_trace().id, name="x")
        assert len(listener.events) == 1
        recorder.remove_listener(listener)
        recorder.record_span(recorder.open_trace().id, name="y")
        assert len(listener.events) == 1

    def test_listener_failure_does_not_break_recording(self, recorder):
        recorder.add_listener(ExplodingListener())
        trace = recorder.open_trace()
        done = recorder.finalize_trace(trace.id)
        assert done.is_finalized
        assert recorder.get_trace(trace.id).is_finalized


class TestGlobalRecorder:
    def test_get_recorder_uses_global_store(self):
        store = MemoryTelemetryStore()
        set_recorder(None)
        set_telemetry_store(store)
        try:
            assert get_recorder().store is store
            assert get_recorder() is get_recorder()
        finally:
            set_recorder(None)
            set_telemetry_store(None)

    def test_fixture_installs_recorder(self, recorder):
        assert get_recorder() is recorder
