"""Tests for the content moderation guardrail."""

import pytest

from observ_core.guardrails import ModerationGuardrail, determine_priority, extract_text
from observ_core.models import EntityRef, ModerationDetails, ObservationKind, ReviewPriority
from tests.support.fakes import FakeModerator, moderation_verdict


def verdict(flagged: bool = False, **scores: float) -> dict:
    categories = {name: flagged and score >= 0.5 for name, score in scores.items()}
    return moderation_verdict(flagged=flagged, scores=scores, categories=categories)


@pytest.fixture
def finished_trace(recorder, session):
    trace = recorder.open_trace(session_id=session.id, input={"message": "how do I reset my password?"})
    return recorder.finalize_trace(trace.id, output="Use the reset link on the login page.")


def make_guardrail(recorder, moderator: FakeModerator) -> ModerationGuardrail:
    return ModerationGuardrail(moderator, recorder=recorder)


class TestDeterminePriority:
    def _normalized(self, flagged=False, flagged_categories=(), **scores):
        return {"flagged": flagged, "flagged_categories": list(flagged_categories), "category_scores": scores}

    def test_critical_category_always_critical(self):
        priority = determine_priority(self._normalized(True, ["self-harm/intent"], **{"self-harm/intent": 0.3}))
        assert priority == ReviewPriority.CRITICAL

    def test_flagged_by_score(self):
        assert determine_priority(self._normalized(True, ["violence"], violence=0.95)) == ReviewPriority.CRITICAL
        assert determine_priority(self._normalized(True, ["violence"], violence=0.8)) == ReviewPriority.HIGH

    def test_unflagged_by_score(self):
        assert determine_priority(self._normalized(hate=0.75)) == ReviewPriority.HIGH
        assert determine_priority(self._normalized(hate=0.55)) == ReviewPriority.NORMAL
        assert determine_priority(self._normalized(hate=0.2)) is None
        assert determine_priority(self._normalized()) is None


class TestExtractText:
    def test_strings_pass_through(self):
        assert extract_text("hello") == "hello"

    def test_mapping_keys_in_order(self):
        assert extract_text({"content": "c", "message": "m"}) == "c"
        assert extract_text({"message": "m"}) == "m"

    def test_other_mappings_are_dumped(self):
        assert extract_text({"query": "q"}) == '{"query": "q"}'

    @pytest.mark.parametrize("value", [None, "", {}, []])
    def test_empty(self, value):
        assert extract_text(value) is None


class TestEvaluateTrace:
    def test_flagged_trace_is_queued(self, recorder, finished_trace):
        moderator = FakeModerator(verdict(True, violence=0.95, hate=0.1))
        result = make_guardrail(recorder, moderator).evaluate_trace(finished_trace)

        assert result.flagged
        assert result.priority == ReviewPriority.CRITICAL
        assert result.details["highest_category"] == "violence"
        assert result.details["highest_score"] == 0.95
        assert result.details["flagged_categories"] == ["violence"]

        item = recorder.store.find_review_item(EntityRef.trace(finished_trace.id))
        assert item.reason == "content_moderation"
        assert item.priority == ReviewPriority.CRITICAL
        assert item.reason_details["category_scores"] == {"violence": 0.95, "hate": 0.1}

    def test_input_and_output_are_joined(self, recorder, finished_trace):
        moderator = FakeModerator()
        make_guardrail(recorder, moderator).evaluate_trace(finished_trace)
        assert moderator.inputs == [
            "how do I reset my password?\n\n---\n\nUse the reset link on the login page."
        ]

    def test_input_only(self, recorder, finished_trace):
        moderator = FakeModerator()
        make_guardrail(recorder, moderator).evaluate_trace(finished_trace, moderate_output=False)
        assert moderator.inputs == ["how do I reset my password?"]

    def test_low_scores_pass(self, recorder, finished_trace):
        result = make_guardrail(recorder, FakeModerator()).evaluate_trace(finished_trace)
        assert result.passed
        assert not recorder.store.list_review_items()

    def test_no_content_skips_without_calling(self, recorder, session):
        trace = recorder.finalize_trace(recorder.open_trace(session_id=session.id).id)
        moderator = FakeModerator()
        result = make_guardrail(recorder, moderator).evaluate_trace(trace)
        assert result.skipped
        assert result.reason == "no_content"
        assert moderator.inputs == []

    def test_already_queued(self, recorder, finished_trace):
        guardrail = make_guardrail(recorder, FakeModerator(verdict(True, violence=0.95)))
        guardrail._queue.enqueue(EntityRef.trace(finished_trace.id), reason="manual")
        result = guardrail.evaluate_trace(finished_trace)
        assert result.reason == "already_in_queue"

    def test_existing_flagged_moderation(self, recorder, session):
        trace = recorder.open_trace(session_id=session.id, input="text")
        observation = recorder.open_observation(
            trace.id, name="moderate", details=ModerationDetails(flagged=True, flagged_categories=("hate",))
        )
        recorder.finalize_observation(observation.id)
        trace = recorder.finalize_trace(trace.id, output="more")

        moderator = FakeModerator(verdict(True, hate=0.99))
        result = make_guardrail(recorder, moderator).evaluate_trace(trace)
        assert result.reason == "already_has_moderation"
        assert moderator.inputs == []

    def test_moderation_error_is_reported(self, recorder, finished_trace):
        moderator = FakeModerator(error=RuntimeError("moderation unavailable"))
        result = make_guardrail(recorder, moderator).evaluate_trace(finished_trace)
        assert result.skipped
        assert result.reason == "error"
        assert "moderation unavailable" in result.details["error"]

    def test_moderation_call_is_recorded_in_own_session(self, recorder, finished_trace):
        guardrail = make_guardrail(recorder, FakeModerator(verdict(True, violence=0.95)))
        guardrail.evaluate_trace(finished_trace)

        own_session = guardrail.observability_session
        assert own_session.id != finished_trace.session_id
        assert own_session.metadata["agent_type"] == "moderation_guardrail"
        assert own_session.is_finalized

        [call_trace] = recorder.store.list_traces(own_session.id)
        [observation] = recorder.store.list_observations(call_trace.id)
        assert observation.kind == ObservationKind.MODERATION
        assert observation.details.flagged is True


class TestEvaluateSession:
    def test_each_trace_separately(self, recorder, session):
        for text in ("first", "second"):
            trace = recorder.open_trace(session_id=session.id, input=text)
            recorder.finalize_trace(trace.id, output=f"reply to {text}")
        moderator = FakeModerator()
        results = make_guardrail(recorder, moderator).evaluate_session(session)
        assert [r.passed for r in results] == [True, True]
        assert len(moderator.inputs) == 2

    def test_session_content_as_one_text(self, recorder, session):
        for text in ("first", "second"):
            trace = recorder.open_trace(session_id=session.id, input=text)
            recorder.finalize_trace(trace.id, output=f"reply to {text}")
        moderator = FakeModerator(verdict(False, harassment=0.6))
        result = make_guardrail(recorder, moderator).evaluate_session_content(session)

        assert moderator.inputs == ["first\n\n---\n\nreply to first\n\n---\n\nsecond\n\n---\n\nreply to second"]
        assert result.flagged
        assert result.priority == ReviewPriority.NORMAL
        item = recorder.store.find_review_item(EntityRef.session(session.id))
        assert item.reason == "content_moderation"

    def test_empty_session(self, recorder, session):
        result = make_guardrail(recorder, FakeModerator()).evaluate_session_content(session)
        assert result.reason == "no_content"
