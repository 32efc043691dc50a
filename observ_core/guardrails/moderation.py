"""Content moderation guardrail.

Runs a trace's input/output (or a whole session's content) through a
moderation capability and queues the entity for review when the verdict or
category scores cross the thresholds. The moderation calls themselves are
instrumented and recorded under the guardrail's own service session.
"""

import json
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from observ_core.instrumentation import ObservableService, normalize_moderation
from observ_core.logging import get_pipeline_logger
from observ_core.models import EntityRef, ModerationDetails, ObservationKind, ReviewPriority, Session, Trace
from observ_core.observability import TelemetryRecorder, get_recorder, truncate
from observ_core.review import ReviewQueue

logger = get_pipeline_logger(__name__)

CRITICAL_THRESHOLD = 0.9
HIGH_THRESHOLD = 0.7
REVIEW_THRESHOLD = 0.5

CRITICAL_CATEGORIES = frozenset({"sexual/minors", "self-harm/intent", "self-harm/instructions", "violence/graphic"})

CONTENT_SEPARATOR = "\n\n---\n\n"
SESSION_CONTENT_LIMIT = 10_000
MODERATION_REASON = "content_moderation"


class ModerationAction(StrEnum):
    FLAGGED = "flagged"
    PASSED = "passed"
    SKIPPED = "skipped"


class ModerationResult(BaseModel):
    """What the guardrail did with one entity."""

    model_config = ConfigDict(frozen=True)

    action: ModerationAction
    reason: str | None = None
    priority: ReviewPriority | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def flagged(self) -> bool:
        return self.action == ModerationAction.FLAGGED

    @property
    def passed(self) -> bool:
        return self.action == ModerationAction.PASSED

    @property
    def skipped(self) -> bool:
        return self.action == ModerationAction.SKIPPED


def extract_text(content: Any) -> str | None:
    """Pull the human-readable text out of a trace input or output."""
    if content is None or content == "" or content == {} or content == []:
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        for key in ("text", "content", "message"):
            if content.get(key):
                return str(content[key])
        return json.dumps(content, default=str)
    return str(content)


def determine_priority(verdict: Mapping[str, Any]) -> ReviewPriority | None:
    """Review priority for a normalized moderation verdict, or ``None`` to pass."""
    if CRITICAL_CATEGORIES.intersection(verdict["flagged_categories"]):
        return ReviewPriority.CRITICAL
    max_score = max(verdict["category_scores"].values(), default=0.0)
    if verdict["flagged"]:
        return ReviewPriority.CRITICAL if max_score >= CRITICAL_THRESHOLD else ReviewPriority.HIGH
    if max_score >= HIGH_THRESHOLD:
        return ReviewPriority.HIGH
    if max_score >= REVIEW_THRESHOLD:
        return ReviewPriority.NORMAL
    return None


def build_details(verdict: Mapping[str, Any]) -> dict[str, Any]:
    scores: dict[str, float] = verdict["category_scores"]
    highest = max(scores.items(), key=lambda item: item[1]) if scores else None
    return {
        "flagged": verdict["flagged"],
        "flagged_categories": list(verdict["flagged_categories"]),
        "highest_category": highest[0] if highest else None,
        "highest_score": round(highest[1], 4) if highest else None,
        "category_scores": {name: round(score, 4) for name, score in scores.items()},
    }


class ModerationGuardrail(ObservableService):
    """Queues traces and sessions whose content fails moderation."""

    def __init__(
        self,
        moderate: Callable[..., Any],
        *,
        session: Session | None = None,
        recorder: TelemetryRecorder | None = None,
        queue: ReviewQueue | None = None,
    ) -> None:
        self._moderate = moderate
        recorder = recorder or get_recorder()
        self._store = recorder.store
        self._queue = queue or ReviewQueue(self._store)
        self.init_observability(session, service_name="moderation_guardrail", recorder=recorder)

    def evaluate_trace(self, trace: Trace, *, moderate_input: bool = True, moderate_output: bool = True) -> ModerationResult:
        ref = EntityRef.trace(trace.id)
        try:
            if self._queue.in_review_queue(ref):
                return ModerationResult(action=ModerationAction.SKIPPED, reason="already_in_queue")
            if self._has_flagged_moderation(trace):
                return ModerationResult(action=ModerationAction.SKIPPED, reason="already_has_moderation")
            with self.observability():
                parts: list[str | None] = []
                if moderate_input:
                    parts.append(extract_text(trace.input))
                if moderate_output:
                    parts.append(extract_text(trace.output))
                content = CONTENT_SEPARATOR.join(p for p in parts if p and p.strip())
                if not content:
                    return ModerationResult(action=ModerationAction.SKIPPED, reason="no_content")
                return self._moderate_and_enqueue(ref, content, {"trace_id": trace.id})
        except Exception as e:
            logger.error(f"Failed to moderate trace {trace.id}: {e}")
            return ModerationResult(action=ModerationAction.SKIPPED, reason="error", details={"error": str(e)})

    def evaluate_session(self, session: Session) -> list[ModerationResult]:
        """Moderate each of the session's traces separately."""
        return [self.evaluate_trace(trace) for trace in self._store.list_traces(session.id)]

    def evaluate_session_content(self, session: Session) -> ModerationResult:
        """Moderate the session's aggregated trace content as one text."""
        ref = EntityRef.session(session.id)
        try:
            if self._queue.in_review_queue(ref):
                return ModerationResult(action=ModerationAction.SKIPPED, reason="already_in_queue")
            with self.observability():
                parts: list[str] = []
                for trace in self._store.list_traces(session.id):
                    for text in (extract_text(trace.input), extract_text(trace.output)):
                        if text and text.strip():
                            parts.append(text)
                content = truncate(CONTENT_SEPARATOR.join(parts), SESSION_CONTENT_LIMIT)
                if not content:
                    return ModerationResult(action=ModerationAction.SKIPPED, reason="no_content")
                return self._moderate_and_enqueue(ref, content, {"session_id": session.id})
        except Exception as e:
            logger.error(f"Failed to moderate session {session.id}: {e}")
            return ModerationResult(action=ModerationAction.SKIPPED, reason="error", details={"error": str(e)})

    def _has_flagged_moderation(self, trace: Trace) -> bool:
        for observation in self._store.list_observations(trace.id):
            if observation.kind == ObservationKind.MODERATION and isinstance(observation.details, ModerationDetails):
                if observation.details.flagged:
                    return True
        return False

    def _moderate_and_enqueue(self, ref: EntityRef, content: str, context: dict[str, Any]) -> ModerationResult:
        moderate = self.instrument_moderation(
            self._moderate,
            context={"service": "moderation_guardrail", "content_length": len(content), **context},
        )
        verdict = normalize_moderation(moderate(content))
        priority = determine_priority(verdict)
        if priority is None:
            return ModerationResult(action=ModerationAction.PASSED)
        details = build_details(verdict)
        self._queue.enqueue(ref, reason=MODERATION_REASON, priority=priority, details=details)
        logger.info(f"{ref} flagged by moderation ({priority}): {details['flagged_categories']}")
        return ModerationResult(action=ModerationAction.FLAGGED, priority=priority, details=details)
