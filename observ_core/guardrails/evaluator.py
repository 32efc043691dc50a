"""Rule-based guardrail evaluation feeding the review queue.

Rules run in configured order and the first match enqueues exactly one
ReviewItem. Entities that already own a ReviewItem are skipped, and the
store's uniqueness guard covers the race where two evaluators flag the same
entity at once, so evaluation is idempotent and needs no locking.
"""

import math
import random
from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from observ_core.exceptions import EntityNotFoundError, RuleEvaluationError
from observ_core.logging import get_pipeline_logger
from observ_core.models import EntityRef, EntityType, ReviewItem, ReviewPriority, Session, Trace, utcnow
from observ_core.review import ReviewQueue
from observ_core.settings import settings
from observ_core.store import TelemetryStore

from .config import GuardrailConfig
from .rules import Rule, build_session_rules, build_trace_rules

logger = get_pipeline_logger(__name__)

RANDOM_SAMPLE_REASON = "random_sample"


class SweepResult(BaseModel):
    """Outcome of a batch evaluation pass."""

    model_config = ConfigDict(frozen=True)

    evaluated: int = 0
    enqueued: tuple[ReviewItem, ...] = ()
    failed: tuple[EntityRef, ...] = ()


class GuardrailEvaluator:
    """Applies ordered trace and session rules and queues matches for review."""

    def __init__(
        self,
        store: TelemetryStore,
        config: GuardrailConfig | None = None,
        *,
        queue: ReviewQueue | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._config = config or GuardrailConfig.from_settings(settings)
        self._queue = queue or ReviewQueue(store)
        self._rng = rng or random.Random()
        self._trace_rules = build_trace_rules(self._config)
        self._session_rules = build_session_rules(self._config)

    @property
    def config(self) -> GuardrailConfig:
        return self._config

    @property
    def queue(self) -> ReviewQueue:
        return self._queue

    @property
    def trace_rules(self) -> list[Rule[Trace]]:
        return list(self._trace_rules)

    @property
    def session_rules(self) -> list[Rule[Session]]:
        return list(self._session_rules)

    # --- Single entity ---

    def evaluate_trace(self, trace: Trace) -> ReviewItem | None:
        """Queue ``trace`` under its first matching rule. Returns the new item, if any."""
        return self._evaluate(EntityRef.trace(trace.id), trace, self._trace_rules)

    def evaluate_session(self, session: Session) -> ReviewItem | None:
        """Queue ``session`` under its first matching rule. Returns the new item, if any."""
        return self._evaluate(EntityRef.session(session.id), session, self._session_rules)

    def evaluate(self, ref: EntityRef) -> ReviewItem | None:
        """Load the referenced trace or session and evaluate it."""
        if ref.type == EntityType.TRACE:
            trace = self._store.get_trace(ref.id)
            if trace is None:
                raise EntityNotFoundError(f"{ref} not found")
            return self.evaluate_trace(trace)
        if ref.type == EntityType.SESSION:
            session = self._store.get_session(ref.id)
            if session is None:
                raise EntityNotFoundError(f"{ref} not found")
            return self.evaluate_session(session)
        raise ValueError(f"{ref.type} entities are not evaluated by guardrails")

    def _evaluate(self, ref: EntityRef, entity: Trace | Session, rules: Sequence[Rule]) -> ReviewItem | None:
        if self._store.find_review_item(ref) is not None:
            return None
        for rule in rules:
            try:
                if not rule.matches(entity):
                    continue
                details = rule.describe(entity)
            except Exception as e:
                raise RuleEvaluationError(rule.name, ref, e) from e
            return self._queue.enqueue(ref, reason=rule.name, priority=rule.priority, details=details)
        return None

    # --- Batch sweeps ---

    def evaluate_all_recent(self, since: datetime | None = None) -> SweepResult:
        """Evaluate every trace and session started within the sweep window.

        A failure on one entity is logged and recorded in the result; the
        sweep continues with the next entity.
        """
        since = since or utcnow() - self._config.sweep_window
        evaluated = 0
        enqueued: list[ReviewItem] = []
        failed: list[EntityRef] = []

        candidates: list[tuple[EntityRef, Trace | Session]] = [
            (EntityRef.trace(t.id), t) for t in self._store.list_traces_since(since)
        ] + [(EntityRef.session(s.id), s) for s in self._store.list_sessions_since(since)]

        for ref, entity in candidates:
            evaluated += 1
            try:
                rules: Sequence[Rule] = self._trace_rules if isinstance(entity, Trace) else self._session_rules
                item = self._evaluate(ref, entity, rules)
            except Exception as e:
                logger.error(f"Guardrail evaluation failed for {ref}: {e}")
                failed.append(ref)
                continue
            if item is not None:
                enqueued.append(item)

        logger.info(f"Guardrail sweep since {since.isoformat()}: {evaluated} evaluated, {len(enqueued)} queued, {len(failed)} failed")
        return SweepResult(evaluated=evaluated, enqueued=tuple(enqueued), failed=tuple(failed))

    def random_sample(
        self,
        entity_type: EntityType = EntityType.TRACE,
        *,
        percentage: float | None = None,
        since: datetime | None = None,
    ) -> list[ReviewItem]:
        """Queue a random share of recent, not-yet-queued entities with reason ``random_sample``.

        The sample size is ``ceil(percentage% of eligible)``, at least 1 when
        anything is eligible.
        """
        percentage = self._config.sample_percentage if percentage is None else percentage
        since = since or utcnow() - self._config.sample_window
        if entity_type == EntityType.TRACE:
            refs = [EntityRef.trace(t.id) for t in self._store.list_traces_since(since)]
        elif entity_type == EntityType.SESSION:
            refs = [EntityRef.session(s.id) for s in self._store.list_sessions_since(since)]
        else:
            raise ValueError(f"{entity_type} entities cannot be sampled for review")

        eligible = [ref for ref in refs if self._store.find_review_item(ref) is None]
        if not eligible:
            return []
        size = min(max(math.ceil(len(eligible) * percentage / 100), 1), len(eligible))

        items: list[ReviewItem] = []
        for ref in self._rng.sample(eligible, size):
            try:
                item = self._queue.enqueue(ref, reason=RANDOM_SAMPLE_REASON, priority=ReviewPriority.NORMAL)
            except Exception as e:
                logger.error(f"Random sample enqueue failed for {ref}: {e}")
                continue
            if item is not None:
                items.append(item)
        logger.info(f"Random sample: queued {len(items)} of {len(eligible)} eligible {entity_type}s")
        return items
