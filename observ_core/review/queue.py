"""Review queue: ReviewItem lifecycle and next-item selection for human triage.

Selection order among actionable items (``pending`` / ``in_progress``) is
priority descending, then creation time ascending. A reviewable owns at most
one ReviewItem; the store rejects a second insert, which makes ``enqueue``
safe to call repeatedly or concurrently.
"""

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict

from observ_core.exceptions import DuplicateReviewItemError, EntityNotFoundError
from observ_core.logging import get_pipeline_logger
from observ_core.models import (
    EntityRef,
    EntityType,
    ReviewItem,
    ReviewPriority,
    ReviewStatus,
    ScoreDataType,
    ScoreSource,
    utcnow,
)
from observ_core.store import TelemetryStore

from .scores import MANUAL_SCORE_NAME, ScoreBook

logger = get_pipeline_logger(__name__)

NOT_QUEUED = "not_queued"
ACTIONABLE_STATUSES = (ReviewStatus.PENDING, ReviewStatus.IN_PROGRESS)


class QueuePosition(BaseModel):
    """1-based position of an item among actionable items."""

    model_config = ConfigDict(frozen=True)

    current: int
    total: int


class QueueStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    pending: int
    in_progress: int
    completed_today: int
    completed_this_week: int


class DetailedQueueStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_pending: int
    total_completed: int
    completed_today: int
    completed_this_week: int
    by_reason: dict[str, int]
    by_priority: dict[str, int]
    pass_rate: float | None


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_week(now: datetime) -> datetime:
    return _start_of_day(now) - timedelta(days=now.weekday())


class ReviewQueue:
    """ReviewItem state machine and selection policy over a telemetry store."""

    def __init__(
        self,
        store: TelemetryStore,
        *,
        scores: ScoreBook | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._scores = scores or ScoreBook(store)
        self._clock = clock

    @property
    def scores(self) -> ScoreBook:
        return self._scores

    # --- Enqueueing ---

    def _require_reviewable(self, reviewable: EntityRef) -> None:
        if reviewable.type == EntityType.SESSION:
            found: Any = self._store.get_session(reviewable.id)
        elif reviewable.type == EntityType.TRACE:
            found = self._store.get_trace(reviewable.id)
        else:
            raise ValueError(f"{reviewable.type} entities cannot be reviewed")
        if found is None:
            raise EntityNotFoundError(f"{reviewable} not found")

    def enqueue(
        self,
        reviewable: EntityRef,
        *,
        reason: str,
        priority: ReviewPriority = ReviewPriority.NORMAL,
        details: dict[str, Any] | None = None,
    ) -> ReviewItem | None:
        """Create a pending item. Returns ``None`` when the reviewable is already queued."""
        self._require_reviewable(reviewable)
        item = ReviewItem(reviewable=reviewable, reason=reason, priority=priority, reason_details=details or {})
        try:
            item = self._store.insert_review_item(item)
        except DuplicateReviewItemError:
            logger.debug(f"{reviewable} already queued for review")
            return None
        logger.info(f"Queued {reviewable} for review: {reason} ({priority})")
        return item

    def enqueue_for_review(
        self,
        reviewable: EntityRef,
        *,
        reason: str = "manual",
        priority: ReviewPriority = ReviewPriority.NORMAL,
        details: dict[str, Any] | None = None,
    ) -> ReviewItem:
        """Queue a reviewable on request, returning its existing item if it already has one."""
        existing = self._store.find_review_item(reviewable)
        if existing is not None:
            return existing
        created = self.enqueue(reviewable, reason=reason, priority=priority, details=details)
        if created is not None:
            return created
        existing = self._store.find_review_item(reviewable)
        if existing is None:
            raise EntityNotFoundError(f"Review item for {reviewable} disappeared")
        return existing

    # --- Per-reviewable queries ---

    def review_item(self, reviewable: EntityRef) -> ReviewItem | None:
        return self._store.find_review_item(reviewable)

    def in_review_queue(self, reviewable: EntityRef) -> bool:
        return self._store.find_review_item(reviewable) is not None

    def review_status(self, reviewable: EntityRef) -> str:
        """The item's status, or ``"not_queued"``."""
        item = self._store.find_review_item(reviewable)
        return str(item.status) if item is not None else NOT_QUEUED

    def is_reviewed(self, reviewable: EntityRef) -> bool:
        item = self._store.find_review_item(reviewable)
        return item is not None and item.status == ReviewStatus.COMPLETED

    def is_pending_review(self, reviewable: EntityRef) -> bool:
        item = self._store.find_review_item(reviewable)
        return item is not None and item.is_actionable

    # --- Transitions ---

    def get(self, item_id: str) -> ReviewItem:
        item = self._store.get_review_item(item_id)
        if item is None:
            raise EntityNotFoundError(f"Review item {item_id} not found")
        return item

    def open(self, item_id: str) -> ReviewItem:
        """Load an item for review, moving ``pending`` to ``in_progress``."""
        with self._store.unit_of_work():
            item = self.get(item_id)
            started = item.start_review()
            if started is item:
                return item
            return self._store.update_review_item(started)

    def complete(
        self,
        item_id: str,
        *,
        by: str | None = None,
        judgment: Any = None,
        comment: str | None = None,
    ) -> ReviewItem:
        """Finish a review. A ``judgment`` is recorded as the reviewable's manual pass/fail score."""
        with self._store.unit_of_work():
            item = self._store.update_review_item(self.get(item_id).complete(by=by))
            if judgment is not None:
                self._scores.record(
                    item.reviewable,
                    judgment,
                    name=MANUAL_SCORE_NAME,
                    source=ScoreSource.MANUAL,
                    data_type=ScoreDataType.BOOLEAN,
                    comment=comment,
                    created_by=by,
                )
        logger.info(f"Review {item.id} completed by {by or 'unknown'}")
        return item

    def skip(self, item_id: str, *, by: str | None = None) -> ReviewItem:
        with self._store.unit_of_work():
            item = self._store.update_review_item(self.get(item_id).skip(by=by))
        logger.info(f"Review {item.id} skipped by {by or 'unknown'}")
        return item

    # --- Selection ---

    def actionable(self, reviewable_type: EntityType | None = None) -> list[ReviewItem]:
        """Actionable items in queue order."""
        items = self._store.list_review_items(statuses=ACTIONABLE_STATUSES, reviewable_type=reviewable_type)
        return sorted(items, key=lambda item: item.sort_key())

    def next_item(self, *, exclude: str | None = None, reviewable_type: EntityType | None = None) -> ReviewItem | None:
        """The item a reviewer should see next, skipping ``exclude`` (the item just acted on)."""
        for item in self.actionable(reviewable_type):
            if item.id != exclude:
                return item
        return None

    def queue_position(self, item_id: str) -> QueuePosition:
        item = self.get(item_id)
        actionable = self._store.list_review_items(statuses=ACTIONABLE_STATUSES)
        ahead = sum(
            1
            for other in actionable
            if other.priority.rank > item.priority.rank
            or (other.priority == item.priority and other.created_at < item.created_at)
        )
        return QueuePosition(current=ahead + 1, total=len(actionable))

    # --- Reporting ---

    def _completed_since(self, items: list[ReviewItem], since: datetime) -> int:
        return sum(1 for item in items if item.completed_at is not None and item.completed_at >= since)

    def stats(self, reviewable_type: EntityType | None = None) -> QueueStats:
        items = self._store.list_review_items(reviewable_type=reviewable_type)
        completed = [item for item in items if item.status == ReviewStatus.COMPLETED]
        now = self._clock()
        return QueueStats(
            pending=sum(1 for item in items if item.status == ReviewStatus.PENDING),
            in_progress=sum(1 for item in items if item.status == ReviewStatus.IN_PROGRESS),
            completed_today=self._completed_since(completed, _start_of_day(now)),
            completed_this_week=self._completed_since(completed, _start_of_week(now)),
        )

    def pass_rate(self, completed: list[ReviewItem] | None = None) -> float | None:
        """Percentage of completed items whose manual score passed. ``None`` when nothing is completed."""
        if completed is None:
            completed = self._store.list_review_items(statuses=[ReviewStatus.COMPLETED])
        if not completed:
            return None
        passed = 0
        for item in completed:
            score = self._scores.manual_score(item.reviewable)
            if score is not None and score.passed:
                passed += 1
        return round(passed / len(completed) * 100, 1)

    def detailed_stats(self) -> DetailedQueueStats:
        items = self._store.list_review_items()
        completed = [item for item in items if item.status == ReviewStatus.COMPLETED]
        now = self._clock()
        return DetailedQueueStats(
            total_pending=sum(1 for item in items if item.is_actionable),
            total_completed=len(completed),
            completed_today=self._completed_since(completed, _start_of_day(now)),
            completed_this_week=self._completed_since(completed, _start_of_week(now)),
            by_reason=dict(Counter(item.reason for item in items)),
            by_priority=dict(Counter(str(item.priority) for item in items)),
            pass_rate=self.pass_rate(completed),
        )
