"""Tests for ReviewQueue: enqueueing, transitions, ordering and statistics."""

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest

from observ_core.exceptions import EntityNotFoundError, InvalidTransitionError
from observ_core.models import EntityRef, EntityType, ReviewItem, ReviewPriority, ReviewStatus, ScoreSource
from observ_core.review import NOT_QUEUED, ReviewQueue

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)  # a Wednesday


@pytest.fixture
def queue(store) -> ReviewQueue:
    return ReviewQueue(store, clock=lambda: NOW)


@pytest.fixture
def trace_ref(recorder, session) -> EntityRef:
    return EntityRef.trace(recorder.open_trace(session_id=session.id).id)


def _insert(store, *, priority=ReviewPriority.NORMAL, created_at=NOW, status=ReviewStatus.PENDING, **kwargs) -> ReviewItem:
    ref = kwargs.pop("reviewable", None) or EntityRef.trace(f"t-{priority}-{created_at.isoformat()}-{status}")
    return store.insert_review_item(
        ReviewItem(reviewable=ref, priority=priority, created_at=created_at, status=status, **kwargs)
    )


class TestEnqueue:
    def test_enqueue_creates_pending_item(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="high_cost", priority=ReviewPriority.HIGH, details={"cost": 0.2})
        assert item.status == ReviewStatus.PENDING
        assert item.reason == "high_cost"
        assert item.reason_details == {"cost": 0.2}
        assert queue.review_status(trace_ref) == "pending"

    def test_second_enqueue_returns_none(self, queue, trace_ref, store):
        assert queue.enqueue(trace_ref, reason="a") is not None
        assert queue.enqueue(trace_ref, reason="b") is None
        assert len(store.list_review_items()) == 1
        assert queue.review_item(trace_ref).reason == "a"

    def test_missing_reviewable_rejected(self, queue):
        with pytest.raises(EntityNotFoundError):
            queue.enqueue(EntityRef.trace("missing"), reason="x")

    def test_observation_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue(EntityRef.observation("o1"), reason="x")

    def test_enqueue_for_review_returns_existing(self, queue, trace_ref):
        first = queue.enqueue_for_review(trace_ref)
        assert first.reason == "manual"
        assert queue.enqueue_for_review(trace_ref, reason="other") == first

    def test_session_reviewable(self, queue, session):
        item = queue.enqueue(EntityRef.session(session.id), reason="short_session")
        assert item.reviewable.type == EntityType.SESSION


class TestQueries:
    def test_not_queued(self, queue, trace_ref):
        assert queue.review_status(trace_ref) == NOT_QUEUED
        assert not queue.in_review_queue(trace_ref)
        assert not queue.is_reviewed(trace_ref)
        assert not queue.is_pending_review(trace_ref)
        assert queue.review_item(trace_ref) is None

    def test_pending_then_reviewed(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="x")
        assert queue.is_pending_review(trace_ref)
        queue.complete(item.id, by="alice")
        assert queue.is_reviewed(trace_ref)
        assert not queue.is_pending_review(trace_ref)
        assert queue.review_status(trace_ref) == "completed"


class TestTransitions:
    def test_open_moves_to_in_progress_once(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="x")
        opened = queue.open(item.id)
        assert opened.status == ReviewStatus.IN_PROGRESS
        assert queue.open(item.id) == opened

    def test_complete_records_manual_score(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="x")
        queue.open(item.id)
        done = queue.complete(item.id, by="alice", judgment="1", comment="looks right")
        assert done.status == ReviewStatus.COMPLETED
        assert done.completed_by == "alice"
        assert done.completed_at is not None

        score = queue.scores.manual_score(trace_ref)
        assert score.value == 1.0
        assert score.source == ScoreSource.MANUAL
        assert score.comment == "looks right"
        assert score.created_by == "alice"

    def test_complete_directly_from_pending(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="x")
        assert queue.complete(item.id).status == ReviewStatus.COMPLETED

    def test_skip_then_complete_rejected(self, queue, trace_ref):
        item = queue.enqueue(trace_ref, reason="x")
        skipped = queue.skip(item.id, by="bob")
        assert skipped.status == ReviewStatus.SKIPPED
        with pytest.raises(InvalidTransitionError):
            queue.complete(item.id)
        with pytest.raises(InvalidTransitionError):
            queue.skip(item.id)

    def test_unknown_item(self, queue):
        with pytest.raises(EntityNotFoundError):
            queue.open("missing")

    def test_concurrent_complete_and_skip_have_one_winner(self, queue, store, trace_ref, monkeypatch):
        item = queue.enqueue(trace_ref, reason="x")
        read_started = threading.Event()
        original_get = store.get_review_item

        def slow_get(item_id):
            found = original_get(item_id)
            read_started.set()
            time.sleep(0.05)
            return found

        monkeypatch.setattr(store, "get_review_item", slow_get)
        outcomes: dict[str, object] = {}

        def run(name, action):
            try:
                outcomes[name] = action(item.id)
            except InvalidTransitionError as exc:
                outcomes[name] = exc

        completer = threading.Thread(target=run, args=("complete", queue.complete))
        skipper = threading.Thread(target=run, args=("skip", queue.skip))
        completer.start()
        assert read_started.wait(timeout=2)
        skipper.start()
        completer.join(timeout=5)
        skipper.join(timeout=5)

        assert outcomes["complete"].status == ReviewStatus.COMPLETED
        assert isinstance(outcomes["skip"], InvalidTransitionError)
        assert store.get_review_item(item.id).status == ReviewStatus.COMPLETED


class TestSelection:
    def test_priority_then_fifo(self, queue, store):
        old_normal = _insert(store, created_at=NOW - timedelta(hours=3))
        new_high = _insert(store, priority=ReviewPriority.HIGH, created_at=NOW - timedelta(hours=1))
        old_high = _insert(store, priority=ReviewPriority.HIGH, created_at=NOW - timedelta(hours=2))
        critical = _insert(store, priority=ReviewPriority.CRITICAL, created_at=NOW)
        _insert(store, priority=ReviewPriority.CRITICAL, created_at=NOW - timedelta(days=1), status=ReviewStatus.COMPLETED)

        assert [i.id for i in queue.actionable()] == [critical.id, old_high.id, new_high.id, old_normal.id]
        assert queue.next_item().id == critical.id
        assert queue.next_item(exclude=critical.id).id == old_high.id

    def test_in_progress_items_remain_actionable(self, queue, store):
        item = _insert(store, status=ReviewStatus.IN_PROGRESS)
        assert queue.next_item().id == item.id

    def test_filter_by_type(self, queue, store):
        _insert(store, priority=ReviewPriority.CRITICAL)
        session_item = _insert(store, reviewable=EntityRef.session("s1"))
        assert queue.next_item(reviewable_type=EntityType.SESSION).id == session_item.id

    def test_empty_queue(self, queue):
        assert queue.next_item() is None

    def test_queue_position(self, queue, store):
        first = _insert(store, priority=ReviewPriority.HIGH, created_at=NOW - timedelta(hours=1))
        second = _insert(store, priority=ReviewPriority.HIGH, created_at=NOW)
        third = _insert(store, created_at=NOW - timedelta(days=1))
        assert queue.queue_position(first.id).model_dump() == {"current": 1, "total": 3}
        assert queue.queue_position(second.id).current == 2
        assert queue.queue_position(third.id).current == 3


class TestStats:
    def test_counts_by_window(self, queue, store):
        _insert(store)
        _insert(store, status=ReviewStatus.IN_PROGRESS)
        _insert(store, status=ReviewStatus.COMPLETED, completed_at=NOW - timedelta(hours=3))
        _insert(store, status=ReviewStatus.COMPLETED, completed_at=NOW - timedelta(days=2), created_at=NOW - timedelta(days=2))
        _insert(store, status=ReviewStatus.COMPLETED, completed_at=NOW - timedelta(days=4), created_at=NOW - timedelta(days=4))

        stats = queue.stats()
        assert stats.pending == 1
        assert stats.in_progress == 1
        assert stats.completed_today == 1
        assert stats.completed_this_week == 2

    def test_pass_rate(self, recorder, session, store):
        queue = ReviewQueue(store)
        refs = [EntityRef.trace(recorder.open_trace(session_id=session.id).id) for _ in range(3)]
        assert queue.pass_rate() is None
        for ref, judgment in zip(refs, (1, 1, 0), strict=True):
            item = queue.enqueue(ref, reason="sample")
            queue.complete(item.id, judgment=judgment)
        assert queue.pass_rate() == 66.7

    def test_detailed_stats(self, recorder, session, store):
        queue = ReviewQueue(store)
        high = queue.enqueue(EntityRef.trace(recorder.open_trace(session_id=session.id).id), reason="high_cost", priority=ReviewPriority.HIGH)
        queue.enqueue(EntityRef.trace(recorder.open_trace(session_id=session.id).id), reason="high_cost")
        queue.enqueue(EntityRef.session(session.id), reason="short_session")
        queue.complete(high.id, judgment=True)

        stats = queue.detailed_stats()
        assert stats.total_pending == 2
        assert stats.total_completed == 1
        assert stats.completed_today == 1
        assert stats.by_reason == {"high_cost": 2, "short_session": 1}
        assert stats.by_priority == {"high": 1, "normal": 2}
        assert stats.pass_rate == 100.0
