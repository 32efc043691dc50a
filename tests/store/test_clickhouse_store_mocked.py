"""Tests for ClickHouseTelemetryStore against a mocked clickhouse_connect client."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from observ_core.exceptions import DuplicateReviewItemError, EntityNotFoundError, PersistenceError
from observ_core.models import EntityRef, GenerationDetails, Observation, ReviewItem, Session
from observ_core.store.clickhouse import (
    TABLE_OBSERVATIONS,
    TABLE_SESSIONS,
    TABLE_TRACES,
    ClickHouseTelemetryStore,
    _observation_row,
    _review_item_row,
    _session_row,
)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.query.return_value.named_results.return_value = []
    return mock


@pytest.fixture
def ch_store(client):
    with patch("observ_core.store.clickhouse.clickhouse_connect.get_client", return_value=client) as get_client:
        store = ClickHouseTelemetryStore(host="localhost", port=8123, secure=False)
        yield store
        if store._client is not None:
            get_client.assert_called_once()


def _returns(client: MagicMock, rows: list[dict]) -> None:
    client.query.return_value.named_results.return_value = rows


class TestConnection:
    def test_connects_lazily_and_creates_tables_once(self, ch_store, client):
        assert ch_store._client is None
        ch_store.create_session(Session())
        ch_store.create_session(Session())
        assert client.command.call_count == 5
        assert client.insert.call_count == 2

    def test_close_resets_connection(self, ch_store, client):
        ch_store.create_session(Session())
        ch_store.close()
        client.close.assert_called_once()
        assert ch_store._client is None


class TestWrites:
    def test_insert_carries_row_version(self, ch_store, client):
        session = ch_store.create_session(Session(user_id="u1"))
        table, rows = client.insert.call_args.args
        columns = client.insert.call_args.kwargs["column_names"]
        assert table == TABLE_SESSIONS
        assert "version" in columns
        values = dict(zip(columns, rows[0], strict=True))
        assert values["id"] == session.id
        assert values["user_id"] == "u1"
        assert values["version"] > 0

    def test_versions_increase(self, ch_store):
        assert ch_store._next_version() < ch_store._next_version()

    def test_update_of_missing_session_raises(self, ch_store, client):
        _returns(client, [])
        with pytest.raises(EntityNotFoundError):
            ch_store.update_session(Session())
        client.insert.assert_not_called()

    def test_backend_error_becomes_persistence_error(self, ch_store, client):
        client.insert.side_effect = RuntimeError("connection reset")
        with pytest.raises(PersistenceError, match="connection reset"):
            ch_store.create_session(Session())

    def test_duplicate_review_item(self, ch_store, client):
        existing = ReviewItem(reviewable=EntityRef.trace("t1"))
        _returns(client, [_review_item_row(existing)])
        with pytest.raises(DuplicateReviewItemError):
            ch_store.insert_review_item(ReviewItem(reviewable=EntityRef.trace("t1")))

    def test_delete_trace_issues_lightweight_deletes(self, ch_store, client):
        _returns(client, [])
        ch_store.delete_trace("t1")
        statements = [c.args[0] for c in client.command.call_args_list if c.args[0].startswith("DELETE")]
        assert any(TABLE_OBSERVATIONS in s for s in statements)
        assert any(TABLE_TRACES in s for s in statements)


class TestReads:
    def test_session_row_roundtrip(self, ch_store, client):
        session = Session(user_id="u1", metadata={"channel": "web"}, total_cost=Decimal("0.25"))
        _returns(client, [{**_session_row(session), "version": 1}])
        assert ch_store.get_session(session.id) == session

    def test_observation_row_roundtrip(self, ch_store, client):
        observation = Observation(
            trace_id="t1",
            name="llm_call",
            model="gpt-4o-mini",
            input="hello",
            details=GenerationDetails(finish_reason="stop"),
        ).finalize(output="hi", usage={"input_tokens": 3, "output_tokens": 2}, cost=Decimal("0.0001"))
        _returns(client, [{**_observation_row(observation), "version": 1}])
        loaded = ch_store.get_observation(observation.id)
        assert loaded == observation
        assert isinstance(loaded.details, GenerationDetails)

    def test_missing_returns_none(self, ch_store, client):
        _returns(client, [])
        assert ch_store.get_trace("nope") is None

    def test_usage_sum_keeps_decimal_precision(self, ch_store, client):
        _returns(client, [{"total_cost": 0.0035, "total_tokens": 150, "count": 2, "llm_calls": 1, "llm_duration_ms": 800}])
        usage = ch_store.sum_trace_usage("t1")
        assert usage.total_cost == Decimal("0.0035")
        assert usage.total_tokens == 150
        assert usage.llm_calls == 1
