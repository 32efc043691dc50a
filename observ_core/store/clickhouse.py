"""ClickHouse-backed telemetry store for production use.

One ReplacingMergeTree table per entity. Updates are new row versions; reads
use FINAL so only the latest version of each row is visible. Review items are
keyed by reviewable and scores by (target, name, source), so a duplicate
insert from another process collapses into a single row at merge time.
"""

import json
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from threading import RLock
from typing import Any

import clickhouse_connect
from pydantic import TypeAdapter

from observ_core.exceptions import DuplicateReviewItemError, EntityNotFoundError, ObservCoreError, PersistenceError
from observ_core.logging import get_pipeline_logger
from observ_core.models import (
    EntityRef,
    EntityType,
    Observation,
    ObservationDetails,
    ReviewItem,
    ReviewStatus,
    Score,
    Session,
    Trace,
)

from .protocol import UsageTotals

logger = get_pipeline_logger(__name__)

TABLE_SESSIONS = "observ_sessions"
TABLE_TRACES = "observ_traces"
TABLE_OBSERVATIONS = "observ_observations"
TABLE_REVIEW_ITEMS = "observ_review_items"
TABLE_SCORES = "observ_scores"

_DDL_SESSIONS = f"""
CREATE TABLE IF NOT EXISTS {TABLE_SESSIONS}
(
    id                      String,
    external_id             Nullable(String),
    user_id                 Nullable(String),
    start_time              DateTime64(3, 'UTC'),
    end_time                Nullable(DateTime64(3, 'UTC')),
    metadata                String         DEFAULT '{{}}' CODEC(ZSTD(3)),
    total_cost              Decimal(18, 9) DEFAULT 0,
    total_tokens            UInt64         DEFAULT 0,
    total_traces_count      UInt32         DEFAULT 0,
    total_llm_calls_count   UInt32         DEFAULT 0,
    total_llm_duration_ms   UInt64         DEFAULT 0,
    version                 UInt64         DEFAULT 1
)
ENGINE = ReplacingMergeTree(version)
ORDER BY (id)
SETTINGS index_granularity = 8192
"""

_DDL_TRACES = f"""
CREATE TABLE IF NOT EXISTS {TABLE_TRACES}
(
    id              String,
    session_id      Nullable(String),
    name            String,
    user_id         Nullable(String),
    input           String         DEFAULT 'null' CODEC(ZSTD(3)),
    output          String         DEFAULT 'null' CODEC(ZSTD(3)),
    start_time      DateTime64(3, 'UTC'),
    end_time        Nullable(DateTime64(3, 'UTC')),
    metadata        String         DEFAULT '{{}}' CODEC(ZSTD(3)),
    tags            Array(String),
    total_cost      Decimal(18, 9) DEFAULT 0,
    total_tokens    UInt64         DEFAULT 0,
    version         UInt64         DEFAULT 1,
    INDEX idx_session session_id TYPE bloom_filter GRANULARITY 1
)
ENGINE = ReplacingMergeTree(version)
ORDER BY (id)
SETTINGS index_granularity = 8192
"""

_DDL_OBSERVATIONS = f"""
CREATE TABLE IF NOT EXISTS {TABLE_OBSERVATIONS}
(
    id                      String,
    trace_id                String,
    parent_observation_id   Nullable(String),
    kind                    LowCardinality(String),
    name                    String,
    model                   LowCardinality(Nullable(String)),
    start_time              DateTime64(3, 'UTC'),
    end_time                Nullable(DateTime64(3, 'UTC')),
    input                   String         DEFAULT 'null' CODEC(ZSTD(3)),
    output                  String         DEFAULT 'null' CODEC(ZSTD(3)),
    usage                   String         DEFAULT '{{}}',
    total_tokens            UInt64         DEFAULT 0,
    duration_ms             UInt64         DEFAULT 0,
    cost                    Decimal(18, 9) DEFAULT 0,
    status                  LowCardinality(String),
    status_message          Nullable(String),
    metadata                String         DEFAULT '{{}}' CODEC(ZSTD(3)),
    details                 String         DEFAULT '{{}}' CODEC(ZSTD(3)),
    version                 UInt64         DEFAULT 1,
    INDEX idx_id id TYPE bloom_filter GRANULARITY 1
)
ENGINE = ReplacingMergeTree(version)
ORDER BY (trace_id, id)
SETTINGS index_granularity = 8192
"""

_DDL_REVIEW_ITEMS = f"""
CREATE TABLE IF NOT EXISTS {TABLE_REVIEW_ITEMS}
(
    id                  String,
    reviewable_type     LowCardinality(String),
    reviewable_id       String,
    status              LowCardinality(String),
    priority            LowCardinality(String),
    reason              String,
    reason_details      String         DEFAULT '{{}}',
    created_at          DateTime64(3, 'UTC'),
    updated_at          DateTime64(3, 'UTC'),
    completed_at        Nullable(DateTime64(3, 'UTC')),
    completed_by        Nullable(String),
    version             UInt64         DEFAULT 1,
    INDEX idx_id id TYPE bloom_filter GRANULARITY 1
)
ENGINE = ReplacingMergeTree(version)
ORDER BY (reviewable_type, reviewable_id)
SETTINGS index_granularity = 8192
"""

_DDL_SCORES = f"""
CREATE TABLE IF NOT EXISTS {TABLE_SCORES}
(
    id              String,
    target_type     LowCardinality(String),
    target_id       String,
    name            String,
    source          LowCardinality(String),
    value           Float64,
    data_type       LowCardinality(String),
    string_value    Nullable(String),
    comment         Nullable(String),
    created_by      Nullable(String),
    created_at      DateTime64(3, 'UTC'),
    updated_at      DateTime64(3, 'UTC'),
    version         UInt64         DEFAULT 1,
    INDEX idx_id id TYPE bloom_filter GRANULARITY 1
)
ENGINE = ReplacingMergeTree(version)
ORDER BY (target_type, target_id, name, source)
SETTINGS index_granularity = 8192
"""

_CREATE_TABLES_SQL = [_DDL_SESSIONS, _DDL_TRACES, _DDL_OBSERVATIONS, _DDL_REVIEW_ITEMS, _DDL_SCORES]

_DETAILS_ADAPTER: TypeAdapter[Any] = TypeAdapter(ObservationDetails)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _loads(value: str | None) -> Any:
    if not value:
        return None
    return json.loads(value)


def _utc(value: datetime | None) -> datetime | None:
    """ClickHouse may hand back naive datetimes for DateTime64 columns."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


# --- Row conversion ---


def _session_row(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "external_id": session.external_id,
        "user_id": session.user_id,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "metadata": _dumps(session.metadata),
        "total_cost": session.total_cost,
        "total_tokens": session.total_tokens,
        "total_traces_count": session.total_traces_count,
        "total_llm_calls_count": session.total_llm_calls_count,
        "total_llm_duration_ms": session.total_llm_duration_ms,
    }


def _session_from(row: dict[str, Any]) -> Session:
    return Session(
        id=row["id"],
        external_id=row["external_id"],
        user_id=row["user_id"],
        start_time=_utc(row["start_time"]),
        end_time=_utc(row["end_time"]),
        metadata=_loads(row["metadata"]) or {},
        total_cost=Decimal(row["total_cost"]),
        total_tokens=row["total_tokens"],
        total_traces_count=row["total_traces_count"],
        total_llm_calls_count=row["total_llm_calls_count"],
        total_llm_duration_ms=row["total_llm_duration_ms"],
    )


def _trace_row(trace: Trace) -> dict[str, Any]:
    return {
        "id": trace.id,
        "session_id": trace.session_id,
        "name": trace.name,
        "user_id": trace.user_id,
        "input": _dumps(trace.input),
        "output": _dumps(trace.output),
        "start_time": trace.start_time,
        "end_time": trace.end_time,
        "metadata": _dumps(trace.metadata),
        "tags": list(trace.tags),
        "total_cost": trace.total_cost,
        "total_tokens": trace.total_tokens,
    }


def _trace_from(row: dict[str, Any]) -> Trace:
    return Trace(
        id=row["id"],
        session_id=row["session_id"],
        name=row["name"],
        user_id=row["user_id"],
        input=_loads(row["input"]),
        output=_loads(row["output"]),
        start_time=_utc(row["start_time"]),
        end_time=_utc(row["end_time"]),
        metadata=_loads(row["metadata"]) or {},
        tags=tuple(row["tags"]),
        total_cost=Decimal(row["total_cost"]),
        total_tokens=row["total_tokens"],
    )


def _observation_row(observation: Observation) -> dict[str, Any]:
    return {
        "id": observation.id,
        "trace_id": observation.trace_id,
        "parent_observation_id": observation.parent_observation_id,
        "kind": str(observation.kind),
        "name": observation.name,
        "model": observation.model,
        "start_time": observation.start_time,
        "end_time": observation.end_time,
        "input": _dumps(observation.input),
        "output": _dumps(observation.output),
        "usage": _dumps(observation.usage),
        "total_tokens": observation.total_tokens,
        "duration_ms": round(observation.duration_ms or 0),
        "cost": observation.cost,
        "status": str(observation.status),
        "status_message": observation.status_message,
        "metadata": _dumps(observation.metadata),
        "details": observation.details.model_dump_json(),
    }


def _observation_from(row: dict[str, Any]) -> Observation:
    return Observation(
        id=row["id"],
        trace_id=row["trace_id"],
        parent_observation_id=row["parent_observation_id"],
        name=row["name"],
        model=row["model"],
        start_time=_utc(row["start_time"]),
        end_time=_utc(row["end_time"]),
        input=_loads(row["input"]),
        output=_loads(row["output"]),
        usage=_loads(row["usage"]) or {},
        cost=Decimal(row["cost"]),
        status=row["status"],
        status_message=row["status_message"],
        metadata=_loads(row["metadata"]) or {},
        details=_DETAILS_ADAPTER.validate_json(row["details"]),
    )


def _review_item_row(item: ReviewItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "reviewable_type": str(item.reviewable.type),
        "reviewable_id": item.reviewable.id,
        "status": str(item.status),
        "priority": str(item.priority),
        "reason": item.reason,
        "reason_details": _dumps(item.reason_details),
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "completed_at": item.completed_at,
        "completed_by": item.completed_by,
    }


def _review_item_from(row: dict[str, Any]) -> ReviewItem:
    return ReviewItem(
        id=row["id"],
        reviewable=EntityRef(type=row["reviewable_type"], id=row["reviewable_id"]),
        status=row["status"],
        priority=row["priority"],
        reason=row["reason"],
        reason_details=_loads(row["reason_details"]) or {},
        created_at=_utc(row["created_at"]),
        updated_at=_utc(row["updated_at"]),
        completed_at=_utc(row["completed_at"]),
        completed_by=row["completed_by"],
    )


def _score_row(score: Score) -> dict[str, Any]:
    return {
        "id": score.id,
        "target_type": str(score.target.type),
        "target_id": score.target.id,
        "name": score.name,
        "source": str(score.source),
        "value": score.value,
        "data_type": str(score.data_type),
        "string_value": score.string_value,
        "comment": score.comment,
        "created_by": score.created_by,
        "created_at": score.created_at,
        "updated_at": score.updated_at,
    }


def _score_from(row: dict[str, Any]) -> Score:
    return Score(
        id=row["id"],
        target=EntityRef(type=row["target_type"], id=row["target_id"]),
        name=row["name"],
        source=row["source"],
        value=row["value"],
        data_type=row["data_type"],
        string_value=row["string_value"],
        comment=row["comment"],
        created_by=row["created_by"],
        created_at=_utc(row["created_at"]),
        updated_at=_utc(row["updated_at"]),
    )


class ClickHouseTelemetryStore:
    """ClickHouse-backed telemetry store.

    Connection is deferred until first use. All operations are synchronous and
    serialized by a re-entrant lock, which ``unit_of_work()`` also holds.
    Backend errors surface as PersistenceError.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 8443,
        database: str = "default",
        username: str = "default",
        password: str = "",
        secure: bool = True,
    ) -> None:
        self._params = {
            "host": host,
            "port": port,
            "database": database,
            "username": username,
            "password": password,
            "secure": secure,
        }
        self._client: Any = None
        self._tables_initialized = False
        self._lock = RLock()
        self._last_version: int = 0

    # --- Connection management ---

    def _connect(self) -> None:
        self._client = clickhouse_connect.get_client(  # pyright: ignore[reportUnknownMemberType]
            **self._params,  # pyright: ignore[reportArgumentType]
        )
        logger.info(f"Telemetry store connected to ClickHouse at {self._params['host']}:{self._params['port']}")

    def _ensure_tables(self) -> None:
        if self._tables_initialized:
            return
        if self._client is None:
            self._connect()
        for sql in _CREATE_TABLES_SQL:
            self._client.command(sql)
        self._tables_initialized = True
        logger.info("Telemetry store tables verified/created")

    @contextmanager
    def _guard(self, action: str) -> Iterator[Any]:
        """Hold the lock, ensure the schema exists and wrap backend errors."""
        with self._lock:
            try:
                self._ensure_tables()
                yield self._client
            except ObservCoreError:
                raise
            except Exception as e:
                logger.error(f"ClickHouse {action} failed: {e}")
                raise PersistenceError(f"ClickHouse {action} failed: {e}") from e

    def _next_version(self) -> int:
        """Monotonically increasing version from nanosecond timestamps."""
        now = time.time_ns()
        if now <= self._last_version:
            now = self._last_version + 1
        self._last_version = now
        return now

    def _insert(self, table: str, row: dict[str, Any]) -> None:
        with self._guard(f"insert into {table}") as client:
            row = {**row, "version": self._next_version()}
            column_names = list(row.keys())
            client.insert(table, [list(row.values())], column_names=column_names)

    def _select(self, action: str, sql: str, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        with self._guard(action) as client:
            return list(client.query(sql, parameters=parameters).named_results())

    def _delete(self, table: str, where: str, parameters: dict[str, Any]) -> None:
        with self._guard(f"delete from {table}") as client:
            client.command(f"DELETE FROM {table} WHERE {where}", parameters=parameters)

    def close(self) -> None:
        """Close the underlying connection, if open."""
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._tables_initialized = False

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with self._lock:
            yield

    # --- Sessions ---

    def create_session(self, session: Session) -> Session:
        self._insert(TABLE_SESSIONS, _session_row(session))
        return session

    def update_session(self, session: Session) -> Session:
        with self._lock:
            if self.get_session(session.id) is None:
                raise EntityNotFoundError(f"Session {session.id} not found")
            self._insert(TABLE_SESSIONS, _session_row(session))
        return session

    def get_session(self, session_id: str) -> Session | None:
        rows = self._select("session lookup", f"SELECT * FROM {TABLE_SESSIONS} FINAL WHERE id = {{id:String}}", {"id": session_id})
        return _session_from(rows[0]) if rows else None

    def list_sessions_since(self, since: datetime) -> list[Session]:
        rows = self._select(
            "session listing",
            f"SELECT * FROM {TABLE_SESSIONS} FINAL WHERE start_time >= {{since:DateTime64(3, 'UTC')}} ORDER BY start_time",
            {"since": since},
        )
        return [_session_from(row) for row in rows]

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            for trace in self.list_traces(session_id):
                self.delete_trace(trace.id)
            self._delete(TABLE_SESSIONS, "id = {id:String}", {"id": session_id})
            self._delete_attached(EntityRef.session(session_id))

    # --- Traces ---

    def create_trace(self, trace: Trace) -> Trace:
        self._insert(TABLE_TRACES, _trace_row(trace))
        return trace

    def update_trace(self, trace: Trace) -> Trace:
        with self._lock:
            if self.get_trace(trace.id) is None:
                raise EntityNotFoundError(f"Trace {trace.id} not found")
            self._insert(TABLE_TRACES, _trace_row(trace))
        return trace

    def get_trace(self, trace_id: str) -> Trace | None:
        rows = self._select("trace lookup", f"SELECT * FROM {TABLE_TRACES} FINAL WHERE id = {{id:String}}", {"id": trace_id})
        return _trace_from(rows[0]) if rows else None

    def list_traces(self, session_id: str) -> list[Trace]:
        rows = self._select(
            "trace listing",
            f"SELECT * FROM {TABLE_TRACES} FINAL WHERE session_id = {{session_id:String}} ORDER BY start_time",
            {"session_id": session_id},
        )
        return [_trace_from(row) for row in rows]

    def list_traces_since(self, since: datetime) -> list[Trace]:
        rows = self._select(
            "trace listing",
            f"SELECT * FROM {TABLE_TRACES} FINAL WHERE start_time >= {{since:DateTime64(3, 'UTC')}} ORDER BY start_time",
            {"since": since},
        )
        return [_trace_from(row) for row in rows]

    def delete_trace(self, trace_id: str) -> None:
        with self._lock:
            for observation in self.list_observations(trace_id):
                self._delete_attached(EntityRef.observation(observation.id))
            self._delete(TABLE_OBSERVATIONS, "trace_id = {id:String}", {"id": trace_id})
            self._delete(TABLE_TRACES, "id = {id:String}", {"id": trace_id})
            self._delete_attached(EntityRef.trace(trace_id))

    # --- Observations ---

    def create_observation(self, observation: Observation) -> Observation:
        self._insert(TABLE_OBSERVATIONS, _observation_row(observation))
        return observation

    def update_observation(self, observation: Observation) -> Observation:
        with self._lock:
            if self.get_observation(observation.id) is None:
                raise EntityNotFoundError(f"Observation {observation.id} not found")
            self._insert(TABLE_OBSERVATIONS, _observation_row(observation))
        return observation

    def get_observation(self, observation_id: str) -> Observation | None:
        rows = self._select(
            "observation lookup",
            f"SELECT * FROM {TABLE_OBSERVATIONS} FINAL WHERE id = {{id:String}}",
            {"id": observation_id},
        )
        return _observation_from(rows[0]) if rows else None

    def list_observations(self, trace_id: str) -> list[Observation]:
        rows = self._select(
            "observation listing",
            f"SELECT * FROM {TABLE_OBSERVATIONS} FINAL WHERE trace_id = {{trace_id:String}} ORDER BY start_time",
            {"trace_id": trace_id},
        )
        return [_observation_from(row) for row in rows]

    # --- Aggregates ---

    def sum_trace_usage(self, trace_id: str) -> UsageTotals:
        rows = self._select(
            "trace usage sum",
            f"SELECT sum(cost) AS total_cost, sum(total_tokens) AS total_tokens, count() AS count, "
            f"countIf(kind = 'generation') AS llm_calls, "
            f"sumIf(duration_ms, kind = 'generation' AND end_time IS NOT NULL) AS llm_duration_ms "
            f"FROM {TABLE_OBSERVATIONS} FINAL WHERE trace_id = {{trace_id:String}}",
            {"trace_id": trace_id},
        )
        return _usage_from(rows)

    def sum_session_usage(self, session_id: str) -> UsageTotals:
        trace_rows = self._select(
            "session usage sum",
            f"SELECT sum(total_cost) AS total_cost, sum(total_tokens) AS total_tokens, count() AS count "
            f"FROM {TABLE_TRACES} FINAL WHERE session_id = {{session_id:String}}",
            {"session_id": session_id},
        )
        llm_rows = self._select(
            "session llm sum",
            f"SELECT count() AS llm_calls, sumIf(duration_ms, end_time IS NOT NULL) AS llm_duration_ms "
            f"FROM {TABLE_OBSERVATIONS} FINAL WHERE kind = 'generation' AND trace_id IN "
            f"(SELECT id FROM {TABLE_TRACES} FINAL WHERE session_id = {{session_id:String}})",
            {"session_id": session_id},
        )
        totals = _usage_from(trace_rows)
        llm = llm_rows[0] if llm_rows else {}
        return totals.model_copy(
            update={
                "llm_calls": int(llm.get("llm_calls") or 0),
                "llm_duration_ms": int(llm.get("llm_duration_ms") or 0),
            }
        )

    # --- Review items ---

    def insert_review_item(self, item: ReviewItem) -> ReviewItem:
        with self._lock:
            if self.find_review_item(item.reviewable) is not None:
                raise DuplicateReviewItemError(item.reviewable)
            self._insert(TABLE_REVIEW_ITEMS, _review_item_row(item))
        return item

    def update_review_item(self, item: ReviewItem) -> ReviewItem:
        with self._lock:
            if self.get_review_item(item.id) is None:
                raise EntityNotFoundError(f"Review item {item.id} not found")
            self._insert(TABLE_REVIEW_ITEMS, _review_item_row(item))
        return item

    def get_review_item(self, item_id: str) -> ReviewItem | None:
        rows = self._select(
            "review item lookup",
            f"SELECT * FROM {TABLE_REVIEW_ITEMS} FINAL WHERE id = {{id:String}}",
            {"id": item_id},
        )
        return _review_item_from(rows[0]) if rows else None

    def find_review_item(self, reviewable: EntityRef) -> ReviewItem | None:
        rows = self._select(
            "review item lookup",
            f"SELECT * FROM {TABLE_REVIEW_ITEMS} FINAL "
            f"WHERE reviewable_type = {{type:String}} AND reviewable_id = {{id:String}}",
            {"type": str(reviewable.type), "id": reviewable.id},
        )
        return _review_item_from(rows[0]) if rows else None

    def list_review_items(
        self,
        statuses: Iterable[ReviewStatus] | None = None,
        reviewable_type: EntityType | None = None,
    ) -> list[ReviewItem]:
        clauses: list[str] = []
        parameters: dict[str, Any] = {}
        if statuses is not None:
            clauses.append("status IN {statuses:Array(String)}")
            parameters["statuses"] = [str(s) for s in statuses]
        if reviewable_type is not None:
            clauses.append("reviewable_type = {type:String}")
            parameters["type"] = str(reviewable_type)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._select("review item listing", f"SELECT * FROM {TABLE_REVIEW_ITEMS} FINAL{where}", parameters)
        return [_review_item_from(row) for row in rows]

    # --- Scores ---

    def upsert_score(self, score: Score) -> Score:
        with self._lock:
            existing = next(
                (s for s in self.list_scores(score.target) if s.name == score.name and s.source == score.source),
                None,
            )
            if existing is not None:
                score = score.model_copy(update={"id": existing.id, "created_at": existing.created_at})
            self._insert(TABLE_SCORES, _score_row(score))
        return score

    def list_scores(self, target: EntityRef) -> list[Score]:
        rows = self._select(
            "score listing",
            f"SELECT * FROM {TABLE_SCORES} FINAL WHERE target_type = {{type:String}} AND target_id = {{id:String}} "
            f"ORDER BY updated_at DESC",
            {"type": str(target.type), "id": target.id},
        )
        return [_score_from(row) for row in rows]

    def delete_score(self, score_id: str) -> None:
        with self._lock:
            rows = self._select("score lookup", f"SELECT id FROM {TABLE_SCORES} FINAL WHERE id = {{id:String}}", {"id": score_id})
            if not rows:
                raise EntityNotFoundError(f"Score {score_id} not found")
            self._delete(TABLE_SCORES, "id = {id:String}", {"id": score_id})

    def _delete_attached(self, ref: EntityRef) -> None:
        if ref.type != EntityType.OBSERVATION:
            self._delete(
                TABLE_REVIEW_ITEMS,
                "reviewable_type = {type:String} AND reviewable_id = {id:String}",
                {"type": str(ref.type), "id": ref.id},
            )
        self._delete(
            TABLE_SCORES,
            "target_type = {type:String} AND target_id = {id:String}",
            {"type": str(ref.type), "id": ref.id},
        )


def _usage_from(rows: list[dict[str, Any]]) -> UsageTotals:
    if not rows:
        return UsageTotals()
    row = rows[0]
    return UsageTotals(
        total_cost=Decimal(str(row.get("total_cost") or 0)),
        total_tokens=int(row.get("total_tokens") or 0),
        count=int(row.get("count") or 0),
        llm_calls=int(row.get("llm_calls") or 0),
        llm_duration_ms=int(row.get("llm_duration_ms") or 0),
    )
