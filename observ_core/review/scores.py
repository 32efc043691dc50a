"""Scores: judgments attached to sessions, traces or observations."""

from collections import defaultdict
from typing import Any

from observ_core.exceptions import EntityNotFoundError
from observ_core.logging import get_pipeline_logger
from observ_core.models import EntityRef, Score, ScoreDataType, ScoreSource, utcnow
from observ_core.store import TelemetryStore

logger = get_pipeline_logger(__name__)

MANUAL_SCORE_NAME = "manual"


def parse_score_value(value: Any, data_type: ScoreDataType | str | None) -> float:
    """Coerce a submitted judgment into a score value.

    Boolean judgments map ``1`` / ``"1"`` / ``True`` to 1.0 and everything
    else to 0.0. Other data types are read as floats.
    """
    if data_type is not None and ScoreDataType(data_type) == ScoreDataType.BOOLEAN:
        try:
            return 1.0 if int(value) == 1 else 0.0
        except (TypeError, ValueError):
            return 0.0
    return float(value)


class ScoreBook:
    """Reads and writes scores through the telemetry store."""

    def __init__(self, store: TelemetryStore) -> None:
        self._store = store

    def record(
        self,
        target: EntityRef,
        value: Any,
        *,
        name: str = MANUAL_SCORE_NAME,
        source: ScoreSource = ScoreSource.MANUAL,
        data_type: ScoreDataType = ScoreDataType.BOOLEAN,
        comment: str | None = None,
        created_by: str | None = None,
        string_value: str | None = None,
    ) -> Score:
        """Create or re-score the (target, name, source) score."""
        now = utcnow()
        score = Score(
            target=target,
            name=name,
            value=parse_score_value(value, data_type),
            data_type=data_type,
            source=source,
            string_value=string_value,
            comment=comment,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        score = self._store.upsert_score(score)
        logger.debug(f"Recorded score {score.name}={score.value} ({score.source}) on {target}")
        return score

    def scores(self, target: EntityRef) -> list[Score]:
        return self._store.list_scores(target)

    def score_for(self, target: EntityRef, name: str, source: ScoreSource | None = None) -> Score | None:
        """Most recent score with ``name`` (and ``source`` when given)."""
        matches = [s for s in self._store.list_scores(target) if s.name == name and (source is None or s.source == source)]
        return max(matches, key=lambda s: s.created_at) if matches else None

    def manual_score(self, target: EntityRef) -> Score | None:
        return self.score_for(target, MANUAL_SCORE_NAME, ScoreSource.MANUAL)

    def scored(self, target: EntityRef) -> bool:
        return bool(self._store.list_scores(target))

    def summary(self, target: EntityRef) -> dict[str, float]:
        """Average value per score name, rounded to 4 places."""
        values: dict[str, list[float]] = defaultdict(list)
        for score in self._store.list_scores(target):
            values[score.name].append(score.value)
        return {name: round(sum(vals) / len(vals), 4) for name, vals in values.items()}

    def delete(self, target: EntityRef, score_id: str) -> None:
        """Delete one of ``target``'s scores."""
        if not any(s.id == score_id for s in self._store.list_scores(target)):
            raise EntityNotFoundError(f"Score {score_id} not found on {target}")
        self._store.delete_score(score_id)
