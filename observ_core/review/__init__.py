"""Human review: queue state machine, selection policy and scores."""

from .queue import NOT_QUEUED, DetailedQueueStats, QueuePosition, QueueStats, ReviewQueue
from .scores import MANUAL_SCORE_NAME, ScoreBook, parse_score_value

__all__ = [
    "MANUAL_SCORE_NAME",
    "NOT_QUEUED",
    "DetailedQueueStats",
    "QueuePosition",
    "QueueStats",
    "ReviewQueue",
    "ScoreBook",
    "parse_score_value",
]
