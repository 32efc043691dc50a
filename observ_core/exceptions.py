"""Exception hierarchy for Observ Core.

This module defines the exception hierarchy used throughout the Observ Core library.
All exceptions inherit from ObservCoreError, providing a consistent error handling interface.

Exceptions raised by a wrapped provider call are never wrapped by this hierarchy:
instrumented calls re-raise the original exception object unchanged.
"""

from typing import Any


class ObservCoreError(Exception):
    """Base exception for all Observ Core errors."""


class TelemetryExtractionError(ObservCoreError):
    """Raised when usage, cost or provider metadata cannot be derived from a call result."""


class PersistenceError(ObservCoreError):
    """Raised when a telemetry store read or write fails."""


class DuplicateReviewItemError(PersistenceError):
    """Raised when a reviewable entity already owns a review item."""

    def __init__(self, reviewable: Any) -> None:
        super().__init__(f"{reviewable} already has a review item")
        self.reviewable = reviewable


class EntityNotFoundError(ObservCoreError):
    """Raised when a referenced session, trace, observation or review item does not exist."""


class InvalidTransitionError(ObservCoreError):
    """Raised when a state transition is not allowed from the entity's current state."""


class RuleEvaluationError(ObservCoreError):
    """Raised when a guardrail predicate or detail extractor fails for an entity."""

    def __init__(self, rule_name: str, entity: Any, cause: BaseException) -> None:
        super().__init__(f"Rule '{rule_name}' failed for {entity}: {cause}")
        self.rule_name = rule_name
        self.entity = entity
        self.cause = cause
