"""Content moderation instrumentation.

Wraps any ``moderate(text, model=...)`` callable. Results may expose
``flagged`` / ``categories`` / ``category_scores`` / ``flagged_categories``
directly or follow the OpenAI ``ModerationCreateResponse`` shape
(``results[0]``). ``normalize_moderation`` turns either into a plain dict and
is shared with the moderation guardrail.
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar, cast

from pydantic import BaseModel

from observ_core.models import ObservationKind, Session
from observ_core.observability import TelemetryRecorder, truncate
from observ_core.pricing import PricingLookup

from ._base import CallInfo, Instrumenter, Outcome, compact, read_field

F = TypeVar("F", bound=Callable[..., Any])

MODERATION_INPUT_LIMIT = 1_000
MODERATION_TRACE_INPUT_LIMIT = 500


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    return {k: v for k, v in cast(Mapping[str, Any], value).items() if v is not None}


def normalize_moderation(result: Any) -> dict[str, Any]:
    """Flatten a moderation result into ``flagged``, ``categories``, ``category_scores`` and ``flagged_categories``."""
    results = read_field(result, "results")
    verdict = results[0] if results else result
    flagged = read_field(verdict, "flagged")
    if callable(flagged):
        flagged = flagged()
    categories = {str(k): bool(v) for k, v in _as_mapping(read_field(verdict, "categories")).items()}
    category_scores = {str(k): float(v) for k, v in _as_mapping(read_field(verdict, "category_scores")).items()}
    flagged_categories = read_field(verdict, "flagged_categories")
    if flagged_categories is None:
        flagged_categories = [name for name, hit in categories.items() if hit]
    return {
        "id": read_field(result, "id"),
        "model": read_field(result, "model"),
        "flagged": bool(flagged),
        "categories": categories,
        "category_scores": category_scores,
        "flagged_categories": list(flagged_categories),
    }


def _input_tokens(result: Any) -> int:
    usage = read_field(result, "usage")
    return int(read_field(usage, "input_tokens", "prompt_tokens", default=0) or 0)


class ModerationInstrumenter(Instrumenter):
    """Records each moderation call as a Moderation observation."""

    kind = ObservationKind.MODERATION
    capability = "moderation"
    trace_name = "moderation"
    observation_name = "moderate"
    default_model = "omni-moderation-latest"

    def _text(self, call: CallInfo) -> Any:
        return call.argument(0, "text", "input")

    def _trace_input(self, call: CallInfo) -> Any:
        return {"text": truncate(self._text(call), MODERATION_TRACE_INPUT_LIMIT)}

    def _observation_input(self, call: CallInfo) -> Any:
        return truncate(self._text(call), MODERATION_INPUT_LIMIT)

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        verdict = normalize_moderation(result)
        model_id = verdict["model"] or call.model_id
        output = compact(
            {
                "model": model_id,
                "flagged": verdict["flagged"],
                "flagged_categories": verdict["flagged_categories"],
                "id": verdict["id"],
            }
        )
        details = {
            "flagged": verdict["flagged"],
            "categories": verdict["categories"],
            "category_scores": verdict["category_scores"],
            "flagged_categories": tuple(verdict["flagged_categories"]),
        }
        return Outcome(
            output=output,
            usage={},
            cost=self._extract("cost", lambda: self._price(model_id, _input_tokens(result), unit="input_token")),
            details=details,
            trace_output=output,
            trace_metadata={
                "flagged": verdict["flagged"],
                "flagged_categories_count": len(verdict["flagged_categories"]),
            },
        )


def instrument_moderation(
    moderate: F,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> F:
    """Return ``moderate`` wrapped so each call is recorded."""
    return ModerationInstrumenter(session, context=context, recorder=recorder, pricing=pricing).attach(moderate)
