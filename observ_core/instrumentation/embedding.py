"""Embedding instrumentation.

Wraps any ``embed(texts, model=...)`` callable. Results may expose
``vectors`` / ``model`` / ``input_tokens`` directly or follow the OpenAI
``CreateEmbeddingResponse`` shape (``data[].embedding``, ``usage``).
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from observ_core.models import EmbeddingDetails, ObservationKind, Session
from observ_core.observability import TelemetryRecorder
from observ_core.pricing import PricingLookup

from ._base import CallInfo, Instrumenter, Outcome, compact, format_payload, read_field

F = TypeVar("F", bound=Callable[..., Any])


def embedding_vectors(result: Any) -> list[Any] | None:
    vectors = read_field(result, "vectors")
    if vectors is not None:
        return list(vectors)
    data = read_field(result, "data")
    if data is None:
        return None
    return [read_field(item, "embedding") for item in data]


def embedding_shape(vectors: list[Any] | None) -> tuple[int | None, int]:
    """``(dimensions, vectors_count)`` for a single vector or a batch."""
    if not vectors:
        return None, 0
    if isinstance(vectors[0], (list, tuple)):
        return len(vectors[0]), len(vectors)
    return len(vectors), 1


def embedding_input_tokens(result: Any) -> int:
    tokens = read_field(result, "input_tokens")
    if tokens is None:
        usage = read_field(result, "usage")
        tokens = read_field(usage, "prompt_tokens", "input_tokens", "total_tokens")
    return int(tokens or 0)


class EmbeddingInstrumenter(Instrumenter):
    """Records each embedding call as an Embedding observation."""

    kind = ObservationKind.EMBEDDING
    capability = "embedding"
    trace_name = "embedding"
    observation_name = "embed"
    default_model = "text-embedding-3-small"

    def _texts(self, call: CallInfo) -> Any:
        return call.argument(0, "texts", "input", "text")

    def _batch_size(self, call: CallInfo) -> int:
        texts = self._texts(call)
        return len(texts) if isinstance(texts, (list, tuple)) else 1

    def _trace_input(self, call: CallInfo) -> Any:
        texts = self._texts(call)
        if isinstance(texts, (list, tuple)):
            return {"texts": format_payload(list(texts)), "count": len(texts)}
        return {"text": format_payload(texts)}

    def _trace_metadata(self, call: CallInfo) -> dict[str, Any]:
        return compact({"batch_size": self._batch_size(call), "model": call.model_id})

    def _observation_input(self, call: CallInfo) -> Any:
        return format_payload(self._texts(call))

    def _observation_metadata(self, call: CallInfo) -> dict[str, Any]:
        return {"batch_size": self._batch_size(call)}

    def _initial_details(self, call: CallInfo) -> BaseModel:
        return EmbeddingDetails(batch_size=self._batch_size(call))

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        dimensions, vectors_count = self._extract("dimensions", lambda: embedding_shape(embedding_vectors(result)), (None, None))
        model_id = read_field(result, "model") or call.model_id
        output = compact({"model": model_id, "dimensions": dimensions, "vectors_count": vectors_count})
        input_tokens = self._extract("usage", lambda: embedding_input_tokens(result))
        usage = None if input_tokens is None else {"input_tokens": input_tokens, "total_tokens": input_tokens}
        cost = self._extract("cost", lambda: self._price(model_id, input_tokens or 0, unit="input_token"))
        return Outcome(
            output=output,
            usage=usage,
            cost=cost,
            details=compact({"dimensions": dimensions, "vectors_count": vectors_count}),
            trace_output=output,
            trace_metadata=compact({"dimensions": dimensions}),
        )


def instrument_embedding(
    embed: F,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> F:
    """Return ``embed`` wrapped so each call is recorded. Already-wrapped callables are returned as-is."""
    return EmbeddingInstrumenter(session, context=context, recorder=recorder, pricing=pricing).attach(embed)
