"""Image generation instrumentation.

Wraps any ``paint(prompt, model=..., size=..., quality=...)`` callable.
Results may be a single image object (``url``, ``base64``, ``mime_type``,
``revised_prompt``, ``model_id``) or an OpenAI ``ImagesResponse``.
Cost is the per-image price for the requested size and quality.
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from observ_core.models import ImageGenerationDetails, ObservationKind, Session
from observ_core.observability import TelemetryRecorder
from observ_core.pricing import PricingLookup

from ._base import CallInfo, Instrumenter, Outcome, compact, format_payload, read_field

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "standard"


def generated_images(result: Any) -> list[Any]:
    data = read_field(result, "data")
    if isinstance(data, (list, tuple)):
        return list(data)
    return [result]


def is_base64_image(image: Any) -> bool:
    flag = read_field(image, "base64")
    if callable(flag):
        flag = flag()
    return bool(read_field(image, "b64_json")) or flag is True


class ImageGenerationInstrumenter(Instrumenter):
    """Records each image generation call as an ImageGeneration observation."""

    kind = ObservationKind.IMAGE_GENERATION
    capability = "image_generation"
    trace_name = "image_generation"
    observation_name = "paint"
    default_model = "dall-e-3"

    def _size(self, call: CallInfo) -> str:
        return call.argument(None, "size") or DEFAULT_SIZE

    def _quality(self, call: CallInfo) -> str:
        return call.argument(None, "quality") or DEFAULT_QUALITY

    def _prompt(self, call: CallInfo) -> Any:
        return call.argument(0, "prompt")

    def _trace_input(self, call: CallInfo) -> Any:
        return {"prompt": format_payload(self._prompt(call))}

    def _trace_metadata(self, call: CallInfo) -> dict[str, Any]:
        return compact({"model": call.model_id, "size": self._size(call), "quality": self._quality(call)})

    def _observation_input(self, call: CallInfo) -> Any:
        return format_payload(self._prompt(call))

    def _observation_metadata(self, call: CallInfo) -> dict[str, Any]:
        return {"size": self._size(call), "quality": self._quality(call)}

    def _initial_details(self, call: CallInfo) -> BaseModel:
        return ImageGenerationDetails(size=self._size(call), quality=self._quality(call))

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        images = generated_images(result)
        first = images[0] if images else None
        base64 = self._extract("output format", lambda: is_base64_image(first), False)
        model_id = read_field(result, "model_id", "model") or call.model_id
        size = read_field(result, "size") or self._size(call)
        quality = self._quality(call)
        mime_type = read_field(first, "mime_type") or read_field(result, "mime_type")
        revised_prompt = read_field(first, "revised_prompt")
        output = compact(
            {
                "model": model_id,
                "has_url": bool(read_field(first, "url")),
                "base64": base64,
                "mime_type": mime_type,
                "revised_prompt": revised_prompt,
            }
        )
        cost = self._extract(
            "cost",
            lambda: self._price(model_id, len(images), unit="image", size=size, quality=quality),
        )
        details = compact(
            {
                "size": size,
                "quality": quality,
                "images_count": len(images),
                "revised_prompt": revised_prompt,
                "output_format": "base64" if base64 else "url",
                "mime_type": mime_type,
            }
        )
        return Outcome(
            output=output,
            usage={},
            cost=cost,
            details=details,
            trace_output=output,
            trace_metadata={"size": size, "quality": quality},
        )


def instrument_image_generation(
    paint: F,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> F:
    """Return ``paint`` wrapped so each call is recorded."""
    return ImageGenerationInstrumenter(session, context=context, recorder=recorder, pricing=pricing).attach(paint)
