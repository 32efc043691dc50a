"""Model pricing lookup.

@public

``PricingLookup.price(model_id, dimensions)`` returns the USD price of one
unit for a model. It never raises: an unknown model, unit, size or quality
resolves to zero.

Units (``dimensions["unit"]``):
    input_token: price per prompt / input token (default)
    output_token: price per completion token
    image: price per generated image, keyed further by ``size`` and ``quality``
    audio_minute: price per minute of transcribed audio

Example:
    >>> from observ_core.pricing import default_pricing
    >>> default_pricing().price("dall-e-3", {"unit": "image", "size": "1024x1024", "quality": "hd"})
    Decimal('0.08')
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from observ_core.logging import get_pipeline_logger

logger = get_pipeline_logger(__name__)

_ZERO = Decimal(0)
_PER_MILLION = Decimal(1_000_000)

# Quality names differ between image models: dall-e-3 uses standard/hd,
# gpt-image-1 uses low/medium/high.
_QUALITY_ALIASES = {
    "hd": "high",
    "high": "hd",
    "standard": "medium",
    "medium": "standard",
}


@runtime_checkable
class PricingLookup(Protocol):
    """Price-per-unit lookup keyed on model id."""

    def price(self, model_id: str | None, dimensions: Mapping[str, Any] | None = None) -> Decimal:
        """Return the price of one unit. Never raises; unknown resolves to zero."""
        ...


class ModelPricing(BaseModel):
    """Prices for one model. Token prices are USD per million tokens."""

    model_config = ConfigDict(frozen=True)

    input_per_million: Decimal | None = None
    output_per_million: Decimal | None = None
    audio_per_minute: Decimal | None = None
    images: dict[str, dict[str, Decimal]] = Field(default_factory=dict)


def _image_price(images: Mapping[str, Mapping[str, Decimal]], size: str | None, quality: str | None) -> Decimal:
    """Resolve a per-image price.

    Size: exact match, then "default". Quality: exact match, then the mapped
    alias, then "standard", "medium", "default", then any available price.
    """
    by_quality = images.get(size or "") or images.get("default")
    if not by_quality:
        return _ZERO
    candidates = [quality, _QUALITY_ALIASES.get(quality or ""), "standard", "medium", "default"]
    for candidate in candidates:
        if candidate and candidate in by_quality:
            return by_quality[candidate]
    return next(iter(by_quality.values()), _ZERO)


class StaticPricingTable:
    """Pricing lookup backed by an in-process table.

    Model ids returned by providers often carry a snapshot suffix
    (``gpt-4o-2024-08-06``); those resolve to the longest configured
    prefix (``gpt-4o``).
    """

    def __init__(self, models: Mapping[str, ModelPricing]) -> None:
        self._models = dict(models)

    def with_models(self, models: Mapping[str, ModelPricing]) -> "StaticPricingTable":
        """Return a new table with ``models`` added or replaced."""
        return StaticPricingTable({**self._models, **models})

    def _resolve(self, model_id: str) -> ModelPricing | None:
        if model_id in self._models:
            return self._models[model_id]
        prefixes = [key for key in self._models if model_id.startswith(f"{key}-")]
        if not prefixes:
            return None
        return self._models[max(prefixes, key=len)]

    def price(self, model_id: str | None, dimensions: Mapping[str, Any] | None = None) -> Decimal:
        try:
            if not model_id:
                return _ZERO
            pricing = self._resolve(model_id)
            if pricing is None:
                return _ZERO
            dims = dimensions or {}
            unit = dims.get("unit", "input_token")
            if unit == "input_token":
                return (pricing.input_per_million or _ZERO) / _PER_MILLION
            if unit == "output_token":
                return (pricing.output_per_million or _ZERO) / _PER_MILLION
            if unit == "audio_minute":
                return pricing.audio_per_minute or _ZERO
            if unit == "image":
                return _image_price(pricing.images, dims.get("size"), dims.get("quality"))
            return _ZERO
        except Exception as e:
            logger.warning(f"Price lookup failed for {model_id}: {e}")
            return _ZERO


def _d(value: str) -> Decimal:
    return Decimal(value)


DEFAULT_MODEL_PRICING: dict[str, ModelPricing] = {
    # Chat
    "gpt-4o": ModelPricing(input_per_million=_d("2.50"), output_per_million=_d("10.00")),
    "gpt-4o-mini": ModelPricing(input_per_million=_d("0.15"), output_per_million=_d("0.60")),
    "gpt-4.1": ModelPricing(input_per_million=_d("2.00"), output_per_million=_d("8.00")),
    "gpt-4.1-mini": ModelPricing(input_per_million=_d("0.40"), output_per_million=_d("1.60")),
    "gpt-4.1-nano": ModelPricing(input_per_million=_d("0.10"), output_per_million=_d("0.40")),
    "o3-mini": ModelPricing(input_per_million=_d("1.10"), output_per_million=_d("4.40")),
    # Embeddings
    "text-embedding-3-small": ModelPricing(input_per_million=_d("0.02")),
    "text-embedding-3-large": ModelPricing(input_per_million=_d("0.13")),
    "text-embedding-ada-002": ModelPricing(input_per_million=_d("0.10")),
    # Transcription
    "whisper-1": ModelPricing(audio_per_minute=_d("0.006")),
    "gpt-4o-transcribe": ModelPricing(input_per_million=_d("2.50"), output_per_million=_d("10.00"), audio_per_minute=_d("0.006")),
    "gpt-4o-mini-transcribe": ModelPricing(input_per_million=_d("1.25"), output_per_million=_d("5.00"), audio_per_minute=_d("0.003")),
    # Moderation
    "omni-moderation-latest": ModelPricing(input_per_million=_d("0")),
    # Images (USD per image)
    "dall-e-3": ModelPricing(
        images={
            "1024x1024": {"standard": _d("0.04"), "hd": _d("0.08")},
            "1792x1024": {"standard": _d("0.08"), "hd": _d("0.12")},
            "1024x1792": {"standard": _d("0.08"), "hd": _d("0.12")},
        }
    ),
    "dall-e-2": ModelPricing(
        images={
            "1024x1024": {"default": _d("0.02")},
            "512x512": {"default": _d("0.018")},
            "256x256": {"default": _d("0.016")},
        }
    ),
    "gpt-image-1": ModelPricing(
        input_per_million=_d("5.00"),
        images={
            "1024x1024": {"low": _d("0.011"), "medium": _d("0.042"), "high": _d("0.167")},
            "1024x1536": {"low": _d("0.016"), "medium": _d("0.063"), "high": _d("0.25")},
            "1536x1024": {"low": _d("0.016"), "medium": _d("0.063"), "high": _d("0.25")},
        },
    ),
    "imagen-3.0-generate-002": ModelPricing(images={"default": {"default": _d("0.04")}}),
    "imagen-4.0-generate-001": ModelPricing(images={"default": {"default": _d("0.04")}}),
    "imagen-4.0-generate-preview-06-06": ModelPricing(images={"default": {"default": _d("0.04")}}),
    "imagen-4.0-ultra-generate-preview-06-06": ModelPricing(images={"default": {"default": _d("0.08")}}),
}


def default_pricing() -> StaticPricingTable:
    """Pricing table with the built-in model prices."""
    return StaticPricingTable(DEFAULT_MODEL_PRICING)
