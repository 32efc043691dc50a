"""Observation: one atomic telemetry record, tagged by kind.

The shared fields live on ``Observation``; everything kind-specific sits in
the ``details`` payload, a pydantic discriminated union keyed on ``kind``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from observ_core.exceptions import InvalidTransitionError

from ._types import ZERO_COST, Cost, ObservationKind, ObservationStatus, new_id, utcnow


class GenerationDetails(BaseModel):
    """Chat / completion call payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.GENERATION] = ObservationKind.GENERATION
    model_parameters: dict[str, Any] = Field(default_factory=dict)
    messages: tuple[dict[str, Any], ...] = Field(default_factory=tuple)
    finish_reason: str | None = None
    completion_start_time: datetime | None = None
    provider_metadata: dict[str, Any] = Field(default_factory=dict)
    raw_response: dict[str, Any] | None = None
    prompt_name: str | None = None
    prompt_version: int | str | None = None


class EmbeddingDetails(BaseModel):
    """Embedding call payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.EMBEDDING] = ObservationKind.EMBEDDING
    batch_size: int = 0
    dimensions: int | None = None
    vectors_count: int | None = None


class ImageGenerationDetails(BaseModel):
    """Image generation call payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.IMAGE_GENERATION] = ObservationKind.IMAGE_GENERATION
    size: str | None = None
    quality: str | None = None
    images_count: int | None = None
    revised_prompt: str | None = None
    output_format: Literal["url", "base64"] | None = None
    mime_type: str | None = None


class TranscriptionDetails(BaseModel):
    """Speech-to-text call payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.TRANSCRIPTION] = ObservationKind.TRANSCRIPTION
    language: str | None = None
    audio_duration_s: float | None = None
    segments_count: int | None = None
    speakers_count: int | None = None
    has_diarization: bool = False


class ModerationDetails(BaseModel):
    """Content moderation call payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.MODERATION] = ObservationKind.MODERATION
    flagged: bool | None = None
    categories: dict[str, bool] = Field(default_factory=dict)
    category_scores: dict[str, float] = Field(default_factory=dict)
    flagged_categories: tuple[str, ...] = Field(default_factory=tuple)


class SpanDetails(BaseModel):
    """Generic sub-step (tool call, error) payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ObservationKind.SPAN] = ObservationKind.SPAN
    level: str = "DEFAULT"


ObservationDetails = Annotated[
    GenerationDetails | EmbeddingDetails | ImageGenerationDetails | TranscriptionDetails | ModerationDetails | SpanDetails,
    Field(discriminator="kind"),
]

DETAILS_BY_KIND: dict[ObservationKind, type[BaseModel]] = {
    ObservationKind.GENERATION: GenerationDetails,
    ObservationKind.EMBEDDING: EmbeddingDetails,
    ObservationKind.IMAGE_GENERATION: ImageGenerationDetails,
    ObservationKind.TRANSCRIPTION: TranscriptionDetails,
    ObservationKind.MODERATION: ModerationDetails,
    ObservationKind.SPAN: SpanDetails,
}


class Observation(BaseModel):
    """One intercepted call or sub-step.

    State machine: ``open -> ok | failed``. Both outcomes are terminal.
    ``parent_observation_id`` nests tool-call and error spans under the
    generation that produced them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    trace_id: str
    parent_observation_id: str | None = None
    name: str
    model: str | None = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    input: Any = None
    output: Any = None
    usage: dict[str, int | float] = Field(default_factory=dict)
    cost: Cost = ZERO_COST
    status: ObservationStatus = ObservationStatus.OPEN
    status_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    details: ObservationDetails = Field(default_factory=SpanDetails)

    @model_validator(mode="after")
    def _check_timing(self) -> "Observation":
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @property
    def kind(self) -> ObservationKind:
        return self.details.kind

    @property
    def is_open(self) -> bool:
        return self.status == ObservationStatus.OPEN

    @property
    def total_tokens(self) -> int:
        """Token count contributed to roll-ups. Missing usage counts as zero."""
        if "total_tokens" in self.usage and self.usage["total_tokens"] is not None:
            return int(self.usage["total_tokens"])
        return int(self.usage.get("input_tokens") or 0) + int(self.usage.get("output_tokens") or 0)

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds() * 1000, 2)

    def _merged_details(self, changes: dict[str, Any]) -> BaseModel:
        details_cls = type(self.details)
        known = {k: v for k, v in changes.items() if k in details_cls.model_fields and k != "kind"}
        return details_cls.model_validate({**self.details.model_dump(), **known})

    def _close(self, update: dict[str, Any]) -> "Observation":
        if not self.is_open:
            raise InvalidTransitionError(f"Observation {self.id} is already {self.status}")
        end_time = update.get("end_time") or utcnow()
        # end_time never precedes start_time, even under clock skew
        update["end_time"] = max(end_time, self.start_time)
        return self.model_copy(update=update)

    def finalize(
        self,
        *,
        output: Any = None,
        usage: dict[str, int | float] | None = None,
        cost: Decimal | None = None,
        metadata: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
        end_time: datetime | None = None,
    ) -> "Observation":
        """Return a copy in the ``ok`` state with output, usage and cost filled in."""
        if cost is not None and cost < 0:
            raise ValueError(f"cost must be non-negative, got {cost}")
        update: dict[str, Any] = {"status": ObservationStatus.OK, "output": output, "end_time": end_time}
        if usage is not None:
            update["usage"] = dict(usage)
        if cost is not None:
            update["cost"] = cost
        if metadata:
            update["metadata"] = {**self.metadata, **metadata}
        if details:
            update["details"] = self._merged_details(details)
        return self._close(update)

    def fail(
        self,
        *,
        status_message: str = "FAILED",
        metadata: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
        end_time: datetime | None = None,
    ) -> "Observation":
        """Return a copy in the ``failed`` state."""
        update: dict[str, Any] = {"status": ObservationStatus.FAILED, "status_message": status_message, "end_time": end_time}
        if metadata:
            update["metadata"] = {**self.metadata, **metadata}
        if details:
            update["details"] = self._merged_details(details)
        return self._close(update)
