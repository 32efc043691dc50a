"""OpenAI SDK adapter.

``instrument_openai(client, session)`` hands back a proxy over an ``OpenAI``
or ``AsyncOpenAI`` client whose capability entry points are recorded:

- ``chat.completions.create`` -> Generation
- ``embeddings.create`` -> Embedding
- ``images.generate`` -> ImageGeneration
- ``audio.transcriptions.create`` -> Transcription
- ``moderations.create`` -> Moderation

Every other attribute resolves on the wrapped client, so the proxy can be
passed anywhere the client is expected.
"""

from collections.abc import Mapping
from typing import Any

from openai import AsyncOpenAI, OpenAI

from observ_core.logging import get_pipeline_logger
from observ_core.models import Session
from observ_core.observability import MESSAGE_CONTENT_LIMIT, TelemetryRecorder
from observ_core.pricing import PricingLookup

from ._base import INSTRUMENTED_FLAG, CallInfo, format_payload, read_field
from .chat import GenerationInstrumenter, message_entry
from .embedding import EmbeddingInstrumenter
from .image_generation import ImageGenerationInstrumenter
from .moderation import ModerationInstrumenter
from .transcription import TranscriptionInstrumenter

logger = get_pipeline_logger(__name__)


def _last_user_content(messages: Any) -> Any:
    for message in reversed(list(messages or [])):
        if read_field(message, "role") == "user":
            return read_field(message, "content")
    return None


class CompletionInstrumenter(GenerationInstrumenter):
    """Records ``chat.completions.create`` calls as Generations."""

    capability = "chat_completion"
    trace_name = "chat.completions"

    def _trace_input(self, call: CallInfo) -> Any:
        return {"text": format_payload(_last_user_content(call.argument(None, "messages")), MESSAGE_CONTENT_LIMIT)}

    def _observation_input(self, call: CallInfo) -> Any:
        return format_payload(_last_user_content(call.argument(None, "messages")), MESSAGE_CONTENT_LIMIT)

    def _messages_snapshot(self, call: CallInfo) -> list[dict[str, Any]]:
        return [message_entry(message) for message in call.argument(None, "messages") or []]


class _Namespace:
    """Attribute proxy that replaces selected members of a client resource."""

    def __init__(self, target: Any, **overrides: Any) -> None:
        self._target = target
        for name, value in overrides.items():
            setattr(self, name, value)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._target, name)


class InstrumentedOpenAI:
    """Proxy over an OpenAI client with recorded capability calls."""

    def __init__(
        self,
        client: OpenAI | AsyncOpenAI,
        session: Session | str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
        recorder: TelemetryRecorder | None = None,
        pricing: PricingLookup | None = None,
    ) -> None:
        options: dict[str, Any] = {"context": context, "recorder": recorder, "pricing": pricing}
        self._client = client
        self.completions = CompletionInstrumenter(session, **options)
        self.embedding = EmbeddingInstrumenter(session, **options)
        self.image_generation = ImageGenerationInstrumenter(session, **options)
        self.transcription = TranscriptionInstrumenter(session, **options)
        self.moderation = ModerationInstrumenter(session, **options)

        self.chat = _Namespace(
            client.chat,
            completions=_Namespace(client.chat.completions, create=self.completions.wrap(client.chat.completions.create)),
        )
        self.embeddings = _Namespace(client.embeddings, create=self.embedding.wrap(client.embeddings.create))
        self.images = _Namespace(client.images, generate=self.image_generation.wrap(client.images.generate))
        self.audio = _Namespace(
            client.audio,
            transcriptions=_Namespace(
                client.audio.transcriptions, create=self.transcription.wrap(client.audio.transcriptions.create)
            ),
        )
        self.moderations = _Namespace(client.moderations, create=self.moderation.wrap(client.moderations.create))
        setattr(self, INSTRUMENTED_FLAG, True)

    @property
    def wrapped(self) -> OpenAI | AsyncOpenAI:
        return self._client

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client, name)


def instrument_openai(
    client: OpenAI | AsyncOpenAI | InstrumentedOpenAI,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> InstrumentedOpenAI:
    """Wrap an OpenAI client. An already-instrumented proxy is returned unchanged."""
    if isinstance(client, InstrumentedOpenAI):
        return client
    instrumented = InstrumentedOpenAI(client, session, context=context, recorder=recorder, pricing=pricing)
    kind = "async" if isinstance(client, AsyncOpenAI) else "sync"
    logger.info(f"Instrumented {kind} OpenAI client for session {instrumented.completions.session_id}")
    return instrumented
