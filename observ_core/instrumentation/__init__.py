"""Provider-call interception: one instrumenter per capability plus the OpenAI SDK adapter."""

from ._base import CallScope, ExplicitTrace, Instrumenter, Outcome
from .chat import ChatInstrumenter, GenerationInstrumenter, InstrumentedChat, instrument_chat
from .embedding import EmbeddingInstrumenter, instrument_embedding
from .image_generation import ImageGenerationInstrumenter, instrument_image_generation
from .moderation import ModerationInstrumenter, instrument_moderation, normalize_moderation
from .observable_service import ObservableService
from .openai_client import CompletionInstrumenter, InstrumentedOpenAI, instrument_openai
from .transcription import TranscriptionInstrumenter, instrument_transcription

__all__ = [
    "CallScope",
    "ChatInstrumenter",
    "CompletionInstrumenter",
    "EmbeddingInstrumenter",
    "ExplicitTrace",
    "GenerationInstrumenter",
    "ImageGenerationInstrumenter",
    "InstrumentedChat",
    "InstrumentedOpenAI",
    "Instrumenter",
    "ModerationInstrumenter",
    "ObservableService",
    "Outcome",
    "TranscriptionInstrumenter",
    "instrument_chat",
    "instrument_embedding",
    "instrument_image_generation",
    "instrument_moderation",
    "instrument_openai",
    "instrument_transcription",
    "normalize_moderation",
]
