"""Speech-to-text instrumentation.

Wraps any ``transcribe(audio, model=..., language=...)`` callable. Results
expose ``text`` and optionally ``duration``, ``language``, ``segments`` and
``model`` (OpenAI verbose / diarized transcriptions fit this shape).
"""

from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel

from observ_core.models import ObservationKind, Session, TranscriptionDetails
from observ_core.observability import TelemetryRecorder, truncate
from observ_core.pricing import PricingLookup

from ._base import CallInfo, Instrumenter, Outcome, compact, read_field

F = TypeVar("F", bound=Callable[..., Any])

TRANSCRIPT_INPUT_LIMIT = 1_000
ESTIMATED_TOKENS_PER_MINUTE = 150


def transcript_segments(result: Any) -> list[Any]:
    return list(read_field(result, "segments") or [])


def has_diarization(result: Any) -> bool:
    segments = transcript_segments(result)
    return bool(segments) and read_field(segments[0], "speaker") is not None


def speakers_count(result: Any) -> int | None:
    if not has_diarization(result):
        return None
    return len({read_field(segment, "speaker") for segment in transcript_segments(result)} - {None})


class TranscriptionInstrumenter(Instrumenter):
    """Records each transcription call as a Transcription observation."""

    kind = ObservationKind.TRANSCRIPTION
    capability = "transcription"
    trace_name = "transcription"
    observation_name = "transcribe"
    default_model = "whisper-1"

    def _audio(self, call: CallInfo) -> Any:
        return call.argument(0, "audio", "file", "audio_path")

    def _audio_label(self, call: CallInfo) -> str:
        audio = self._audio(call)
        return str(read_field(audio, "name", default=audio))

    def _trace_input(self, call: CallInfo) -> Any:
        return {"audio_path": self._audio_label(call)}

    def _trace_metadata(self, call: CallInfo) -> dict[str, Any]:
        return compact({"model": call.model_id, "language": call.argument(None, "language")})

    def _observation_input(self, call: CallInfo) -> Any:
        return self._audio_label(call)

    def _observation_metadata(self, call: CallInfo) -> dict[str, Any]:
        return compact(
            {
                "language": call.argument(None, "language"),
                "has_diarization": bool(call.argument(None, "speaker_names")) or None,
            }
        )

    def _initial_details(self, call: CallInfo) -> BaseModel:
        return TranscriptionDetails(language=call.argument(None, "language"))

    def _cost(self, model_id: str | None, duration_s: float | None) -> Decimal:
        minutes = Decimal(str(duration_s or 0)) / 60
        per_minute = self._price(model_id, minutes, unit="audio_minute")
        if per_minute > 0:
            return per_minute
        return self._price(model_id, minutes * ESTIMATED_TOKENS_PER_MINUTE, unit="input_token")

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        text = read_field(result, "text")
        duration = read_field(result, "duration")
        language = read_field(result, "language") or call.argument(None, "language")
        segments_count = len(self._extract("segments", lambda: transcript_segments(result), []))
        model_id = read_field(result, "model") or call.model_id
        output = compact(
            {
                "model": model_id,
                "text_length": len(text or ""),
                "duration_s": duration,
                "segments_count": segments_count,
            }
        )
        details = compact(
            {
                "audio_duration_s": duration,
                "language": language,
                "segments_count": segments_count,
                "speakers_count": self._extract("speakers", lambda: speakers_count(result)),
                "has_diarization": self._extract("diarization", lambda: has_diarization(result), False),
            }
        )
        return Outcome(
            output=output,
            usage={},
            cost=self._extract("cost", lambda: self._cost(model_id, duration)),
            details=details,
            input=truncate(text, TRANSCRIPT_INPUT_LIMIT),
            trace_output=output,
            trace_metadata=compact({"audio_duration_s": duration, "language": language}),
        )


def instrument_transcription(
    transcribe: F,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> F:
    """Return ``transcribe`` wrapped so each call is recorded."""
    return TranscriptionInstrumenter(session, context=context, recorder=recorder, pricing=pricing).attach(transcribe)
