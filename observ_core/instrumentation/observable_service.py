"""Mixin for services that run LLM calls under one observability session.

A service either receives a session to report into, is explicitly disabled
with ``False``, or creates (and then owns) a standalone session of its own.
Owned sessions are finalized when ``with self.observability():`` exits,
whether the block succeeds or raises.
"""

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Literal, TypeVar

from observ_core.logging import get_pipeline_logger
from observ_core.models import Session, utcnow
from observ_core.observability import TelemetryRecorder, get_recorder
from observ_core.settings import settings

from .chat import InstrumentedChat, instrument_chat
from .embedding import instrument_embedding
from .image_generation import instrument_image_generation
from .moderation import instrument_moderation
from .openai_client import InstrumentedOpenAI, instrument_openai
from .transcription import instrument_transcription

logger = get_pipeline_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class ObservableService:
    """Gives a service an observability session and ``instrument_*`` helpers.

    Call ``init_observability()`` from ``__init__``. When observability is
    disabled (``False`` or ``settings.observ_enabled`` off), the helpers hand
    back the raw client or callable.
    """

    _observability_session: Session | None = None
    _owns_session: bool = False
    _observability_recorder: TelemetryRecorder | None = None

    def init_observability(
        self,
        session: Session | Literal[False] | None = None,
        *,
        service_name: str,
        metadata: Mapping[str, Any] | None = None,
        recorder: TelemetryRecorder | None = None,
    ) -> Session | None:
        self._observability_recorder = recorder
        if session is False:
            self._observability_session = None
            self._owns_session = False
        elif session is not None:
            self._observability_session = session
            self._owns_session = False
        else:
            self._observability_session = self._create_service_session(service_name, metadata or {})
            self._owns_session = self._observability_session is not None
        return self._observability_session

    @property
    def observability_session(self) -> Session | None:
        return self._observability_session

    @property
    def owns_observability_session(self) -> bool:
        return self._owns_session

    def _recorder(self) -> TelemetryRecorder:
        return self._observability_recorder or get_recorder()

    def _create_service_session(self, service_name: str, metadata: Mapping[str, Any]) -> Session | None:
        if not settings.observ_enabled:
            return None
        try:
            return self._recorder().start_session(
                user_id=f"{service_name}_service",
                metadata={
                    **metadata,
                    "agent_type": service_name,
                    "standalone": True,
                    "created_at": utcnow().isoformat(),
                },
            )
        except Exception as e:
            logger.error(f"[{type(self).__name__}] Failed to create observability session: {e}")
            return None

    def _finalize_service_session(self) -> None:
        if self._observability_session is None or self._observability_session.is_finalized:
            return
        try:
            self._observability_session = self._recorder().finalize_session(self._observability_session.id)
            logger.debug(f"[{type(self).__name__}] Session finalized: {self._observability_session.id}")
        except Exception as e:
            logger.error(f"[{type(self).__name__}] Failed to finalize session: {e}")

    @contextmanager
    def observability(self) -> Iterator[Session | None]:
        """Run a block under the service session, finalizing it afterwards if owned."""
        try:
            yield self._observability_session
        finally:
            if self._owns_session:
                self._finalize_service_session()

    # --- Instrumentation helpers ---

    def instrument_chat(self, chat: Any, *, context: Mapping[str, Any] | None = None) -> InstrumentedChat | Any:
        if self._observability_session is None:
            return chat
        return instrument_chat(chat, self._observability_session, context=context, recorder=self._recorder())

    def instrument_openai(self, client: Any, *, context: Mapping[str, Any] | None = None) -> InstrumentedOpenAI | Any:
        if self._observability_session is None:
            return client
        return instrument_openai(client, self._observability_session, context=context, recorder=self._recorder())

    def instrument_embedding(self, embed: F, *, context: Mapping[str, Any] | None = None) -> F:
        if self._observability_session is None:
            return embed
        return instrument_embedding(embed, self._observability_session, context=context, recorder=self._recorder())

    def instrument_image_generation(self, paint: F, *, context: Mapping[str, Any] | None = None) -> F:
        if self._observability_session is None:
            return paint
        return instrument_image_generation(paint, self._observability_session, context=context, recorder=self._recorder())

    def instrument_transcription(self, transcribe: F, *, context: Mapping[str, Any] | None = None) -> F:
        if self._observability_session is None:
            return transcribe
        return instrument_transcription(
            transcribe, self._observability_session, context=context, recorder=self._recorder()
        )

    def instrument_moderation(self, moderate: F, *, context: Mapping[str, Any] | None = None) -> F:
        if self._observability_session is None:
            return moderate
        return instrument_moderation(moderate, self._observability_session, context=context, recorder=self._recorder())
