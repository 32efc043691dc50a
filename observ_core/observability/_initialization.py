"""Observability exporter initialization.

Provides ``initialize_observability()`` as the single entry point for setting
up Laminar and the OpenTelemetry mirror on a recorder.
"""

from lmnr import Instruments, Laminar

from observ_core.logging import get_pipeline_logger
from observ_core.settings import Settings, settings

from ._otel_bridge import OTelObservationMirror
from ._recorder import TelemetryRecorder, get_recorder

logger = get_pipeline_logger(__name__)

_laminar_initialized = False


def _initialise_laminar(config: Settings) -> bool:
    """Initialize the Laminar SDK with the project API key.

    Automatic OpenAI instrumentation is disabled: OpenAI calls are already
    captured by the instrumenters and mirrored as spans.
    """
    global _laminar_initialized
    if _laminar_initialized:
        return True
    if not config.lmnr_project_api_key:
        return False
    Laminar.initialize(
        project_api_key=config.lmnr_project_api_key,
        disabled_instruments=[Instruments.OPENAI] if Instruments.OPENAI else [],
        export_timeout_seconds=15,
    )
    _laminar_initialized = True
    return True


def initialize_observability(recorder: TelemetryRecorder | None = None, config: Settings | None = None) -> OTelObservationMirror | None:
    """Initialize exporters for a recorder (the global one by default).

    Call once at startup. Laminar is initialized when an API key is
    configured; the OTel mirror is registered when ``otel_mirror_enabled`` is
    set or Laminar is active. Returns the registered mirror, if any.
    """
    config = config or settings
    recorder = recorder or get_recorder()

    laminar_active = False
    try:
        laminar_active = _initialise_laminar(config)
        if laminar_active:
            logger.info("Laminar initialized")
    except Exception as e:
        logger.warning(f"Laminar initialization failed: {e}")

    if not (config.otel_mirror_enabled or laminar_active):
        return None

    mirror = OTelObservationMirror()
    recorder.add_listener(mirror)
    logger.info("OpenTelemetry observation mirror registered")
    return mirror
