"""Background guardrail worker consuming entity references."""

import asyncio
import contextlib
from threading import Event, Thread

from observ_core.logging import get_pipeline_logger
from observ_core.models import EntityRef, Session, Trace
from observ_core.observability import TelemetryListener

from .evaluator import GuardrailEvaluator

logger = get_pipeline_logger(__name__)

_SENTINEL = object()


class GuardrailWorker(TelemetryListener):
    """Runs guardrail evaluation off the caller's thread.

    Uses a dedicated thread with its own asyncio event loop. Callers push
    entity references via ``submit()``, which uses
    ``loop.call_soon_threadsafe()``. Each reference is evaluated in isolation;
    a failure is logged and the worker moves on. Registered as a recorder
    listener, it queues every finalized trace and session automatically.
    """

    def __init__(self, evaluator: GuardrailEvaluator) -> None:
        """Store config. Does NOT start the worker thread."""
        self._evaluator = evaluator
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[EntityRef | Event | object] | None = None
        self._thread: Thread | None = None
        self._shutdown = False
        self._ready = Event()
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._shutdown

    def start(self) -> None:
        """Start the background worker thread."""
        if self._thread is not None:
            return
        self._thread = Thread(target=self._thread_main, name="guardrail-worker", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=10.0):
            logger.warning("Guardrail worker thread did not start within 10 seconds")

    def _thread_main(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._queue = asyncio.Queue()
        self._ready.set()
        try:
            self._loop.run_until_complete(self._run())
        finally:
            self._loop.close()
            self._loop = None

    async def _run(self) -> None:
        assert self._queue is not None, "_run() must be called after _queue is initialized"
        while True:
            item = await self._queue.get()
            if item is _SENTINEL:
                break
            if isinstance(item, Event):
                item.set()
            elif isinstance(item, EntityRef):
                self._process(item)

    def _process(self, ref: EntityRef) -> None:
        try:
            queued = self._evaluator.evaluate(ref)
        except Exception as e:
            self.failed += 1
            logger.error(f"Guardrail evaluation failed for {ref}: {e}")
            return
        self.processed += 1
        if queued is not None:
            logger.info(f"Guardrail queued {ref} for review: {queued.reason} ({queued.priority})")

    def submit(self, ref: EntityRef) -> None:
        """Queue an entity for evaluation. Thread-safe, non-blocking."""
        if self._shutdown or self._loop is None or self._queue is None:
            return
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._queue.put_nowait, ref)

    def flush(self, timeout: float = 30.0) -> None:
        """Block until everything submitted so far is evaluated."""
        if self._shutdown or self._loop is None or self._queue is None:
            return
        barrier = Event()
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, barrier)
        except RuntimeError:
            return
        barrier.wait(timeout=timeout)

    def shutdown(self, timeout: float = 60.0) -> None:
        """Drain the queue and stop the worker thread."""
        if self._shutdown:
            return
        self._shutdown = True
        if self._loop is not None and self._queue is not None:
            with contextlib.suppress(RuntimeError):
                self._loop.call_soon_threadsafe(self._queue.put_nowait, _SENTINEL)
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    # --- TelemetryListener ---

    def trace_finalized(self, trace: Trace) -> None:
        self.submit(EntityRef.trace(trace.id))

    def session_finalized(self, session: Session) -> None:
        self.submit(EntityRef.session(session.id))
