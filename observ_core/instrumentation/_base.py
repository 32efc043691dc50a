"""Interception core shared by every capability instrumenter.

An ``Instrumenter`` wraps one provider-client callable so each call yields
telemetry while the call itself behaves exactly as before:

1. resolve the enclosing trace (explicit, or an ephemeral one for this call)
2. open an observation of the instrumenter's kind with a snapshot of the input
3. invoke the original callable unchanged
4. on success, finalize the observation with output, usage and cost; each
   derived field is extracted on its own and omitted when extraction fails
5. on failure, record a nested ``error`` span, fail the observation and
   re-raise the original exception object

Per-call pointers (current trace, observation, tool spans) live in a
``ContextVar`` keyed by instrumenter, so concurrent tasks or threads sharing
one instrumented client each see their own call.
"""

import functools
import inspect
import traceback
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, TypeVar, cast
from uuid import uuid4

from pydantic import BaseModel

from observ_core.exceptions import TelemetryExtractionError
from observ_core.logging import get_pipeline_logger
from observ_core.models import DETAILS_BY_KIND, ObservationKind, Session, SpanDetails, Trace
from observ_core.observability import TelemetryRecorder, get_recorder, trim_payload, truncate
from observ_core.pricing import PricingLookup, default_pricing

logger = get_pipeline_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

BACKTRACE_LIMIT = 10
INSTRUMENTED_FLAG = "__observ_instrumented__"
TOOL_PAYLOAD_LIMIT = 10_000


@dataclass
class CallScope:
    """Mutable pointers for one intercepted call (or one explicit trace)."""

    trace_id: str | None = None
    ephemeral: bool = False
    observation_id: str | None = None
    tool_spans: dict[str, str] = field(default_factory=dict)  # tool call id -> span id
    last_tool_span_id: str | None = None


_SCOPES: ContextVar[Mapping[str, CallScope]] = ContextVar("observ_call_scopes", default={})


@dataclass
class CallInfo:
    """Arguments of an intercepted call plus the scope it runs in."""

    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    scope: CallScope
    model_id: str | None = None

    def argument(self, position: int | None, *names: str, default: Any = None) -> Any:
        """Read an argument by keyword name(s), falling back to its position."""
        for name in names:
            if name in self.kwargs:
                return self.kwargs[name]
        if position is not None and len(self.args) > position:
            return self.args[position]
        return default


@dataclass
class Outcome:
    """Everything recorded when a call succeeds. ``None`` fields are omitted."""

    output: Any = None
    usage: dict[str, int | float] | None = None
    cost: Decimal | None = None
    details: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    input: Any = None
    trace_output: Any = None
    trace_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExplicitTrace:
    """Handle yielded by ``Instrumenter.trace()``. Set ``output`` before the block exits."""

    trace: Trace | None
    output: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def trace_id(self) -> str | None:
        return self.trace.id if self.trace else None


def read_field(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute or mapping key among ``names``."""
    if obj is None:
        return default
    for name in names:
        if isinstance(obj, Mapping):
            mapping = cast(Mapping[str, Any], obj)
            if name in mapping:
                return mapping[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return default


def compact(data: Mapping[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values."""
    return {k: v for k, v in data.items() if v is not None}


def format_backtrace(exc: BaseException, limit: int = BACKTRACE_LIMIT) -> list[str]:
    """Innermost-first stack excerpt of at most ``limit`` frames."""
    frames = traceback.extract_tb(exc.__traceback__)
    return [f"{frame.filename}:{frame.lineno}:in {frame.name}" for frame in reversed(frames)][:limit]


def format_payload(value: Any, limit: int = TOOL_PAYLOAD_LIMIT) -> Any:
    """Make tool arguments and results storable."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate(value, limit)
    if isinstance(value, BaseModel):
        return trim_payload(value.model_dump(mode="json"))
    if isinstance(value, (dict, list, tuple)):
        return trim_payload(value)
    return truncate(str(value), limit)


class Instrumenter:
    """Base class for capability instrumenters.

    Subclasses set ``kind``, ``trace_name`` and ``observation_name`` and
    override the capture hooks (``_trace_input``, ``_observation_input``,
    ``_model_id``, ``_initial_details``) and ``_build_outcome``.
    """

    kind: ClassVar[ObservationKind] = ObservationKind.SPAN
    capability: ClassVar[str] = "call"
    trace_name: ClassVar[str] = "call"
    observation_name: ClassVar[str] = "call"
    default_model: ClassVar[str | None] = None

    def __init__(
        self,
        session: Session | str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
        recorder: TelemetryRecorder | None = None,
        pricing: PricingLookup | None = None,
    ) -> None:
        self._session_id = session.id if isinstance(session, Session) else session
        self._context: dict[str, Any] = dict(context or {})
        self._recorder = recorder or get_recorder()
        self._pricing = pricing or default_pricing()
        self._key = uuid4().hex

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder

    def _context_metadata(self) -> dict[str, Any]:
        """Scalar context entries, copied into trace and observation metadata."""
        return {k: v for k, v in self._context.items() if isinstance(v, (str, int, float, bool))}

    # --- Per-call scope ---

    def current_scope(self) -> CallScope | None:
        """Scope of the call (or explicit trace) active in the current context."""
        return _SCOPES.get().get(self._key)

    @property
    def current_trace_id(self) -> str | None:
        scope = self.current_scope()
        return scope.trace_id if scope else None

    def _push_scope(self, scope: CallScope) -> Token[Mapping[str, CallScope]]:
        return _SCOPES.set({**_SCOPES.get(), self._key: scope})

    def _drop_scope(self) -> None:
        scopes = dict(_SCOPES.get())
        scopes.pop(self._key, None)
        _SCOPES.set(scopes)

    # --- Guards ---

    def _attempt(self, action: str, fn: Callable[[], Any]) -> Any:
        """Run a telemetry write. Failures are logged and yield ``None``."""
        try:
            return fn()
        except Exception as e:
            logger.error(f"Failed to {action} for {self.capability}: {e}")
            return None

    def _extract(self, label: str, fn: Callable[[], Any], default: Any = None) -> Any:
        """Run one derived-field extraction. Failures are logged and yield ``default``."""
        try:
            return fn()
        except Exception as e:
            logger.warning(f"Failed to extract {label} for {self.capability}: {e}")
            return default

    def _price(self, model_id: str | None, quantity: float | int | Decimal, **dimensions: Any) -> Decimal:
        try:
            amount = Decimal(str(quantity))
        except ArithmeticError as e:
            raise TelemetryExtractionError(f"Cannot price {quantity!r} units of {model_id}") from e
        unit_price = self._pricing.price(model_id, dimensions)
        return (unit_price * amount).quantize(Decimal("0.000000001"))

    # --- Capture hooks ---

    def _model_id(self, call: CallInfo) -> str | None:
        return call.argument(None, "model", default=self.default_model)

    def _trace_input(self, call: CallInfo) -> Any:
        return self._observation_input(call)

    def _trace_metadata(self, call: CallInfo) -> dict[str, Any]:
        return compact({"model": call.model_id})

    def _observation_input(self, call: CallInfo) -> Any:
        return format_payload(call.argument(0, "input"))

    def _observation_metadata(self, call: CallInfo) -> dict[str, Any]:
        return {}

    def _initial_details(self, call: CallInfo) -> BaseModel:
        return DETAILS_BY_KIND[self.kind]()

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        return Outcome(output=format_payload(result), trace_output=format_payload(result))

    def _failure_details(self) -> dict[str, Any]:
        return {}

    # --- Explicit traces ---

    def create_trace(
        self,
        name: str = "chat_exchange",
        *,
        input: Any = None,
        metadata: Mapping[str, Any] | None = None,
        tags: tuple[str, ...] | list[str] = (),
    ) -> Trace | None:
        """Open a trace that subsequent calls in this context reuse."""
        trace = self._attempt(
            "open trace",
            lambda: self._recorder.open_trace(
                session_id=self._session_id,
                name=name,
                input=input,
                metadata={**self._context_metadata(), **(metadata or {})},
                tags=tags,
            ),
        )
        if trace is not None:
            self._push_scope(CallScope(trace_id=trace.id))
        return trace

    def finalize_current_trace(self, output: Any = None, *, metadata: Mapping[str, Any] | None = None) -> Trace | None:
        """Finalize the explicit trace opened with ``create_trace()``."""
        scope = self.current_scope()
        if scope is None or scope.trace_id is None:
            return None
        self._drop_scope()
        self._close_tool_spans(scope)
        return self._close_trace(scope.trace_id, output, dict(metadata or {}))

    def _close_trace(self, trace_id: str, output: Any, metadata: dict[str, Any]) -> Trace | None:
        trace = self._attempt("load trace", lambda: self._recorder.get_trace(trace_id))
        if trace is None or trace.is_finalized:
            return trace
        return self._attempt("finalize trace", lambda: self._recorder.finalize_trace(trace_id, output=output, metadata=metadata))

    @contextmanager
    def trace(
        self,
        name: str = "chat_exchange",
        *,
        input: Any = None,
        metadata: Mapping[str, Any] | None = None,
        tags: tuple[str, ...] | list[str] = (),
    ) -> Iterator[ExplicitTrace]:
        """Open an explicit trace for the duration of the block.

        Calls made inside the block share the trace instead of opening
        ephemeral ones. The trace is finalized on exit with ``handle.output``;
        an exception escaping the block is recorded in the trace metadata.
        """
        trace = self._attempt(
            "open trace",
            lambda: self._recorder.open_trace(
                session_id=self._session_id,
                name=name,
                input=input,
                metadata={**self._context_metadata(), **(metadata or {})},
                tags=tags,
            ),
        )
        handle = ExplicitTrace(trace=trace)
        scope = CallScope(trace_id=trace.id) if trace is not None else None
        token = self._push_scope(scope) if scope is not None else None
        try:
            yield handle
        except BaseException as exc:
            if trace is not None:
                handle.metadata["error"] = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            if token is not None:
                _SCOPES.reset(token)
            if scope is not None:
                self._close_tool_spans(scope, failed="error" in handle.metadata)
            if trace is not None:
                handle.trace = self._close_trace(trace.id, handle.output, handle.metadata) or handle.trace

    # --- Wrapping ---

    def attach(self, func: F) -> F:
        """Wrap ``func`` and log the attachment."""
        wrapped = self.wrap(func)
        if wrapped is not func:
            logger.info(f"Instrumented {self.capability} for session {self._session_id}")
        return wrapped

    def wrap(self, func: F) -> F:
        """Return an instrumented version of ``func``. Sync and async callables are supported."""
        if getattr(func, INSTRUMENTED_FLAG, False):
            return func

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                call, token = self._begin(args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except BaseException as exc:
                    self._record_failure(call, exc)
                    raise
                finally:
                    _SCOPES.reset(token)
                self._record_success(call, result)
                return result

            wrapper: Any = async_wrapper
        else:

            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                call, token = self._begin(args, kwargs)
                try:
                    result = func(*args, **kwargs)
                except BaseException as exc:
                    self._record_failure(call, exc)
                    raise
                finally:
                    _SCOPES.reset(token)
                if inspect.isawaitable(result):
                    return self._settle(call, result)
                self._record_success(call, result)
                return result

            wrapper = sync_wrapper

        setattr(wrapper, INSTRUMENTED_FLAG, True)
        wrapper.__observ_instrumenter__ = self
        return cast(F, wrapper)

    async def _settle(self, call: CallInfo, awaitable: Any) -> Any:
        """Finish a call whose sync entry point returned an awaitable."""
        token = self._push_scope(call.scope)
        try:
            result = await awaitable
        except BaseException as exc:
            self._record_failure(call, exc)
            raise
        finally:
            _SCOPES.reset(token)
        self._record_success(call, result)
        return result

    def _begin(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[CallInfo, Token[Mapping[str, CallScope]]]:
        """Open trace and observation for a call. Never raises."""
        scope = CallScope()
        call = CallInfo(args=args, kwargs=dict(kwargs), scope=scope)
        call.model_id = self._extract("model id", lambda: self._model_id(call))

        enclosing = self.current_scope()
        if enclosing is not None and enclosing.trace_id:
            scope.trace_id = enclosing.trace_id
        else:
            trace_input = self._extract("trace input", lambda: self._trace_input(call))
            trace_metadata = self._extract("trace metadata", lambda: self._trace_metadata(call), {})
            trace = self._attempt(
                "open trace",
                lambda: self._recorder.open_trace(
                    session_id=self._session_id,
                    name=self.trace_name,
                    input=trace_input,
                    metadata={**self._context_metadata(), **trace_metadata},
                ),
            )
            if trace is not None:
                scope.trace_id = trace.id
                scope.ephemeral = True

        if scope.trace_id is not None:
            trace_id = scope.trace_id
            observation_input = self._extract("input snapshot", lambda: self._observation_input(call))
            observation_metadata = self._extract("observation metadata", lambda: self._observation_metadata(call), {})
            details = self._extract("call details", lambda: self._initial_details(call)) or DETAILS_BY_KIND[self.kind]()
            observation = self._attempt(
                f"open {self.kind} observation",
                lambda: self._recorder.open_observation(
                    trace_id,
                    name=self.observation_name,
                    details=details,
                    input=observation_input,
                    model=call.model_id,
                    metadata={**self._context_metadata(), **observation_metadata},
                ),
            )
            if observation is not None:
                scope.observation_id = observation.id

        return call, self._push_scope(scope)

    def _record_success(self, call: CallInfo, result: Any) -> None:
        scope = call.scope
        try:
            outcome = self._build_outcome(call, result)
        except Exception as e:
            logger.warning(f"Failed to describe {self.capability} result: {e}")
            outcome = Outcome()

        self._close_tool_spans(scope)
        if scope.observation_id is not None:
            observation_id = scope.observation_id
            try:
                self._recorder.finalize_observation(
                    observation_id,
                    output=outcome.output,
                    usage=outcome.usage,
                    cost=outcome.cost,
                    metadata=outcome.metadata,
                    details=outcome.details,
                    input=outcome.input,
                )
            except Exception as e:
                logger.error(f"Failed to finalize {self.kind} observation: {e}")
                self._attempt(
                    "finalize observation with known-safe fields",
                    lambda: self._recorder.finalize_observation(observation_id, usage=outcome.usage),
                )

        if scope.ephemeral and scope.trace_id is not None:
            trace_id = scope.trace_id
            self._attempt(
                "finalize trace",
                lambda: self._recorder.finalize_trace(trace_id, output=outcome.trace_output, metadata=outcome.trace_metadata),
            )

    def _record_failure(self, call: CallInfo, exc: BaseException) -> None:
        scope = call.scope
        logger.error(f"Error captured in {self.capability}: {type(exc).__name__} - {exc}")
        if scope.trace_id is None:
            return
        trace_id = scope.trace_id

        self._attempt(
            "record error span",
            lambda: self._recorder.record_span(
                trace_id,
                name="error",
                input={"error_message": str(exc), "backtrace": format_backtrace(exc)},
                output={"error_captured": True},
                metadata={"error_type": type(exc).__name__, "level": "ERROR"},
                parent_observation_id=scope.observation_id,
                level="ERROR",
            ),
        )
        self._close_tool_spans(scope, failed=True)
        if scope.observation_id is not None:
            observation_id = scope.observation_id
            self._attempt(
                "fail observation",
                lambda: self._recorder.fail_observation(observation_id, details=self._failure_details()),
            )
        if scope.ephemeral:
            self._attempt(
                "finalize trace",
                lambda: self._recorder.finalize_trace(trace_id, metadata={"error": f"{type(exc).__name__}: {exc}"}),
            )
        else:
            self._attempt(
                "annotate trace",
                lambda: self._recorder.annotate_trace(trace_id, {"error": f"{type(exc).__name__}: {exc}"}),
            )

    # --- Tool sub-steps ---

    def on_tool_call(self, tool_call: Any) -> None:
        """Open a nested Span for a tool invocation within the current call."""
        scope = self.current_scope()
        if scope is None or scope.trace_id is None:
            return
        trace_id = scope.trace_id
        tool_name = read_field(tool_call, "name", default="unknown")
        tool_call_id = read_field(tool_call, "id", "tool_call_id")
        span = self._attempt(
            "open tool span",
            lambda: self._recorder.open_observation(
                trace_id,
                name=f"tool:{tool_name}",
                details=SpanDetails(level="INFO"),
                input=format_payload(read_field(tool_call, "arguments", "args")),
                metadata=compact({"tool_name": tool_name, "tool_call_id": tool_call_id, "level": "INFO"}),
                parent_observation_id=scope.observation_id,
            ),
        )
        if span is None:
            return
        scope.tool_spans[tool_call_id or span.id] = span.id
        scope.last_tool_span_id = span.id
        logger.info(f"Tool call started: {tool_name}")

    def on_tool_result(self, result: Any, tool_call_id: str | None = None) -> None:
        """Finalize the tool Span matching ``tool_call_id`` (or the latest one)."""
        scope = self.current_scope()
        if scope is None:
            return
        tool_call_id = tool_call_id or read_field(result, "tool_call_id")
        if tool_call_id and tool_call_id in scope.tool_spans:
            span_id = scope.tool_spans.pop(tool_call_id)
        elif scope.last_tool_span_id is not None:
            span_id = scope.last_tool_span_id
            scope.tool_spans = {k: v for k, v in scope.tool_spans.items() if v != span_id}
        else:
            return
        if scope.last_tool_span_id == span_id:
            scope.last_tool_span_id = None
        output = format_payload(read_field(result, "content", default=result))
        span = self._attempt("finalize tool span", lambda: self._recorder.finalize_observation(span_id, output=output))
        if span is not None:
            logger.info(f"Tool call completed: {span.name}")

    def _close_tool_spans(self, scope: CallScope, *, failed: bool = False) -> None:
        """Close tool spans left open when the enclosing call ends."""
        for span_id in list(scope.tool_spans.values()):
            if failed:
                self._attempt("fail tool span", lambda span_id=span_id: self._recorder.fail_observation(span_id))
            else:
                self._attempt("finalize tool span", lambda span_id=span_id: self._recorder.finalize_observation(span_id))
        scope.tool_spans.clear()
        scope.last_tool_span_id = None
