"""Chat instrumentation: one Generation observation per ``ask`` call.

The chat client is any object exposing ``ask(message, **kwargs)``. When it
also exposes ``model``, ``messages`` and the ``on_tool_call`` /
``on_tool_result`` hooks, the model id, conversation snapshot and nested tool
spans are captured too. Replies may be plain message objects (``content``,
``input_tokens``, ``output_tokens``, ``model_id``, ``raw``) or OpenAI
``ChatCompletion`` models.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, cast

from pydantic import BaseModel

from observ_core.logging import get_pipeline_logger
from observ_core.models import GenerationDetails, ObservationKind, Session, utcnow
from observ_core.observability import MESSAGE_CONTENT_LIMIT, RAW_BODY_LIMIT, TelemetryRecorder, bounded_mapping, truncate
from observ_core.pricing import PricingLookup

from ._base import INSTRUMENTED_FLAG, CallInfo, Instrumenter, Outcome, compact, format_payload, read_field

logger = get_pipeline_logger(__name__)

MODEL_PARAMETER_KEYS = (
    "temperature",
    "max_tokens",
    "top_p",
    "frequency_penalty",
    "presence_penalty",
    "stop",
    "response_format",
    "seed",
)

RELEVANT_HEADERS = (
    "x-request-id",
    "openai-processing-ms",
    "x-ratelimit-remaining-requests",
    "x-ratelimit-remaining-tokens",
    "x-ratelimit-limit-requests",
    "x-ratelimit-limit-tokens",
    "openai-organization",
    "openai-version",
    "content-type",
)


@dataclass
class ChatReply:
    """Provider-neutral view of a chat reply."""

    content: Any = None
    model_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    body: dict[str, Any] | None = None
    raw_text: str | None = None
    headers: Mapping[str, Any] = field(default_factory=dict)
    status: int | None = None


def _first_choice(body: Mapping[str, Any] | None) -> Mapping[str, Any]:
    choices = (body or {}).get("choices") or []
    return cast(Mapping[str, Any], choices[0]) if choices else {}


def read_chat_reply(result: Any) -> ChatReply:
    """Normalize a reply object or OpenAI completion into a ``ChatReply``."""
    reply = ChatReply()
    raw = read_field(result, "raw")
    if raw is not None:
        body = read_field(raw, "body")
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                reply.raw_text = body
                body = None
        reply.body = dict(body) if isinstance(body, Mapping) else None
        headers = read_field(raw, "headers")
        reply.headers = headers if isinstance(headers, Mapping) else dict(headers or {})
        reply.status = read_field(raw, "status", "status_code")
    elif isinstance(result, BaseModel):
        reply.body = result.model_dump(mode="json", exclude_none=True)

    body_usage = (reply.body or {}).get("usage") or {}
    reply.content = read_field(result, "content")
    if reply.content is None and reply.body is not None:
        reply.content = (_first_choice(reply.body).get("message") or {}).get("content")
    reply.model_id = read_field(result, "model_id") or (reply.body or {}).get("model")
    reply.input_tokens = read_field(result, "input_tokens")
    if reply.input_tokens is None:
        reply.input_tokens = body_usage.get("prompt_tokens", body_usage.get("input_tokens"))
    reply.output_tokens = read_field(result, "output_tokens")
    if reply.output_tokens is None:
        reply.output_tokens = body_usage.get("completion_tokens", body_usage.get("output_tokens"))
    return reply


def generation_usage(reply: ChatReply) -> dict[str, int | float]:
    input_tokens = reply.input_tokens or 0
    output_tokens = reply.output_tokens or 0
    usage: dict[str, int | float] = {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
    }
    raw_usage = (reply.body or {}).get("usage") or {}
    cached = (raw_usage.get("prompt_tokens_details") or {}).get("cached_tokens")
    if cached:
        usage["cached_input_tokens"] = cached
    reasoning = (raw_usage.get("completion_tokens_details") or {}).get("reasoning_tokens")
    if reasoning:
        usage["reasoning_tokens"] = reasoning
    return usage


def provider_metadata(reply: ChatReply) -> dict[str, Any]:
    body = reply.body or {}
    headers = reply.headers
    metadata: dict[str, Any] = {
        "request_id": body.get("id"),
        "system_fingerprint": body.get("system_fingerprint"),
        "model_version": body.get("model"),
        "x_request_id": headers.get("x-request-id"),
        "model_id": reply.model_id,
    }
    if headers.get("openai-processing-ms") is not None:
        metadata["processing_ms"] = int(headers["openai-processing-ms"])
    if headers.get("x-ratelimit-remaining-requests") is not None:
        metadata["ratelimit_remaining_requests"] = int(headers["x-ratelimit-remaining-requests"])
    if headers.get("x-ratelimit-remaining-tokens") is not None:
        metadata["ratelimit_remaining_tokens"] = int(headers["x-ratelimit-remaining-tokens"])
    return compact(metadata)


def raw_response_excerpt(reply: ChatReply) -> dict[str, Any] | None:
    excerpt: dict[str, Any] = {}
    if reply.status is not None:
        excerpt["status"] = reply.status
    if reply.body is not None:
        excerpt["body"] = bounded_mapping(reply.body, MESSAGE_CONTENT_LIMIT)
    elif reply.raw_text is not None:
        excerpt["body"] = truncate(reply.raw_text, RAW_BODY_LIMIT)
    headers = {name: reply.headers[name] for name in RELEVANT_HEADERS if reply.headers.get(name) is not None}
    if headers:
        excerpt["headers"] = headers
    return excerpt or None


def message_entry(message: Any) -> dict[str, Any]:
    role = read_field(message, "role", default="unknown")
    return {
        "role": str(getattr(role, "value", role)),
        "content": truncate(read_field(message, "content"), MESSAGE_CONTENT_LIMIT),
    }


def _attachment_entry(attachment: Any) -> dict[str, Any]:
    if isinstance(attachment, str):
        return {"path": attachment}
    return {"type": type(attachment).__name__}


class GenerationInstrumenter(Instrumenter):
    """Shared Generation handling: model parameters, prompt metadata and reply extraction."""

    kind = ObservationKind.GENERATION
    capability = "generation"
    observation_name = "llm_call"

    def _model_parameters(self, call: CallInfo) -> dict[str, Any]:
        return {key: call.kwargs[key] for key in MODEL_PARAMETER_KEYS if call.kwargs.get(key) is not None}

    def _observation_metadata(self, call: CallInfo) -> dict[str, Any]:
        return {key: call.kwargs[key] for key in ("temperature", "max_tokens") if key in call.kwargs}

    def _messages_snapshot(self, call: CallInfo) -> list[dict[str, Any]]:
        return []

    def _prompt_metadata(self) -> dict[str, Any]:
        agent = self._context.get("agent_class") or self._context.get("agent")
        if agent is None or not hasattr(agent, "prompt_metadata"):
            return {}
        metadata = agent.prompt_metadata
        if callable(metadata):
            metadata = metadata()
        return {key: metadata.get(key) for key in ("prompt_name", "prompt_version") if metadata.get(key) is not None}

    def _initial_details(self, call: CallInfo) -> BaseModel:
        return GenerationDetails(
            model_parameters=self._extract("model parameters", lambda: self._model_parameters(call), {}),
            messages=tuple(self._extract("message history", lambda: self._messages_snapshot(call), [])),
            completion_start_time=utcnow(),
            **self._extract("prompt metadata", self._prompt_metadata, {}),
        )

    def _failure_details(self) -> dict[str, Any]:
        return {"finish_reason": "error"}

    def _build_outcome(self, call: CallInfo, result: Any) -> Outcome:
        reply = read_chat_reply(result)
        output = format_payload(reply.content, MESSAGE_CONTENT_LIMIT)
        usage = self._extract("usage", lambda: generation_usage(reply))
        model_id = reply.model_id or call.model_id
        cost = self._extract(
            "cost",
            lambda: self._price(model_id, reply.input_tokens or 0, unit="input_token")
            + self._price(model_id, reply.output_tokens or 0, unit="output_token"),
        )
        details = compact(
            {
                "finish_reason": self._extract("finish reason", lambda: _first_choice(reply.body).get("finish_reason")),
                "provider_metadata": self._extract("provider metadata", lambda: provider_metadata(reply)),
                "raw_response": self._extract("raw response", lambda: raw_response_excerpt(reply)),
            }
        )
        return Outcome(output=output, usage=usage, cost=cost, details=details, trace_output=output)


class ChatInstrumenter(GenerationInstrumenter):
    """Records each ``ask`` on a chat client as a Generation."""

    capability = "chat"
    trace_name = "chat.ask"

    def __init__(
        self,
        chat: Any,
        session: Session | str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
        recorder: TelemetryRecorder | None = None,
        pricing: PricingLookup | None = None,
    ) -> None:
        super().__init__(session, context=context, recorder=recorder, pricing=pricing)
        self._chat = chat
        self._handle: "InstrumentedChat | None" = None

    @property
    def chat(self) -> Any:
        return self._chat

    def instrument(self) -> "InstrumentedChat":
        """Return the instrumented handle. Repeated calls return the same handle."""
        if self._handle is None:
            self._handle = InstrumentedChat(self._chat, self)
            logger.info(f"Instrumented chat for session {self._session_id}")
        return self._handle

    def _model_id(self, call: CallInfo) -> str | None:
        if not hasattr(self._chat, "model"):
            return "unknown"
        model = self._chat.model
        return str(read_field(model, "model_id", "id", default=model))

    def _attachments(self, call: CallInfo) -> list[Any] | None:
        attachments = call.argument(None, "with_", "attachments")
        if attachments is None:
            return None
        return list(attachments) if isinstance(attachments, (list, tuple)) else [attachments]

    def _trace_input(self, call: CallInfo) -> Any:
        trace_input: dict[str, Any] = {"text": call.argument(0, "message", "prompt")}
        attachments = self._attachments(call)
        if attachments is not None:
            trace_input["attachments"] = [_attachment_entry(a) for a in attachments]
        return trace_input

    def _trace_metadata(self, call: CallInfo) -> dict[str, Any]:
        attachments = self._attachments(call) or []
        return {"has_attachments": bool(attachments), "attachment_count": len(attachments)}

    def _observation_input(self, call: CallInfo) -> Any:
        return format_payload(call.argument(0, "message", "prompt"), MESSAGE_CONTENT_LIMIT)

    def _messages_snapshot(self, call: CallInfo) -> list[dict[str, Any]]:
        messages = getattr(self._chat, "messages", None)
        if messages is None:
            return []
        return [message_entry(message) for message in messages]


class InstrumentedChat:
    """Chat handle whose ``ask`` is recorded. Every other attribute is the wrapped client's."""

    def __init__(self, chat: Any, instrumenter: ChatInstrumenter) -> None:
        self._chat = chat
        self._instrumenter = instrumenter
        self.ask = instrumenter.wrap(chat.ask)
        setattr(self, INSTRUMENTED_FLAG, True)
        if hasattr(chat, "on_tool_call"):
            chat.on_tool_call(instrumenter.on_tool_call)
        if hasattr(chat, "on_tool_result"):
            chat.on_tool_result(instrumenter.on_tool_result)

    @property
    def instrumenter(self) -> ChatInstrumenter:
        return self._instrumenter

    @property
    def wrapped(self) -> Any:
        return self._chat

    def __getattr__(self, name: str) -> Any:
        return getattr(self._chat, name)


def instrument_chat(
    chat: Any,
    session: Session | str | None = None,
    *,
    context: Mapping[str, Any] | None = None,
    recorder: TelemetryRecorder | None = None,
    pricing: PricingLookup | None = None,
) -> InstrumentedChat:
    """Wrap a chat client so each ``ask`` is recorded. Already-instrumented handles are returned as-is."""
    if isinstance(chat, InstrumentedChat):
        return chat
    return ChatInstrumenter(chat, session, context=context, recorder=recorder, pricing=pricing).instrument()
