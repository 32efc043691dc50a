"""Fake provider clients shaped like the capabilities the instrumenters wrap."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FakeModel:
    id: str = "test-model"


@dataclass
class FakeRaw:
    body: Any = None
    headers: dict[str, Any] = field(default_factory=dict)
    status: int = 200


@dataclass
class FakeReply:
    content: str = "Hello there"
    input_tokens: int | None = 100
    output_tokens: int | None = 50
    model_id: str | None = "test-model"
    raw: FakeRaw | None = None


@dataclass
class FakeToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class FakeToolResult:
    tool_call_id: str
    content: str


class FakeChat:
    """Chat client with ``ask``, a message history and tool lifecycle hooks."""

    def __init__(
        self,
        reply: FakeReply | None = None,
        *,
        model: str = "test-model",
        error: BaseException | None = None,
        tool_calls: list[FakeToolCall] | None = None,
        answer_tools: bool = True,
    ) -> None:
        self.model = FakeModel(model)
        self.messages: list[dict[str, Any]] = []
        self.reply = reply or FakeReply()
        self.error = error
        self.tool_calls = tool_calls or []
        self.answer_tools = answer_tools
        self.asked: list[tuple[str, dict[str, Any]]] = []
        self._tool_call_handler: Callable[[Any], None] | None = None
        self._tool_result_handler: Callable[[Any], None] | None = None

    def on_tool_call(self, handler: Callable[[Any], None]) -> "FakeChat":
        self._tool_call_handler = handler
        return self

    def on_tool_result(self, handler: Callable[[Any], None]) -> "FakeChat":
        self._tool_result_handler = handler
        return self

    def _run_tools(self) -> None:
        for tool_call in self.tool_calls:
            if self._tool_call_handler:
                self._tool_call_handler(tool_call)
            if self.answer_tools and self._tool_result_handler:
                self._tool_result_handler(FakeToolResult(tool_call_id=tool_call.id, content=f"{tool_call.name} done"))

    def ask(self, message: str, **kwargs: Any) -> FakeReply:
        self.asked.append((message, kwargs))
        self.messages.append({"role": "user", "content": message})
        self._run_tools()
        if self.error is not None:
            raise self.error
        self.messages.append({"role": "assistant", "content": self.reply.content})
        return self.reply


class AsyncFakeChat(FakeChat):
    """Async variant that yields to the loop between tool call and result."""

    def __init__(self, *args: Any, delay: float = 0.01, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.delay = delay

    async def ask(self, message: str, **kwargs: Any) -> FakeReply:  # type: ignore[override]
        self.asked.append((message, kwargs))
        for tool_call in self.tool_calls:
            if self._tool_call_handler:
                self._tool_call_handler(tool_call)
            await asyncio.sleep(self.delay)
            if self.answer_tools and self._tool_result_handler:
                self._tool_result_handler(FakeToolResult(tool_call_id=tool_call.id, content=f"{message} result"))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return FakeReply(content=f"answer to {message}")


def fake_embed(texts: list[str] | str, model: str = "text-embedding-3-small") -> dict[str, Any]:
    batch = texts if isinstance(texts, list) else [texts]
    return {
        "model": model,
        "vectors": [[0.1, 0.2, 0.3, 0.4] for _ in batch],
        "input_tokens": 10 * len(batch),
    }


@dataclass
class FakeImage:
    url: str | None = "https://images.example/cat.png"
    mime_type: str = "image/png"
    revised_prompt: str | None = "a fluffy cat"
    model_id: str = "dall-e-3"
    b64_json: str | None = None


def fake_paint(prompt: str, model: str = "dall-e-3", size: str = "1024x1024", quality: str = "standard") -> FakeImage:
    return FakeImage(model_id=model)


@dataclass
class FakeSegment:
    text: str
    speaker: str | None = None


@dataclass
class FakeTranscript:
    text: str = "hello world, this is a test"
    duration: float = 120.0
    language: str = "en"
    model: str = "whisper-1"
    segments: list[FakeSegment] = field(default_factory=list)


def fake_transcribe(audio: str, model: str = "whisper-1", language: str | None = None, **kwargs: Any) -> FakeTranscript:
    return FakeTranscript(
        segments=[FakeSegment("hello", speaker="A"), FakeSegment("world", speaker="B"), FakeSegment("again", speaker="A")]
    )


def moderation_verdict(
    *,
    flagged: bool = False,
    scores: dict[str, float] | None = None,
    categories: dict[str, bool] | None = None,
) -> dict[str, Any]:
    """OpenAI-shaped moderation response as a plain mapping."""
    scores = scores or {"hate": 0.01, "violence": 0.02}
    return {
        "id": "modr-123",
        "model": "omni-moderation-latest",
        "results": [
            {
                "flagged": flagged,
                "categories": categories or {name: False for name in scores},
                "category_scores": scores,
            }
        ],
    }


class FakeModerator:
    """Moderation callable returning a canned verdict and remembering its inputs."""

    def __init__(self, verdict: dict[str, Any] | None = None, *, error: BaseException | None = None) -> None:
        self.verdict = verdict or moderation_verdict()
        self.error = error
        self.inputs: list[str] = []

    def __call__(self, text: str, model: str = "omni-moderation-latest") -> dict[str, Any]:
        self.inputs.append(text)
        if self.error is not None:
            raise self.error
        return self.verdict
