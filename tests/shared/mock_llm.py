"""Scripted provider and stream helpers shared by the unit tests.

Usage:
    from tests.shared.mock_llm import ScriptedProvider, content_stream

    provider = ScriptedProvider(streams=[content_stream("Hello", " world")])
    agent = NarratorAgent(provider, settings=Settings())
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from typing import Any, TypeVar

from pydantic import BaseModel

from src.utils.cancellation import CancelToken
from src.utils.llm_client import AssistantTurn, ChatRequest, StreamChunk, ToolCall

T = TypeVar("T", bound=BaseModel)

TEST_MODEL = "test-model:8b"


def content_chunks(*texts: str, done: bool = True) -> list[StreamChunk]:
    """Content chunks followed by a terminal done chunk."""
    chunks = [StreamChunk(type="content", text=text) for text in texts]
    if done:
        chunks.append(StreamChunk(type="done"))
    return chunks


async def stream_of(
    chunks: Iterable[StreamChunk],
    *,
    fail_with: BaseException | None = None,
    delay: float = 0.0,
) -> AsyncIterator[StreamChunk]:
    """Yield chunks, optionally sleeping between them and raising at the end."""
    for chunk in chunks:
        if delay:
            await asyncio.sleep(delay)
        yield chunk
    if fail_with is not None:
        raise fail_with


def content_stream(*texts: str) -> AsyncIterator[StreamChunk]:
    """A finished stream of content chunks."""
    return stream_of(content_chunks(*texts))


def tool_turn(*calls: tuple[str, dict[str, Any]], content: str = "") -> AssistantTurn:
    """An assistant turn calling the given tools in order."""
    return AssistantTurn(
        content=content,
        tool_calls=[
            ToolCall(id=f"call_{i}", name=name, arguments=arguments, index=i)
            for i, (name, arguments) in enumerate(calls)
        ],
    )


class ScriptedProvider:
    """StreamingProvider returning pre-scripted streams and structured results.

    Streams are consumed in order, one per ``stream_with_tools`` call.
    Structured results are consumed in order; an exception instance in the
    queue is raised instead of returned.
    """

    def __init__(
        self,
        streams: Iterable[AsyncIterator[StreamChunk]] = (),
        structured: Iterable[BaseModel | BaseException] = (),
    ) -> None:
        self.streams = list(streams)
        self.structured = list(structured)
        self.requests: list[ChatRequest] = []

    def stream_with_tools(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        if not self.streams:
            raise AssertionError("No scripted stream left")
        return self.streams.pop(0)

    async def generate_structured(
        self, request: ChatRequest, response_model: type[T]
    ) -> T:
        self.requests.append(request)
        if not self.structured:
            raise AssertionError(f"No scripted {response_model.__name__} left")
        result = self.structured.pop(0)
        if isinstance(result, BaseException):
            raise result
        assert isinstance(result, response_model)
        return result


class ScriptedModelTurns:
    """Model-turn callable for the agentic loop, replaying scripted turns.

    When the script runs out, the last turn is repeated.
    """

    def __init__(self, turns: Iterable[AssistantTurn | BaseException]) -> None:
        self.turns = list(turns)
        self.calls: list[list[dict[str, Any]]] = []

    async def __call__(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel_token: CancelToken | None = None,
    ) -> AssistantTurn:
        self.calls.append([dict(m) for m in messages])
        turn = self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]
        if isinstance(turn, BaseException):
            raise turn
        return turn
