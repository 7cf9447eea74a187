"""Async LLM client layer for the generation pipeline.

Wraps ``ollama.AsyncClient`` behind a small streaming/tool-calling contract:
providers yield ``StreamChunk`` objects (content, reasoning, tool-call
starts, tool-call argument deltas, done). Structured output uses the native
Ollama ``format=`` parameter with a Pydantic JSON schema. All calls use
stream=True so long thinking phases never hit an HTTP read timeout.
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, TypeVar

import httpx
import ollama
from pydantic import BaseModel, ValidationError

from src.settings import Settings
from src.utils.cancellation import CancelToken
from src.utils.exceptions import LLMConnectionError, LLMError, LLMGenerationError
from src.utils.streaming import iterate_stream

T = TypeVar("T", bound=BaseModel)

logger = logging.getLogger(__name__)

ChunkType = Literal["content", "reasoning", "tool_call_start", "tool_call_args", "done"]


def estimate_token_count(text: str) -> int:
    """Estimate token count for a text string.

    Uses the rough heuristic of ~4 characters per token. Non-empty text
    always costs at least one token.

    Args:
        text: Input text to estimate tokens for.

    Returns:
        Estimated number of tokens.
    """
    if not text:
        return 0
    return max(1, len(text) // 4)


@dataclass(frozen=True)
class StreamChunk:
    """One event from a provider stream.

    ``index`` keys tool-call deltas; ``tool_call_id`` and ``name`` are set
    on ``tool_call_start`` chunks only.
    """

    type: ChunkType
    text: str = ""
    index: int = 0
    tool_call_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class ToolCall:
    """A finalized tool call."""

    id: str
    name: str
    arguments: dict[str, Any]
    index: int = 0


@dataclass
class _ToolCallBuffer:
    """Accumulator for a single tool call while its deltas stream in."""

    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Merge tool-call deltas by index, independent of interleaving.

    Argument fragments for each index are concatenated in arrival order;
    calls are only finalized (sorted by index) once the stream has ended.
    """

    def __init__(self) -> None:
        self._buffers: dict[int, _ToolCallBuffer] = {}

    def __bool__(self) -> bool:
        return bool(self._buffers)

    def add(self, chunk: StreamChunk) -> None:
        """Feed a tool_call_start or tool_call_args chunk."""
        buffer = self._buffers.setdefault(chunk.index, _ToolCallBuffer())
        if chunk.type == "tool_call_start":
            if chunk.tool_call_id:
                buffer.id = chunk.tool_call_id
            if chunk.name:
                buffer.name = chunk.name
        elif chunk.type == "tool_call_args":
            buffer.fragments.append(chunk.text)

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls ordered by index.

        Malformed JSON arguments become an empty dict; calls without a name
        are dropped.
        """
        calls: list[ToolCall] = []
        for index in sorted(self._buffers):
            buffer = self._buffers[index]
            if not buffer.name:
                logger.warning("Dropping tool call at index %d with no name", index)
                continue
            raw = "".join(buffer.fragments).strip()
            arguments: dict[str, Any] = {}
            if raw:
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, dict):
                        arguments = parsed
                    else:
                        logger.warning("Tool call %s arguments are not an object", buffer.name)
                except json.JSONDecodeError as e:
                    logger.warning("Malformed arguments for tool call %s: %s", buffer.name, e)
            calls.append(
                ToolCall(
                    id=buffer.id or f"call_{index}",
                    name=buffer.name,
                    arguments=arguments,
                    index=index,
                )
            )
        return calls


@dataclass
class ChatRequest:
    """A single chat request to a provider."""

    model: str
    messages: list[dict[str, Any]]
    temperature: float = 0.7
    tools: list[dict[str, Any]] | None = None
    think: bool | None = None
    max_tokens: int | None = None


@dataclass
class AssistantTurn:
    """Everything the model produced in one streamed turn."""

    content: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_message(self) -> dict[str, Any]:
        """Assistant message for the running transcript."""
        message: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message


class StreamingProvider(Protocol):
    """Contract every model provider exposes to the engine."""

    def stream_with_tools(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion, including tool-call deltas."""
        ...

    async def generate_structured(
        self, request: ChatRequest, response_model: type[T]
    ) -> T:
        """Return a validated instance of ``response_model``."""
        ...


async def collect_turn(
    stream: AsyncIterator[StreamChunk],
    cancel_token: CancelToken | None = None,
    inter_chunk_timeout: float | None = None,
    wall_clock_timeout: float | None = None,
) -> AssistantTurn:
    """Drain a provider stream into an AssistantTurn.

    Raises:
        GenerationCancelledError: If the token is cancelled mid-stream.
        StreamTimeoutError: If a watchdog timeout fires.
    """
    content: list[str] = []
    reasoning: list[str] = []
    accumulator = ToolCallAccumulator()
    async for chunk in iterate_stream(
        stream,
        cancel_token=cancel_token,
        inter_chunk_timeout=inter_chunk_timeout,
        wall_clock_timeout=wall_clock_timeout,
    ):
        match chunk.type:
            case "content":
                content.append(chunk.text)
            case "reasoning":
                reasoning.append(chunk.text)
            case "tool_call_start" | "tool_call_args":
                accumulator.add(chunk)
            case "done":
                break
    return AssistantTurn(
        content="".join(content),
        reasoning="".join(reasoning),
        tool_calls=accumulator.finalize(),
    )


def _to_ollama_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert transcript messages to the shape ollama-python accepts.

    Ollama matches tool results by tool name rather than call id, and
    expects tool-call arguments as an object.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        out: dict[str, Any] = {"role": message["role"], "content": message.get("content") or ""}
        if message.get("tool_calls"):
            out["tool_calls"] = [
                {
                    "function": {
                        "name": call["function"]["name"],
                        "arguments": call["function"].get("arguments") or {},
                    }
                }
                for call in message["tool_calls"]
            ]
        if message["role"] == "tool" and message.get("name"):
            out["tool_name"] = message["name"]
        converted.append(out)
    return converted


class OllamaProvider:
    """StreamingProvider backed by ``ollama.AsyncClient``."""

    def __init__(self, settings: Settings, client: ollama.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = client or ollama.AsyncClient(
            host=settings.ollama_url, timeout=float(settings.ollama_timeout)
        )
        logger.debug(
            "Created Ollama provider for %s (timeout=%.0fs)",
            settings.ollama_url,
            settings.ollama_timeout,
        )

    def _options(self, request: ChatRequest) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": request.temperature}
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        return options

    async def stream_with_tools(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion as StreamChunks.

        Ollama delivers each tool call whole, so every call becomes one
        ``tool_call_start`` chunk followed by one ``tool_call_args`` chunk
        under a fresh index.

        Raises:
            LLMConnectionError: If Ollama cannot be reached.
            LLMGenerationError: If Ollama rejects the request.
        """
        try:
            response = await self._client.chat(
                model=request.model,
                messages=_to_ollama_messages(request.messages),
                tools=request.tools,
                think=request.think,
                options=self._options(request),
                stream=True,
            )
        except ollama.ResponseError as e:
            raise LLMGenerationError(f"Ollama rejected chat request: {e}") from e
        except (ConnectionError, httpx.ConnectError) as e:
            raise LLMConnectionError(
                f"Cannot connect to Ollama at {self.settings.ollama_url}: {e}"
            ) from e

        next_index = 0
        try:
            async for part in response:
                message = part.message
                if message.thinking:
                    yield StreamChunk(type="reasoning", text=message.thinking)
                if message.content:
                    yield StreamChunk(type="content", text=message.content)
                for tool_call in message.tool_calls or []:
                    index = next_index
                    next_index += 1
                    yield StreamChunk(
                        type="tool_call_start",
                        index=index,
                        tool_call_id=f"call_{uuid.uuid4().hex[:12]}",
                        name=tool_call.function.name,
                    )
                    yield StreamChunk(
                        type="tool_call_args",
                        index=index,
                        text=json.dumps(dict(tool_call.function.arguments or {})),
                    )
                if part.done:
                    yield StreamChunk(type="done")
                    return
        except ollama.ResponseError as e:
            raise LLMGenerationError(f"Ollama stream failed: {e}") from e
        yield StreamChunk(type="done")

    async def generate_structured(
        self, request: ChatRequest, response_model: type[T]
    ) -> T:
        """Generate structured output using native Ollama format parameter.

        Retries on validation failures and on transient transport errors
        with exponential backoff.

        Args:
            request: Chat request; tools are ignored.
            response_model: Pydantic model class defining the expected output.

        Returns:
            Instance of response_model with validated data.

        Raises:
            LLMError: If generation fails after all retries or on non-retryable Ollama errors.
        """
        max_retries = self.settings.llm_max_retries
        json_schema = response_model.model_json_schema()
        last_error: Exception | None = None

        logger.debug(
            "Generating structured output: model=%s, response_model=%s, temperature=%s",
            request.model,
            response_model.__name__,
            request.temperature,
        )

        for attempt in range(max_retries):
            try:
                start_time = time.perf_counter()
                stream = await self._client.chat(
                    model=request.model,
                    messages=_to_ollama_messages(request.messages),
                    format=json_schema,
                    think=False,
                    options=self._options(request),
                    stream=True,
                )
                parts: list[str] = []
                async for part in iterate_stream(
                    stream,
                    inter_chunk_timeout=self.settings.stream_inter_chunk_timeout,
                    wall_clock_timeout=self.settings.stream_wall_clock_timeout,
                ):
                    if part.message and part.message.content:
                        parts.append(part.message.content)
                result = response_model.model_validate_json("".join(parts))
                logger.info(
                    "LLM call complete: model=%s, schema=%s, %.2fs",
                    request.model,
                    response_model.__name__,
                    time.perf_counter() - start_time,
                )
                return result

            except (ValidationError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(
                    "Structured output validation/parsing failed (attempt %d/%d): %s",
                    attempt + 1,
                    max_retries,
                    e,
                )

            except (
                ConnectionError,
                TimeoutError,
                LLMConnectionError,
                httpx.TimeoutException,
                httpx.TransportError,
            ) as e:
                last_error = e
                logger.warning(
                    "Transient error in structured output (attempt %d/%d): %s",
                    attempt + 1,
                    max_retries,
                    e,
                )
                if attempt < max_retries - 1:
                    backoff = min(
                        self.settings.llm_retry_delay * self.settings.llm_retry_backoff**attempt,
                        10.0,
                    )
                    logger.debug("Backing off %.1fs before retry", backoff)
                    await asyncio.sleep(backoff)

            except ollama.ResponseError as e:
                logger.error("Ollama response error during structured generation: %s", e)
                raise LLMError(
                    f"Structured generation failed for {response_model.__name__}: {e}"
                ) from e

        logger.error("Structured output generation failed after %d attempts", max_retries)
        raise LLMGenerationError(
            f"Structured generation failed for {response_model.__name__} "
            f"after {max_retries} attempts: {last_error}"
        ) from last_error
