"""Streaming utilities for provider responses.

Wraps an async chunk stream with inter-chunk and wall-clock watchdog
timeouts and with chunk-granular cancellation. A stalled stream never
blocks a turn indefinitely, and a cancelled turn stops waiting for the
next chunk immediately instead of relying on the transport to time out.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import TypeVar

import httpcore
import httpx

from src.utils.cancellation import CancelToken
from src.utils.exceptions import GenerationCancelledError, LLMConnectionError

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Default timeouts (overridden by settings when available)
_DEFAULT_INTER_CHUNK_TIMEOUT = 120.0  # seconds between chunks
_DEFAULT_WALL_CLOCK_TIMEOUT = 600.0  # 10 minutes absolute max


class StreamTimeoutError(TimeoutError):
    """Raised when a streaming response exceeds the configured timeout.

    Attributes:
        partial_content_length: Number of chunks received before timeout.
        elapsed_seconds: Wall-clock time elapsed before timeout.
        timeout_type: Either "inter_chunk" or "wall_clock".
    """

    def __init__(
        self,
        message: str,
        *,
        partial_content_length: int = 0,
        elapsed_seconds: float = 0.0,
        timeout_type: str = "inter_chunk",
    ):
        super().__init__(message)
        self.partial_content_length = partial_content_length
        self.elapsed_seconds = elapsed_seconds
        self.timeout_type = timeout_type


async def _close_stream(stream: AsyncIterator) -> None:
    """Close an async generator stream if it supports aclose()."""
    aclose: Callable | None = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Error closing stream (ignored): %s", e)


async def iterate_stream(
    stream: AsyncIterator[T],
    *,
    cancel_token: CancelToken | None = None,
    inter_chunk_timeout: float | None = None,
    wall_clock_timeout: float | None = None,
) -> AsyncIterator[T]:
    """Yield chunks from a stream under watchdog timeouts and cancellation.

    Args:
        stream: Async iterator of provider chunks.
        cancel_token: Token checked before and while waiting for each chunk.
        inter_chunk_timeout: Max seconds between chunks (None = default 120s).
        wall_clock_timeout: Max total seconds for the stream (None = default 600s).

    Yields:
        Each chunk from the underlying stream, in order.

    Raises:
        GenerationCancelledError: If the token is cancelled mid-stream.
        StreamTimeoutError: If inter-chunk or wall-clock timeout is exceeded.
        LLMConnectionError: If the stream is interrupted by a network error.
    """
    inter_chunk = (
        inter_chunk_timeout if inter_chunk_timeout is not None else _DEFAULT_INTER_CHUNK_TIMEOUT
    )
    wall_clock = (
        wall_clock_timeout if wall_clock_timeout is not None else _DEFAULT_WALL_CLOCK_TIMEOUT
    )

    cancelled = asyncio.Event()
    if cancel_token is not None:
        cancel_token.on_cancel(cancelled.set)

    iterator = aiter(stream)
    start_time = time.monotonic()
    received = 0

    try:
        while True:
            if cancelled.is_set():
                raise GenerationCancelledError("Stream cancelled")

            elapsed = time.monotonic() - start_time
            remaining = wall_clock - elapsed
            if remaining <= 0:
                logger.error(
                    "Stream wall-clock timeout after %.1fs (limit=%.0fs, chunks=%d)",
                    elapsed,
                    wall_clock,
                    received,
                )
                raise StreamTimeoutError(
                    f"Stream exceeded wall-clock timeout of {wall_clock:.0f}s "
                    f"(elapsed={elapsed:.1f}s, chunks={received})",
                    partial_content_length=received,
                    elapsed_seconds=elapsed,
                    timeout_type="wall_clock",
                )

            next_chunk = asyncio.ensure_future(anext(iterator))
            cancel_wait = asyncio.ensure_future(cancelled.wait())
            wait_for = min(inter_chunk, remaining)
            try:
                done, _ = await asyncio.wait(
                    {next_chunk, cancel_wait},
                    timeout=wait_for,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                cancel_wait.cancel()

            if next_chunk not in done:
                next_chunk.cancel()
                if cancelled.is_set():
                    raise GenerationCancelledError("Stream cancelled")
                elapsed = time.monotonic() - start_time
                timeout_type = "inter_chunk" if wait_for == inter_chunk else "wall_clock"
                logger.error(
                    "Stream %s timeout: no chunk within %.0fs (chunks=%d, elapsed=%.1fs)",
                    timeout_type,
                    wait_for,
                    received,
                    elapsed,
                )
                raise StreamTimeoutError(
                    f"No stream chunk received for {wait_for:.0f}s (chunks={received})",
                    partial_content_length=received,
                    elapsed_seconds=elapsed,
                    timeout_type=timeout_type,
                )

            try:
                chunk = next_chunk.result()
            except StopAsyncIteration:
                break
            except (httpcore.NetworkError, httpcore.RemoteProtocolError, httpx.TransportError) as e:
                logger.error("Provider stream interrupted mid-response: %s", e)
                raise LLMConnectionError(f"Provider stream interrupted: {e}") from e

            received += 1
            yield chunk
    finally:
        if cancel_token is not None:
            cancel_token.remove_callback(cancelled.set)
        await _close_stream(stream)

    logger.debug(
        "Stream consumed: %d chunks in %.2fs", received, time.monotonic() - start_time
    )
