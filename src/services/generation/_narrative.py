"""Narrative phase: stream the narration and re-emit every delta."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from src.utils.exceptions import GenerationCancelledError, summarize_llm_error
from src.utils.streaming import iterate_stream

from ._events import ErrorEvent, NarrativeChunkEvent, PipelineEvent
from ._types import GenerationContext, NarrativeResult, PipelineConfig, PipelineResult

if TYPE_CHECKING:
    from . import GenerationPipeline

logger = logging.getLogger(__name__)


async def run_narrative(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    result: PipelineResult,
) -> AsyncIterator[PipelineEvent]:
    """Stream the narrative, retrying empty responses.

    An attempt that ends without content is retried up to
    ``cfg.max_empty_response_retries`` times before a fatal error. A stream
    failure after content arrived keeps the partial text and reports a
    non-fatal error; a failure before any content is fatal. Cancellation is
    observed per chunk and propagates as GenerationCancelledError.

    Args:
        pipeline: Owning pipeline.
        ctx: Turn context.
        cfg: Turn configuration.
        result: Aggregate result; ``result.narrative`` is set on success and
            ``result.fatal_error`` on fatal failure.

    Yields:
        NarrativeChunkEvents, and ErrorEvents for stream failures.
    """
    if result.pre is None:
        raise RuntimeError("Narrative phase requires a completed pre-generation phase")
    messages = list(result.pre.messages)
    max_attempts = max(1, cfg.max_empty_response_retries)

    for attempt in range(1, max_attempts + 1):
        content_parts: list[str] = []
        reasoning_parts: list[str] = []
        stream = pipeline.deps.stream_narrative(messages)
        try:
            async for chunk in iterate_stream(
                stream,
                cancel_token=ctx.cancel_token,
                inter_chunk_timeout=cfg.stream_inter_chunk_timeout,
                wall_clock_timeout=cfg.stream_wall_clock_timeout,
            ):
                if chunk.type == "content" and chunk.text:
                    content_parts.append(chunk.text)
                    yield NarrativeChunkEvent(content=chunk.text)
                elif chunk.type == "reasoning" and chunk.text:
                    reasoning_parts.append(chunk.text)
                    yield NarrativeChunkEvent(reasoning=chunk.text)
                elif chunk.type == "done":
                    break
        except GenerationCancelledError:
            raise
        except Exception as e:
            content = "".join(content_parts)
            if content.strip():
                logger.warning(
                    "Narrative stream failed after %d chars, keeping partial text: %s",
                    len(content),
                    e,
                    exc_info=True,
                )
                result.narrative = NarrativeResult(
                    content=content,
                    reasoning="".join(reasoning_parts),
                    attempts=attempt,
                    partial=True,
                )
                yield ErrorEvent(
                    "narrative",
                    f"Narrative stream interrupted: {summarize_llm_error(e)}",
                    exception=e,
                )
                return
            logger.error("Narrative stream failed: %s", e, exc_info=True)
            error = ErrorEvent(
                "narrative",
                f"Narrative generation failed: {summarize_llm_error(e)}",
                fatal=True,
                exception=e,
            )
            result.fatal_error = error
            yield error
            return

        content = "".join(content_parts)
        if content.strip():
            result.narrative = NarrativeResult(
                content=content, reasoning="".join(reasoning_parts), attempts=attempt
            )
            logger.info("Narrative complete: %d chars in %d attempt(s)", len(content), attempt)
            return
        logger.warning("Empty narrative response (attempt %d/%d)", attempt, max_attempts)
        ctx.cancel_token.raise_if_cancelled()

    error = ErrorEvent(
        "narrative", f"Empty response after {max_attempts} attempts", fatal=True
    )
    result.fatal_error = error
    yield error
