"""Pre-generation phase: gather context for the narrative prompt."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from src.services.retrieval import (
    AgenticRetrievalContext,
    AgenticRetrievalResult,
    RetrievalResult,
    TimelineFillResult,
)
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error

from ._events import ErrorEvent, PipelineEvent
from ._types import GenerationContext, PipelineConfig, PipelineResult, PreGenerationResult

if TYPE_CHECKING:
    from . import GenerationPipeline

logger = logging.getLogger(__name__)


async def _run_agentic(
    pipeline: GenerationPipeline, ctx: GenerationContext
) -> AgenticRetrievalResult | None:
    deps = pipeline.deps
    if deps.agentic_retrieval is None or deps.query_chapter is None or deps.query_chapters is None:
        logger.debug("Agentic retrieval not configured, skipping")
        return None
    context = AgenticRetrievalContext(
        user_input=ctx.user_action.content,
        recent_entries=ctx.history[-pipeline.settings.retrieval_recent_entries :],
        chapters=tuple(ctx.world.chapters),
        entries=tuple(ctx.world.lorebook_entries),
    )
    return await deps.agentic_retrieval.run_retrieval(
        context, deps.query_chapter, deps.query_chapters, ctx.cancel_token
    )


async def _run_timeline_fill(
    pipeline: GenerationPipeline, ctx: GenerationContext
) -> TimelineFillResult | None:
    service = pipeline.deps.timeline_fill
    if service is None:
        logger.debug("Timeline fill not configured, skipping")
        return None
    return await service.fill(
        ctx.user_action.content,
        ctx.history[-pipeline.settings.retrieval_recent_entries :],
        tuple(ctx.world.chapters),
        ctx.cancel_token,
    )


async def _run_lore_retrieval(
    pipeline: GenerationPipeline, ctx: GenerationContext, cfg: PipelineConfig
) -> RetrievalResult | None:
    engine = pipeline.deps.lore_retrieval
    if engine is None:
        return None
    return await engine.select_context(
        ctx.world.lorebook_entries,
        ctx.user_action.content,
        ctx.history,
        live_world_state=ctx.world,
        activation_tracker=cfg.activation_tracker,
        cancel_token=ctx.cancel_token,
        story_position=ctx.story_position,
    )


async def run_pre_generation(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    result: PipelineResult,
) -> AsyncIterator[PipelineEvent]:
    """Run chapter and lorebook retrieval concurrently, then build the prompt.

    Chapter context comes from the agentic loop when the story has more
    chapters than the configured threshold, otherwise from timeline fill.
    Lorebook retrieval is skipped when the agentic loop is in charge, since
    the loop can list and read entries itself. Every retrieval failure is
    non-fatal and reported as an error event; the phase always completes.

    Args:
        pipeline: Owning pipeline, for its dependencies and settings.
        ctx: Turn context.
        cfg: Turn configuration.
        result: Aggregate result; ``result.pre`` is set on completion.

    Yields:
        Non-fatal ErrorEvents for failed retrieval steps.
    """
    chapter_count = len(ctx.world.chapters)
    use_agentic = cfg.should_use_agentic_retrieval(chapter_count)

    labels: list[str] = []
    tasks = []
    if chapter_count and use_agentic:
        labels.append("Agentic retrieval")
        tasks.append(_run_agentic(pipeline, ctx))
    elif chapter_count and cfg.timeline_fill_enabled:
        labels.append("Timeline fill")
        tasks.append(_run_timeline_fill(pipeline, ctx))
    if cfg.retrieval_enabled and not use_agentic:
        labels.append("Lorebook retrieval")
        tasks.append(_run_lore_retrieval(pipeline, ctx, cfg))

    outcomes = await asyncio.gather(*tasks, return_exceptions=True)

    agentic: AgenticRetrievalResult | None = None
    timeline: TimelineFillResult | None = None
    lore: RetrievalResult | None = None
    for label, outcome in zip(labels, outcomes, strict=True):
        if isinstance(outcome, GenerationCancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning("%s failed (non-fatal): %s", label, outcome, exc_info=outcome)
            yield ErrorEvent(
                "pre", f"{label} failed: {summarize_llm_error(outcome)}", exception=outcome
            )
        elif isinstance(outcome, AgenticRetrievalResult):
            agentic = outcome
        elif isinstance(outcome, TimelineFillResult):
            timeline = outcome
        elif isinstance(outcome, RetrievalResult):
            lore = outcome

    blocks = []
    if agentic is not None:
        blocks.append(agentic.format_for_prompt())
    if timeline is not None:
        blocks.append(timeline.format_for_prompt())
    if lore is not None:
        blocks.append(lore.format_for_prompt(cfg.max_words_per_entry))
    prompt_context = "\n\n".join(block for block in blocks if block)

    messages = pipeline.deps.build_narrative_messages(
        ctx.story, ctx.history, ctx.user_action.content, ctx.world, prompt_context
    )
    result.pre = PreGenerationResult(
        lore=lore,
        agentic=agentic,
        timeline=timeline,
        prompt_context=prompt_context,
        messages=tuple(messages),
    )
    logger.info(
        "Pre-generation complete: lore=%d, agentic=%s, timeline=%s, context=%d chars",
        len(lore) if lore is not None else 0,
        agentic.termination if agentic is not None else "-",
        len(timeline.answers) if timeline is not None else "-",
        len(prompt_context),
    )
