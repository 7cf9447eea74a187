"""Post-generation phase: suggestions or action choices for the reader."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from src.memory.generation_models import ActionChoice, Suggestion
from src.memory.story_state import Story, StoryEntry, WorldState
from src.utils.cancellation import await_cancellable
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error

from ._events import ErrorEvent, PipelineEvent
from ._types import GenerationContext, PipelineConfig, PipelineResult, PostGenerationResult

T = TypeVar("T", Suggestion, ActionChoice)

if TYPE_CHECKING:
    from . import GenerationPipeline

logger = logging.getLogger(__name__)


def _story_so_far(ctx: GenerationContext, result: PipelineResult) -> list[StoryEntry]:
    entries = [*ctx.history, ctx.user_action]
    if result.narrative is not None:
        entries.append(
            StoryEntry(
                type="narration",
                content=result.narrative.content,
                position=ctx.story_position,
            )
        )
    return entries


async def _generate_options(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    generate: Callable[[Sequence[StoryEntry], WorldState, Story], Awaitable[list[T]]],
    entries: list[StoryEntry],
    world: WorldState,
) -> list[T]:
    options = await await_cancellable(generate(entries, world, ctx.story), ctx.cancel_token)
    translate_texts = pipeline.deps.translate_texts
    if not (options and cfg.should_translate() and cfg.translate_suggestions and translate_texts):
        return options
    try:
        texts = await await_cancellable(
            translate_texts([option.text for option in options], cfg.target_language),
            ctx.cancel_token,
        )
    except GenerationCancelledError:
        raise
    except Exception as e:
        logger.warning("Option translation failed (non-fatal): %s", e, exc_info=True)
        return options
    return [
        option.model_copy(update={"text": text})
        for option, text in zip(options, texts, strict=True)
    ]


async def run_post_generation(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    result: PipelineResult,
) -> AsyncIterator[PipelineEvent]:
    """Generate follow-up options for the story mode.

    Creative-writing stories get plot suggestions, adventure stories get
    action choices. Branches run concurrently and each is best-effort; a
    failed branch is reported as a non-fatal error and left empty.

    Args:
        pipeline: Owning pipeline.
        ctx: Turn context.
        cfg: Turn configuration.
        result: Aggregate result; ``result.post`` is always set.

    Yields:
        Non-fatal ErrorEvents for failed branches.
    """
    if cfg.disable_suggestions:
        logger.debug("Suggestions disabled, skipping post-generation tasks")
        result.post = PostGenerationResult()
        return

    deps = pipeline.deps
    entries = _story_so_far(ctx, result)
    world = ctx.current_world() if ctx.current_world is not None else ctx.world

    labels: list[str] = []
    tasks = []
    if cfg.story_mode == "creative-writing" and deps.generate_suggestions is not None:
        labels.append("suggestions")
        tasks.append(
            _generate_options(pipeline, ctx, cfg, deps.generate_suggestions, entries, world)
        )
    if cfg.story_mode == "adventure" and deps.generate_action_choices is not None:
        labels.append("action_choices")
        tasks.append(
            _generate_options(pipeline, ctx, cfg, deps.generate_action_choices, entries, world)
        )

    outcomes = await asyncio.gather(*tasks, return_exceptions=True)

    suggestions: list[Suggestion] = []
    action_choices: list[ActionChoice] = []
    for label, outcome in zip(labels, outcomes, strict=True):
        if isinstance(outcome, GenerationCancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning("Generating %s failed (non-fatal): %s", label, outcome, exc_info=outcome)
            yield ErrorEvent(
                "post",
                f"Generating {label.replace('_', ' ')} failed: {summarize_llm_error(outcome)}",
                exception=outcome,
            )
        elif label == "suggestions":
            suggestions = outcome
        else:
            action_choices = outcome

    result.post = PostGenerationResult(
        suggestions=tuple(suggestions), action_choices=tuple(action_choices)
    )
    logger.info(
        "Post-generation complete: %d suggestion(s), %d action choice(s)",
        len(suggestions),
        len(action_choices),
    )
