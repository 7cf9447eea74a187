"""Classification phase: extract the world-state delta from the narration."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from src.utils.cancellation import await_cancellable
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error

from ._events import ClassificationCompleteEvent, ErrorEvent, PipelineEvent
from ._types import GenerationContext, PipelineConfig, PipelineResult

if TYPE_CHECKING:
    from . import GenerationPipeline

logger = logging.getLogger(__name__)


async def run_classification(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    result: PipelineResult,
) -> AsyncIterator[PipelineEvent]:
    """Classify the narration; any failure is fatal for the turn."""
    if result.narrative is None:
        raise RuntimeError("Classification requires a completed narrative phase")
    try:
        classification = await await_cancellable(
            pipeline.deps.classify(
                result.narrative.content, ctx.user_action.content, ctx.world, ctx.history
            ),
            ctx.cancel_token,
        )
    except GenerationCancelledError:
        raise
    except Exception as e:
        logger.error("Classification failed: %s", e, exc_info=True)
        error = ErrorEvent(
            "classification",
            f"Classification failed: {summarize_llm_error(e)}",
            fatal=True,
            exception=e,
        )
        result.fatal_error = error
        yield error
        return

    if classification.entry_updates.is_empty():
        logger.debug("Classifier proposed no entity changes")
    result.classification = classification
    yield ClassificationCompleteEvent(classification)
