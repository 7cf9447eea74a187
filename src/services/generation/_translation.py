"""Translation phase: translate narration and world-state names."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from src.memory.generation_models import TranslatedEntity
from src.utils.cancellation import await_cancellable
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error

from ._events import ErrorEvent, PipelineEvent
from ._types import GenerationContext, PipelineConfig, PipelineResult, TranslationResult

if TYPE_CHECKING:
    from . import GenerationPipeline

logger = logging.getLogger(__name__)


async def run_translation(
    pipeline: GenerationPipeline,
    ctx: GenerationContext,
    cfg: PipelineConfig,
    result: PipelineResult,
) -> AsyncIterator[PipelineEvent]:
    """Translate the narration and the entities the classifier touched.

    Each part fails independently and non-fatally; a failed part is simply
    left untranslated. Entity translations are returned for the caller to
    apply, which it does only if the store is not locked for a retry.
    """
    deps = pipeline.deps
    language = cfg.target_language
    narrative: str | None = None
    entities: list[TranslatedEntity] = []

    if cfg.translate_narration and deps.translate_text is not None and result.narrative:
        try:
            narrative = await await_cancellable(
                deps.translate_text(result.narrative.content, language), ctx.cancel_token
            )
        except GenerationCancelledError:
            raise
        except Exception as e:
            logger.warning("Narration translation failed (non-fatal): %s", e, exc_info=True)
            yield ErrorEvent(
                "translation",
                f"Narration translation failed: {summarize_llm_error(e)}",
                exception=e,
            )

    if cfg.translate_world_state and deps.translate_entities is not None:
        world = ctx.current_world() if ctx.current_world is not None else ctx.world
        try:
            entities = await await_cancellable(
                deps.translate_entities(world, language), ctx.cancel_token
            )
        except GenerationCancelledError:
            raise
        except Exception as e:
            logger.warning("World-state translation failed (non-fatal): %s", e, exc_info=True)
            yield ErrorEvent(
                "translation",
                f"World-state translation failed: {summarize_llm_error(e)}",
                exception=e,
            )

    result.translation = TranslationResult(
        translated=narrative is not None or bool(entities),
        narrative=narrative,
        entities=tuple(entities),
        language=language,
    )
    logger.info(
        "Translation to %s complete: narration=%s, entities=%d",
        language,
        narrative is not None,
        len(entities),
    )
