"""Generation pipeline that turns one user action into a narrated turn.

Phases run in strict order: pre-generation, narrative streaming,
classification, translation (when enabled) and post-generation. The
pipeline is an async generator of events; the caller drives it and owns all
persistence.
"""

import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from src.settings import Settings
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error

from . import _classification, _narrative, _post, _pre, _translation
from ._events import (
    PHASE_ORDER,
    AbortedEvent,
    ClassificationCompleteEvent,
    ErrorEvent,
    NarrativeChunkEvent,
    Phase,
    PhaseCompleteEvent,
    PhaseStartEvent,
    PipelineEvent,
)
from ._types import (
    GenerationContext,
    NarrativeResult,
    PipelineConfig,
    PipelineDependencies,
    PipelineResult,
    PostGenerationResult,
    PreGenerationResult,
    TranslationResult,
)

logger = logging.getLogger(__name__)

PhaseRunner = Callable[
    ["GenerationPipeline", GenerationContext, PipelineConfig, PipelineResult],
    AsyncIterator[PipelineEvent],
]

_PHASE_RUNNERS: dict[Phase, PhaseRunner] = {
    "pre": _pre.run_pre_generation,
    "narrative": _narrative.run_narrative,
    "classification": _classification.run_classification,
    "translation": _translation.run_translation,
    "post": _post.run_post_generation,
}


def _phase_payload(phase: Phase, result: PipelineResult) -> Any:
    match phase:
        case "pre":
            return result.pre
        case "narrative":
            return result.narrative
        case "classification":
            return result.classification
        case "translation":
            return result.translation
        case "post":
            return result.post


class GenerationPipeline:
    """Runs the phases of a turn and reports progress as events."""

    def __init__(self, deps: PipelineDependencies, settings: Settings | None = None):
        """Create a pipeline.

        Args:
            deps: Collaborators for every phase.
            settings: Engine settings. Loaded from the cache if not provided.
        """
        self.deps = deps
        self.settings = settings or Settings.load()

    def phases_for(self, cfg: PipelineConfig) -> tuple[Phase, ...]:
        """Phases that will run for a config, in order."""
        return tuple(
            phase for phase in PHASE_ORDER if phase != "translation" or cfg.should_translate()
        )

    async def execute(
        self,
        ctx: GenerationContext,
        cfg: PipelineConfig,
        result: PipelineResult | None = None,
    ) -> AsyncIterator[PipelineEvent]:
        """Run a turn.

        Every phase checks the cancel token once before it starts; the
        narrative phase also checks it per chunk. Cancellation ends the
        stream with an AbortedEvent, a fatal ErrorEvent ends it without a
        PhaseCompleteEvent for the failing phase. Neither is raised.

        Args:
            ctx: Turn context with the shared cancel token.
            cfg: Turn configuration.
            result: Optional aggregate to fill in; callers pass one in to
                inspect phase results after iteration.

        Yields:
            PipelineEvents in phase order.
        """
        result = result if result is not None else PipelineResult()
        logger.info(
            "Starting generation for story %s at position %d (mode=%s)",
            ctx.story.id,
            ctx.story_position,
            cfg.story_mode,
        )

        for phase in self.phases_for(cfg):
            if ctx.cancel_token.cancelled:
                logger.info("Generation aborted before %s phase", phase)
                result.aborted_phase = phase
                yield AbortedEvent(phase)
                return

            yield PhaseStartEvent(phase)
            try:
                async for event in _PHASE_RUNNERS[phase](self, ctx, cfg, result):
                    if isinstance(event, ErrorEvent) and not event.fatal:
                        result.errors.append(event)
                    yield event
            except GenerationCancelledError:
                logger.info("Generation aborted during %s phase", phase)
                result.aborted_phase = phase
                yield AbortedEvent(phase)
                return
            except Exception as e:
                logger.exception("Unexpected failure in %s phase", phase)
                error = ErrorEvent(
                    phase, f"Unexpected {phase} failure: {summarize_llm_error(e)}", True, e
                )
                result.fatal_error = error
                yield error
                return

            if result.fatal_error is not None:
                logger.error("Generation stopped in %s phase: %s", phase, result.fatal_error.error)
                return

            result.completed_phases.append(phase)
            yield PhaseCompleteEvent(phase, _phase_payload(phase, result))

        logger.info(
            "Generation complete for story %s (%d non-fatal error(s))",
            ctx.story.id,
            len(result.errors),
        )


__all__ = [
    "PHASE_ORDER",
    "AbortedEvent",
    "ClassificationCompleteEvent",
    "ErrorEvent",
    "GenerationContext",
    "GenerationPipeline",
    "NarrativeChunkEvent",
    "NarrativeResult",
    "Phase",
    "PhaseCompleteEvent",
    "PhaseStartEvent",
    "PipelineConfig",
    "PipelineDependencies",
    "PipelineEvent",
    "PipelineResult",
    "PostGenerationResult",
    "PreGenerationResult",
    "TranslationResult",
]
