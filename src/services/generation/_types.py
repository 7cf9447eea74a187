"""Context, configuration, dependency and result types for the pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from src.memory.activation import ActivationTracker
from src.memory.generation_models import (
    ActionChoice,
    ClassificationResult,
    Suggestion,
    TranslatedEntity,
)
from src.memory.story_state import Story, StoryEntry, StoryMode, WorldState
from src.services.retrieval import (
    AgenticRetrievalLoop,
    AgenticRetrievalResult,
    RetrievalResult,
    TieredRetrievalEngine,
    TimelineFillResult,
    TimelineFillService,
)
from src.settings import Settings
from src.utils.cancellation import CancelToken
from src.utils.llm_client import StreamChunk

from ._events import ErrorEvent, Phase

BuildMessagesFn = Callable[
    [Story, Sequence[StoryEntry], str, WorldState, str], list[dict[str, Any]]
]
StreamNarrativeFn = Callable[[list[dict[str, Any]]], AsyncIterator[StreamChunk]]
ClassifyFn = Callable[
    [str, str, WorldState, Sequence[StoryEntry]], Awaitable[ClassificationResult]
]
SuggestionsFn = Callable[[Sequence[StoryEntry], WorldState, Story], Awaitable[list[Suggestion]]]
ActionChoicesFn = Callable[
    [Sequence[StoryEntry], WorldState, Story], Awaitable[list[ActionChoice]]
]
TranslateTextFn = Callable[[str, str], Awaitable[str]]
TranslateTextsFn = Callable[[Sequence[str], str], Awaitable[list[str]]]
TranslateEntitiesFn = Callable[[WorldState, str], Awaitable[list[TranslatedEntity]]]
QueryChapterFn = Callable[[int, str], Awaitable[str]]
QueryChaptersFn = Callable[[int, int, str], Awaitable[str]]


@dataclass(frozen=True)
class GenerationContext:
    """Everything one turn reads.

    Attributes:
        story: Story configuration.
        user_action: The persisted user-action entry for this turn.
        history: Story log before the user action, oldest first.
        world: World state at turn start.
        story_position: Story length including the user action.
        cancel_token: Token shared by every phase of the turn.
        current_world: Returns the live world state after the caller applied
            classification; used when translating entity names.
    """

    story: Story
    user_action: StoryEntry
    history: tuple[StoryEntry, ...]
    world: WorldState
    story_position: int
    cancel_token: CancelToken = field(default_factory=CancelToken)
    current_world: Callable[[], WorldState] | None = None


@dataclass
class PipelineConfig:
    """Per-turn switches, resolved once from settings and story."""

    story_mode: StoryMode = "adventure"
    retrieval_enabled: bool = True
    timeline_fill_enabled: bool = True
    agentic_retrieval_enabled: bool = True
    agentic_chapter_threshold: int = 30
    translation_enabled: bool = False
    target_language: str = ""
    translate_narration: bool = True
    translate_world_state: bool = True
    translate_suggestions: bool = True
    disable_suggestions: bool = False
    max_empty_response_retries: int = 3
    max_words_per_entry: int = 0
    stream_inter_chunk_timeout: float | None = None
    stream_wall_clock_timeout: float | None = None
    activation_tracker: ActivationTracker | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        story: Story,
        activation_tracker: ActivationTracker | None = None,
    ) -> PipelineConfig:
        """Build the config for a story from engine settings."""
        return cls(
            story_mode=story.mode,
            retrieval_enabled=settings.retrieval_enabled,
            timeline_fill_enabled=settings.timeline_fill_enabled,
            agentic_retrieval_enabled=settings.agentic_retrieval_enabled,
            agentic_chapter_threshold=settings.agentic_chapter_threshold,
            translation_enabled=settings.should_translate(),
            target_language=settings.translation_target_language,
            translate_narration=settings.translate_narration,
            translate_world_state=settings.translate_world_state,
            translate_suggestions=settings.translate_suggestions,
            disable_suggestions=settings.disable_suggestions,
            max_empty_response_retries=settings.max_empty_response_retries,
            max_words_per_entry=settings.retrieval_max_words_per_entry,
            stream_inter_chunk_timeout=settings.stream_inter_chunk_timeout,
            stream_wall_clock_timeout=settings.stream_wall_clock_timeout,
            activation_tracker=activation_tracker,
        )

    def should_use_agentic_retrieval(self, chapter_count: int) -> bool:
        """Whether the agentic loop replaces timeline fill for this many chapters."""
        return self.agentic_retrieval_enabled and chapter_count > self.agentic_chapter_threshold

    def should_translate(self) -> bool:
        """Whether the translation phase runs."""
        return self.translation_enabled and bool(self.target_language.strip())


@dataclass
class PipelineDependencies:
    """Collaborators the phases call. Optional ones disable their sub-step."""

    build_narrative_messages: BuildMessagesFn
    stream_narrative: StreamNarrativeFn
    classify: ClassifyFn
    lore_retrieval: TieredRetrievalEngine | None = None
    agentic_retrieval: AgenticRetrievalLoop | None = None
    timeline_fill: TimelineFillService | None = None
    query_chapter: QueryChapterFn | None = None
    query_chapters: QueryChaptersFn | None = None
    generate_suggestions: SuggestionsFn | None = None
    generate_action_choices: ActionChoicesFn | None = None
    translate_text: TranslateTextFn | None = None
    translate_texts: TranslateTextsFn | None = None
    translate_entities: TranslateEntitiesFn | None = None


@dataclass(frozen=True)
class PreGenerationResult:
    """Context assembled before the narrative call."""

    lore: RetrievalResult | None = None
    agentic: AgenticRetrievalResult | None = None
    timeline: TimelineFillResult | None = None
    prompt_context: str = ""
    messages: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class NarrativeResult:
    """Accumulated narrative output.

    Attributes:
        content: Narration text.
        reasoning: Model reasoning, if the model exposed any.
        attempts: Streaming attempts used (empty responses are retried).
        partial: True when the stream failed after producing content.
    """

    content: str
    reasoning: str = ""
    attempts: int = 1
    partial: bool = False


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of the translation phase."""

    translated: bool = False
    narrative: str | None = None
    entities: tuple[TranslatedEntity, ...] = ()
    language: str = ""


@dataclass(frozen=True)
class PostGenerationResult:
    """Follow-up options for the reader."""

    suggestions: tuple[Suggestion, ...] = ()
    action_choices: tuple[ActionChoice, ...] = ()


@dataclass
class PipelineResult:
    """Per-phase results collected while the event stream is consumed."""

    pre: PreGenerationResult | None = None
    narrative: NarrativeResult | None = None
    classification: ClassificationResult | None = None
    translation: TranslationResult | None = None
    post: PostGenerationResult | None = None
    aborted_phase: Phase | None = None
    fatal_error: ErrorEvent | None = None
    errors: list[ErrorEvent] = field(default_factory=list)
    completed_phases: list[Phase] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        """Whether the turn was cancelled."""
        return self.aborted_phase is not None

    @property
    def succeeded(self) -> bool:
        """Whether the turn produced classified narration without fatal errors."""
        return not self.aborted and self.fatal_error is None and self.classification is not None
