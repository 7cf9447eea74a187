"""Services layer - generation, retrieval and rollback wired to the agents.

This module provides the container that builds the LLM provider, the
agents and the engines once, and binds them to a loaded story on demand.
"""

import logging
import time
from collections.abc import Awaitable, Callable

from src.agents import (
    ChapterQueryAgent,
    ClassifierAgent,
    LoreSelectorAgent,
    NarratorAgent,
    RetrievalAgent,
    SuggestionsAgent,
    TimelineAgent,
    TranslatorAgent,
)
from src.memory.activation import ActivationTracker
from src.memory.story_state import Chapter
from src.memory.story_store import StoryStore
from src.settings import Settings
from src.utils.exceptions import RetrievalError
from src.utils.llm_client import OllamaProvider, StreamingProvider

from .generation import GenerationPipeline, PipelineDependencies
from .retrieval import AgenticRetrievalLoop, TieredRetrievalEngine, TimelineFillService
from .retry_service import RetryManager
from .turn_service import TurnService

logger = logging.getLogger(__name__)


def _chapter_callbacks(
    store: StoryStore, agent: ChapterQueryAgent
) -> tuple[Callable[[int, str], Awaitable[str]], Callable[[int, int, str], Awaitable[str]]]:
    """Bind chapter numbers to the store's current chapters."""

    def find(number: int) -> Chapter:
        for chapter in store.world_state().chapters:
            if chapter.number == number:
                return chapter
        raise RetrievalError(f"Chapter {number} not found")

    async def query_chapter(number: int, question: str) -> str:
        return await agent.query_chapter(find(number), question)

    async def query_chapters(start: int, end: int, question: str) -> str:
        chapters = [c for c in store.world_state().chapters if start <= c.number <= end]
        if not chapters:
            raise RetrievalError(f"No chapters between {start} and {end}")
        return await agent.query_chapters(chapters, question)

    return query_chapter, query_chapters


class ServiceContainer:
    """Dependency injection container for the narrative engine.

    Usage:
        settings = Settings.load()
        services = ServiceContainer(settings)

        store = StoryStore(story, world, entries)
        turns = services.create_turn_service(store)
        outcome = await turns.submit_action("I open the door.")
    """

    def __init__(self, settings: Settings | None = None, provider: StreamingProvider | None = None):
        """Create the provider, agents and story-independent engines.

        Args:
            settings: Engine settings shared by every component. Loaded if omitted.
            provider: Streaming provider. An OllamaProvider is created if omitted.
        """
        t0 = time.perf_counter()
        logger.info("Initializing ServiceContainer...")
        self.settings = settings or Settings.load()
        self.provider = provider or OllamaProvider(self.settings)

        self.narrator = NarratorAgent(self.provider, settings=self.settings)
        self.classifier = ClassifierAgent(self.provider, settings=self.settings)
        self.suggestions = SuggestionsAgent(self.provider, settings=self.settings)
        self.translator = TranslatorAgent(self.provider, settings=self.settings)
        self.lore_selector = LoreSelectorAgent(self.provider, settings=self.settings)
        self.chapter_query = ChapterQueryAgent(self.provider, settings=self.settings)
        self.timeline = TimelineAgent(self.provider, settings=self.settings)
        self.retrieval = RetrievalAgent(self.provider, settings=self.settings)

        self.lore_retrieval = TieredRetrievalEngine(self.settings, self.lore_selector.select)
        self.agentic_retrieval = AgenticRetrievalLoop(
            self.settings, self.retrieval.next_turn, self.retrieval.system_prompt
        )
        logger.info("ServiceContainer initialized in %.2fs", time.perf_counter() - t0)

    def build_dependencies(self, store: StoryStore) -> PipelineDependencies:
        """Pipeline collaborators bound to one story's chapters."""
        query_chapter, query_chapters = _chapter_callbacks(store, self.chapter_query)
        return PipelineDependencies(
            build_narrative_messages=self.narrator.build_narrative_messages,
            stream_narrative=self.narrator.stream_narrative,
            classify=self.classifier.classify,
            lore_retrieval=self.lore_retrieval,
            agentic_retrieval=self.agentic_retrieval,
            timeline_fill=TimelineFillService(
                self.settings, self.timeline.plan_queries, query_chapter, query_chapters
            ),
            query_chapter=query_chapter,
            query_chapters=query_chapters,
            generate_suggestions=self.suggestions.generate_suggestions,
            generate_action_choices=self.suggestions.generate_action_choices,
            translate_text=self.translator.translate_text,
            translate_texts=self.translator.translate_texts,
            translate_entities=self.translator.translate_entities,
        )

    def create_pipeline(self, store: StoryStore) -> GenerationPipeline:
        """Generation pipeline for one story."""
        return GenerationPipeline(self.build_dependencies(store), self.settings)

    def create_turn_service(
        self, store: StoryStore, activation_tracker: ActivationTracker | None = None
    ) -> TurnService:
        """Turn service for one story, with its own retry backup."""
        return TurnService(
            store,
            self.create_pipeline(store),
            self.settings,
            retry_manager=RetryManager(),
            activation_tracker=activation_tracker,
        )


__all__ = [
    "GenerationPipeline",
    "RetryManager",
    "ServiceContainer",
    "TurnService",
]
