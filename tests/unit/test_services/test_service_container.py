"""Tests for the service container."""

import pytest

from src.memory.generation_models import ClassificationResult, TimelineQueries
from src.memory.story_store import StoryStore
from src.services import ServiceContainer
from src.services.generation import GenerationPipeline
from src.services.turn_service import TurnService
from src.settings import Settings
from src.utils.exceptions import RetrievalError
from tests.shared.mock_llm import ScriptedProvider, content_stream


@pytest.fixture
def container() -> ServiceContainer:
    return ServiceContainer(Settings(), provider=ScriptedProvider())


class TestServiceContainer:
    def test_agents_share_provider_and_settings(self, container):
        assert container.narrator.provider is container.provider
        assert container.classifier.settings is container.settings
        assert container.lore_retrieval.selector == container.lore_selector.select

    def test_build_dependencies(self, container, story, world):
        deps = container.build_dependencies(StoryStore(story, world))
        assert deps.classify == container.classifier.classify
        assert deps.lore_retrieval is container.lore_retrieval
        assert deps.agentic_retrieval is container.agentic_retrieval
        assert deps.timeline_fill is not None

    def test_create_turn_service(self, container, story, world):
        store = StoryStore(story, world)
        turns = container.create_turn_service(store)
        assert isinstance(turns, TurnService)
        assert isinstance(turns.pipeline, GenerationPipeline)
        assert turns.store is store
        assert turns.activation_tracker.story_id == "story-1"

    @pytest.mark.asyncio
    async def test_chapter_callbacks_read_the_live_store(self, container, story, world):
        store = StoryStore(story, world)
        container.provider.streams.append(content_stream("Mara arrived by boat."))
        deps = container.build_dependencies(store)

        answer = await deps.query_chapter(1, "How did Mara arrive?")

        assert answer == "Mara arrived by boat."
        with pytest.raises(RetrievalError, match="Chapter 9 not found"):
            await deps.query_chapter(9, "?")
        with pytest.raises(RetrievalError, match="No chapters"):
            await deps.query_chapters(5, 7, "?")

    @pytest.mark.asyncio
    async def test_end_to_end_turn(self, story, world):
        provider = ScriptedProvider(
            streams=[content_stream("The tower door groans open.")],
            structured=[TimelineQueries(), ClassificationResult()],
        )
        settings = Settings(disable_suggestions=True)
        container = ServiceContainer(settings, provider=provider)
        store = StoryStore(story, world)

        outcome = await container.create_turn_service(store).submit_action("I climb the tower.")

        assert outcome.error is None
        assert store.entries[-1].content == "The tower door groans open."
        narrative_request = next(r for r in provider.requests if r.temperature == 0.9)
        assert "The old signal tower." in narrative_request.messages[0]["content"]
