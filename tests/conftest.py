"""Pytest fixtures for narrative engine tests."""

import logging

import pytest

from src.memory.story_state import (
    Chapter,
    Character,
    InjectionRule,
    Item,
    Location,
    LorebookEntry,
    Story,
    StoryEntry,
    WorldState,
)
from src.settings import Settings


@pytest.fixture(autouse=True, scope="function")
def cleanup_production_log_handlers():
    """Remove file handlers pointing to the production log after each test."""
    yield

    root_logger = logging.getLogger()
    production_log_name = "narrative_engine.log"
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler) and production_log_name in getattr(
            handler, "baseFilename", ""
        ):
            handler.close()
            root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def clear_settings_cache_per_test():
    """Clear Settings cache before each test to ensure isolation.

    This is autouse because caching can cause test pollution when tests
    modify settings or patch SETTINGS_FILE to different paths.
    """
    Settings.clear_cache()
    yield
    Settings.clear_cache()


@pytest.fixture
def settings() -> Settings:
    """Default settings without reading settings.json."""
    return Settings()


@pytest.fixture
def story() -> Story:
    """An adventure story with a fixed id."""
    return Story(id="story-1", title="The Lighthouse", mode="adventure", protagonist_name="Mara")


@pytest.fixture
def world() -> WorldState:
    """A small world with one of every entity kind and three lore entries."""
    return WorldState(
        characters=[
            Character(id="char-ren", name="Ren", description="A lighthouse keeper", status="active")
        ],
        locations=[
            Location(id="loc-shore", name="Shore", description="Grey pebbles", current=True)
        ],
        items=[Item(id="item-lamp", name="Lamp", description="A brass oil lamp")],
        chapters=[
            Chapter(
                number=1,
                title="Arrival",
                summary="Mara arrives at the island.",
                start_position=0,
                end_position=9,
            ),
        ],
        lorebook_entries=[
            LorebookEntry(
                id="lore-tower",
                name="Tower",
                type="location",
                description="The old signal tower.",
                injection=InjectionRule(mode="keyword", keywords=["tower"]),
            ),
            LorebookEntry(
                id="lore-oath",
                name="Keeper's Oath",
                type="concept",
                description="Keepers never let the light go out.",
                injection=InjectionRule(mode="always"),
            ),
            LorebookEntry(
                id="lore-storm",
                name="The Storm",
                type="event",
                description="A storm that sank the Perdita.",
                injection=InjectionRule(mode="keyword", keywords=["storm", "perdita"]),
            ),
        ],
    )


@pytest.fixture
def history() -> list[StoryEntry]:
    """Two entries of prior story."""
    return [
        StoryEntry(id="e0", type="user_action", content="I walk to the shore.", position=0),
        StoryEntry(id="e1", type="narration", content="Waves break on grey pebbles.", position=1),
    ]
