"""Tests for the Narrator agent."""

import pytest

from src.agents.narrator import NarratorAgent, format_world_state
from src.memory.story_state import Story, StoryBeat, StoryEntry
from src.settings import Settings
from tests.shared.mock_llm import ScriptedProvider, content_stream


class TestFormatWorldState:
    def test_lists_location_characters_and_inventory(self, world):
        text = format_world_state(world)
        assert "Story time: Day 1, 00:00" in text
        assert "Current location: Shore. Grey pebbles." in text
        assert "- Ren" in text
        assert "Inventory: Lamp" in text

    def test_open_threads_skip_completed_beats(self, world):
        world.story_beats = [
            StoryBeat(title="Light the lamp", status="active"),
            StoryBeat(title="Old quest", status="completed"),
        ]
        text = format_world_state(world)
        assert "Light the lamp" in text
        assert "Old quest" not in text


class TestBuildNarrativeMessages:
    def test_history_maps_to_roles_and_skips_system(self, story, world, history):
        agent = NarratorAgent(ScriptedProvider(), settings=Settings())
        entries = [*history, StoryEntry(type="system", content="Generation failed", position=2)]

        messages = agent.build_narrative_messages(story, entries, "I climb the tower.", world)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "I climb the tower."
        assert "The protagonist is Mara." in messages[0]["content"]
        assert "[WORLD STATE]" in messages[0]["content"]

    def test_prompt_context_and_story_prompt_are_included(self, world):
        story = Story(mode="creative-writing", pov="third", system_prompt="Keep it gothic.")
        agent = NarratorAgent(ScriptedProvider(), settings=Settings())

        messages = agent.build_narrative_messages(
            story, [], "Begin.", world, prompt_context="[LORE]\nTower: tall"
        )

        system = messages[0]["content"]
        assert "third person" in system
        assert "co-writing" in system
        assert "Keep it gothic." in system
        assert system.endswith("[LORE]\nTower: tall")

    def test_history_window_is_capped(self, story, world):
        agent = NarratorAgent(ScriptedProvider(), settings=Settings(narrative_history_entries=2))
        entries = [
            StoryEntry(type="narration", content=f"Passage {i}", position=i) for i in range(5)
        ]

        messages = agent.build_narrative_messages(story, entries, "Go on.", world)

        assert [m["content"] for m in messages[1:-1]] == ["Passage 3", "Passage 4"]


class TestStreamNarrative:
    @pytest.mark.asyncio
    async def test_streams_with_narrator_settings(self):
        provider = ScriptedProvider(streams=[content_stream("Once")])
        agent = NarratorAgent(provider, settings=Settings())

        chunks = [c async for c in agent.stream_narrative([{"role": "user", "content": "Go"}])]

        assert chunks[0].text == "Once"
        assert provider.requests[0].model == "qwen3:8b"
        assert provider.requests[0].temperature == 0.9
