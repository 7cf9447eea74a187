"""Tests for the Translator agent."""

import pytest

from src.agents.translator import TranslatorAgent
from src.memory.generation_models import (
    TranslatedEntities,
    TranslatedEntity,
    TranslatedText,
    TranslatedTexts,
)
from src.memory.story_state import WorldState
from src.settings import Settings
from src.utils.exceptions import LLMGenerationError, TranslationError
from tests.shared.mock_llm import ScriptedProvider


class TestTranslateText:
    @pytest.mark.asyncio
    async def test_translates(self):
        provider = ScriptedProvider(structured=[TranslatedText(text="Hola")])
        agent = TranslatorAgent(provider, settings=Settings())
        assert await agent.translate_text("Hello", "Spanish") == "Hola"
        assert "TARGET LANGUAGE: Spanish" in provider.requests[0].messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_blank_text_skips_the_model(self):
        provider = ScriptedProvider()
        agent = TranslatorAgent(provider, settings=Settings())
        assert await agent.translate_text("   ", "Spanish") == "   "
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_empty_language_rejected(self):
        agent = TranslatorAgent(ScriptedProvider(), settings=Settings())
        with pytest.raises(ValueError):
            await agent.translate_text("Hello", "")

    @pytest.mark.asyncio
    async def test_llm_failure_wrapped(self):
        provider = ScriptedProvider(structured=[LLMGenerationError("down")])
        agent = TranslatorAgent(provider, settings=Settings())
        with pytest.raises(TranslationError):
            await agent.translate_text("Hello", "Spanish")


class TestTranslateTexts:
    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self):
        provider = ScriptedProvider(structured=[TranslatedTexts(texts=["uno"])])
        agent = TranslatorAgent(provider, settings=Settings())
        with pytest.raises(TranslationError, match="1 lines for 2 inputs"):
            await agent.translate_texts(["one", "two"], "Spanish")

    @pytest.mark.asyncio
    async def test_empty_input(self):
        agent = TranslatorAgent(ScriptedProvider(), settings=Settings())
        assert await agent.translate_texts([], "Spanish") == []


class TestTranslateEntities:
    @pytest.mark.asyncio
    async def test_unknown_ids_are_dropped(self, world):
        provider = ScriptedProvider(
            structured=[
                TranslatedEntities(
                    entities=[
                        TranslatedEntity(id="char-ren", name="Ren", description="Un farero"),
                        TranslatedEntity(id="made-up", name="Nadie"),
                    ]
                )
            ]
        )
        agent = TranslatorAgent(provider, settings=Settings())

        result = await agent.translate_entities(world, "Spanish")

        assert [e.id for e in result] == ["char-ren"]
        assert "id=loc-shore" in provider.requests[0].messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_empty_world_skips_the_model(self):
        provider = ScriptedProvider()
        agent = TranslatorAgent(provider, settings=Settings())
        assert await agent.translate_entities(WorldState(), "Spanish") == []
        assert provider.requests == []
