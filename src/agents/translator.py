"""Translator Agent - translates generated content into the reader's language."""

import logging
from collections.abc import Sequence

from src.memory.generation_models import (
    TranslatedEntities,
    TranslatedEntity,
    TranslatedText,
    TranslatedTexts,
)
from src.memory.story_state import WorldState
from src.settings import Settings
from src.utils.exceptions import LLMError, TranslationError, summarize_llm_error
from src.utils.llm_client import StreamingProvider
from src.utils.validation import validate_not_empty

from .base import BaseAgent

logger = logging.getLogger(__name__)

TRANSLATOR_SYSTEM_PROMPT = """You are a literary translator.

Translate the given story text faithfully, keeping tone, tense, point of view, paragraph
breaks and formatting. Keep proper names unless they have an established translation.
Never summarize, censor, explain or add anything.

Respond with JSON matching the requested schema."""


class TranslatorAgent(BaseAgent):
    """Agent that translates narration, follow-up options and entity text."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Translator agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for translator.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Translator",
            role="Literary Translator",
            system_prompt=TRANSLATOR_SYSTEM_PROMPT,
            provider=provider,
            agent_role="translator",
            model=model,
            settings=settings,
        )

    async def translate_text(self, text: str, language: str) -> str:
        """Translate a single block of text.

        Raises:
            TranslationError: If the model call fails.
        """
        validate_not_empty(language, "language")
        if not text.strip():
            return text
        prompt = f"TARGET LANGUAGE: {language}\n\nTEXT:\n{text}"
        try:
            result = await self.generate_structured(prompt, TranslatedText)
        except LLMError as e:
            raise TranslationError(f"Translation failed: {summarize_llm_error(e)}") from e
        return result.text

    async def translate_texts(self, texts: Sequence[str], language: str) -> list[str]:
        """Translate a list of short strings in one call.

        Raises:
            TranslationError: If the model call fails or returns the wrong count.
        """
        validate_not_empty(language, "language")
        if not texts:
            return []
        numbered = "\n".join(f"{i + 1}. {text}" for i, text in enumerate(texts))
        prompt = (
            f"TARGET LANGUAGE: {language}\n\n"
            f"Translate each numbered line and return them in the same order:\n{numbered}"
        )
        try:
            result = await self.generate_structured(prompt, TranslatedTexts)
        except LLMError as e:
            raise TranslationError(f"Translation failed: {summarize_llm_error(e)}") from e
        if len(result.texts) != len(texts):
            raise TranslationError(
                f"Translation returned {len(result.texts)} lines for {len(texts)} inputs"
            )
        return result.texts

    async def translate_entities(self, world: WorldState, language: str) -> list[TranslatedEntity]:
        """Translate names and descriptions of tracked world entities.

        Raises:
            TranslationError: If the model call fails.
        """
        validate_not_empty(language, "language")
        rows = [(c.id, c.name, c.description) for c in world.characters]
        rows += [(loc.id, loc.name, loc.description) for loc in world.locations]
        rows += [(i.id, i.name, i.description) for i in world.items]
        rows += [(b.id, b.title, b.description) for b in world.story_beats]
        if not rows:
            return []
        listing = "\n".join(f"- id={eid} | name={name} | description={desc}" for eid, name, desc in rows)
        prompt = (
            f"TARGET LANGUAGE: {language}\n\n"
            "Translate the name and description of each entity. Keep every id unchanged.\n"
            f"{listing}"
        )
        try:
            result = await self.generate_structured(prompt, TranslatedEntities)
        except LLMError as e:
            raise TranslationError(f"Entity translation failed: {summarize_llm_error(e)}") from e
        known_ids = {eid for eid, _, _ in rows}
        return [entity for entity in result.entities if entity.id in known_ids]
