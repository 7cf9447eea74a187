"""Suggestions Agent - proposes plot directions and next actions."""

import logging
from collections.abc import Sequence

from src.memory.generation_models import (
    ActionChoice,
    ActionChoiceList,
    Suggestion,
    SuggestionList,
)
from src.memory.story_state import Story, StoryEntry, WorldState
from src.settings import Settings
from src.utils.exceptions import LLMError, SuggestionError, summarize_llm_error
from src.utils.llm_client import StreamingProvider

from .base import BaseAgent
from .narrator import format_world_state

logger = logging.getLogger(__name__)

SUGGESTIONS_SYSTEM_PROMPT = """You are a story consultant helping a writer decide what happens next.

Offer short, distinct options that follow naturally from the latest passage. Mix quiet and
dramatic directions. Each option is a single sentence written as an instruction to the author.
Never repeat something that already happened.

Respond with JSON matching the requested schema."""

ACTION_CHOICES_SYSTEM_PROMPT = """You offer the player of a text adventure their next moves.

Each choice is one short action the protagonist could take right now, written as the player
would type it. Choices must be possible given the current location, present characters and
inventory, and should differ in approach (talk, explore, act, use an item).

Respond with JSON matching the requested schema."""

# Story text shown to the consultant; older entries add cost without helping
_RECENT_ENTRIES = 6


def _recent_story(entries: Sequence[StoryEntry]) -> str:
    return "\n\n".join(
        f"[{e.type.upper()}] {e.content}" for e in list(entries)[-_RECENT_ENTRIES:] if e.type != "system"
    )


class SuggestionsAgent(BaseAgent):
    """Agent that produces creative-writing suggestions and adventure action choices."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Suggestions agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for suggestion.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Suggestions",
            role="Story Consultant",
            system_prompt=SUGGESTIONS_SYSTEM_PROMPT,
            provider=provider,
            agent_role="suggestion",
            model=model,
            settings=settings,
        )

    async def generate_suggestions(
        self, entries: Sequence[StoryEntry], world: WorldState, story: Story
    ) -> list[Suggestion]:
        """Suggest up to three directions for a creative-writing story.

        Raises:
            SuggestionError: If generation fails.
        """
        prompt = f"""GENRE: {story.genre or "unspecified"}

WORLD:
{format_world_state(world)}

STORY SO FAR:
{_recent_story(entries)}

Suggest three different directions for the next passage."""
        try:
            result = await self.generate_structured(
                prompt, SuggestionList, temperature=self.temperature
            )
        except LLMError as e:
            raise SuggestionError(f"Suggestions failed: {summarize_llm_error(e)}") from e
        logger.debug("%s: Generated %d suggestions", self.name, len(result.suggestions))
        return result.suggestions

    async def generate_action_choices(
        self, entries: Sequence[StoryEntry], world: WorldState, story: Story
    ) -> list[ActionChoice]:
        """Offer up to four next actions for an adventure story.

        Raises:
            SuggestionError: If generation fails.
        """
        prompt = f"""PROTAGONIST: {story.protagonist_name}

WORLD:
{format_world_state(world)}

STORY SO FAR:
{_recent_story(entries)}

List the player's next possible actions."""
        try:
            result = await self.generate_structured(
                prompt,
                ActionChoiceList,
                temperature=self.temperature,
                system_prompt=ACTION_CHOICES_SYSTEM_PROMPT,
            )
        except LLMError as e:
            raise SuggestionError(f"Action choices failed: {summarize_llm_error(e)}") from e
        logger.debug("%s: Generated %d action choices", self.name, len(result.choices))
        return result.choices
