"""Narrator Agent - streams the story continuation for a turn."""

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from src.memory.story_state import Story, StoryEntry, WorldState
from src.settings import Settings
from src.utils.llm_client import StreamChunk, StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

NARRATOR_SYSTEM_PROMPT = """You are the Narrator of an interactive story.

You continue the story in response to the reader's latest action. Stay consistent with
everything established so far: characters keep their personalities, places keep their
geography, and the in-story clock only moves forward.

Rules:
- Never act, speak or decide for the protagonist beyond what the reader wrote
- Write vivid, concrete prose; show rather than tell
- End at a natural point that invites the reader's next action
- Use lore and retrieved context silently; never mention that it was provided
- Output only the story text, with no headings, notes or commentary"""

_POV_INSTRUCTIONS = {
    "first": "Write in first person from the protagonist's perspective.",
    "second": "Write in second person, addressing the protagonist as 'you'.",
    "third": "Write in third person, following the protagonist closely.",
}


def format_world_state(world: WorldState) -> str:
    """Render the tracked world state as a compact prompt block."""
    lines = [f"Story time: {world.time_tracker.describe()}"]
    location = world.current_location
    if location is not None:
        lines.append(f"Current location: {location.name}. {location.description}".rstrip(". ") + ".")
    if world.active_characters:
        lines.append("Characters:")
        for character in world.active_characters:
            detail = ", ".join(filter(None, [character.relationship, ", ".join(character.traits)]))
            lines.append(f"- {character.name}" + (f" ({detail})" if detail else ""))
    if world.inventory:
        lines.append(
            "Inventory: "
            + ", ".join(
                f"{i.name} x{i.quantity}" if i.quantity > 1 else i.name for i in world.inventory
            )
        )
    active_beats = [b for b in world.story_beats if b.status in ("active", "pending")]
    if active_beats:
        lines.append("Open threads:")
        lines.extend(f"- {b.title}: {b.description}".rstrip(": ") for b in active_beats)
    return "\n".join(lines)


class NarratorAgent(BaseAgent):
    """Agent that writes the next passage of the story."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Narrator agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for narrator.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Narrator",
            role="Story Narrator",
            system_prompt=NARRATOR_SYSTEM_PROMPT,
            provider=provider,
            agent_role="narrator",
            model=model,
            settings=settings,
        )

    def build_narrative_messages(
        self,
        story: Story,
        history: Sequence[StoryEntry],
        user_action: str,
        world: WorldState,
        prompt_context: str = "",
    ) -> list[dict[str, Any]]:
        """Assemble the chat transcript for a narrative request.

        Args:
            story: Story configuration (mode, POV, tense, genre).
            history: Earlier entries, oldest first, excluding the current action.
            user_action: The reader's action for this turn.
            world: Tracked world state.
            prompt_context: Lore and retrieved memory assembled by pre-generation.

        Returns:
            Messages ready for stream().
        """
        style = [
            _POV_INSTRUCTIONS.get(story.pov, _POV_INSTRUCTIONS["second"]),
            f"Use {story.tense} tense.",
        ]
        if story.genre:
            style.append(f"Genre: {story.genre}.")
        if story.mode == "creative-writing":
            style.append("The reader is co-writing: their input is direction for the author, not a character action.")
        if story.protagonist_name and story.protagonist_name != "You":
            style.append(f"The protagonist is {story.protagonist_name}.")

        system_parts = [self.system_prompt, "\n".join(style)]
        if story.system_prompt:
            system_parts.append(story.system_prompt)
        system_parts.append(f"[WORLD STATE]\n{format_world_state(world)}")
        if prompt_context:
            system_parts.append(prompt_context)

        messages: list[dict[str, Any]] = [{"role": "system", "content": "\n\n".join(system_parts)}]
        window = self.settings.narrative_history_entries
        for entry in list(history)[-window:] if window else []:
            if entry.type == "user_action":
                messages.append({"role": "user", "content": entry.content})
            elif entry.type == "narration":
                messages.append({"role": "assistant", "content": entry.content})
        messages.append({"role": "user", "content": user_action})
        return messages

    def stream_narrative(self, messages: list[dict[str, Any]]) -> AsyncIterator[StreamChunk]:
        """Open the narrative stream."""
        logger.info("%s: Streaming narrative (%d messages)", self.name, len(messages))
        return self.stream(messages)
