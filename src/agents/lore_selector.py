"""Lore Selector Agent - picks extra lorebook entries keyword matching missed."""

import logging
from collections.abc import Sequence

from src.memory.generation_models import EntrySelection
from src.memory.story_state import LorebookEntry
from src.settings import Settings
from src.utils.llm_client import StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

LORE_SELECTOR_SYSTEM_PROMPT = """You decide which background lore an author needs for the next passage.

You receive the reader's latest action, the recent story text and a numbered list of lore
entries that were not matched by keywords. Select only entries that are clearly relevant to
what is about to happen. Selecting nothing is a valid answer.

Respond with JSON matching the requested schema, listing entry ids or list numbers."""

# Description preview per candidate; full entries are not needed to judge relevance
_PREVIEW_CHARS = 160


class LoreSelectorAgent(BaseAgent):
    """Agent behind the LLM-mediated retrieval tier."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Lore Selector agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for lore_selector.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Lore Selector",
            role="Lore Selector",
            system_prompt=LORE_SELECTOR_SYSTEM_PROMPT,
            provider=provider,
            agent_role="lore_selector",
            model=model,
            settings=settings,
        )

    async def select(
        self,
        candidates: Sequence[LorebookEntry],
        user_input: str,
        recent_text: str,
        limit: int,
    ) -> list[str]:
        """Ask the model which candidates are relevant.

        Args:
            candidates: Remaining lorebook entries, in stable order.
            user_input: The reader's action.
            recent_text: Recent story text window.
            limit: Maximum number of entries to return.

        Returns:
            Selected entry ids in the model's order, deduplicated and capped.

        Raises:
            LLMError: If the model call fails.
        """
        if not candidates or limit <= 0:
            return []
        listing = "\n".join(
            f"{i}. [{entry.id}] {entry.name} ({entry.type}): {entry.description[:_PREVIEW_CHARS]}"
            for i, entry in enumerate(candidates)
        )
        prompt = f"""READER ACTION:
{user_input}

RECENT STORY:
{recent_text}

LORE ENTRIES:
{listing}

Select at most {limit} entries."""
        selection = await self.generate_structured(prompt, EntrySelection)

        by_id = {entry.id: entry for entry in candidates}
        chosen: list[str] = []
        for raw in selection.selected_ids:
            key = raw.strip()
            if key in by_id:
                entry_id = key
            elif key.isdigit() and int(key) < len(candidates):
                entry_id = candidates[int(key)].id
            else:
                logger.debug("%s: Ignoring unknown selection %r", self.name, raw)
                continue
            if entry_id not in chosen:
                chosen.append(entry_id)
            if len(chosen) >= limit:
                break
        logger.debug("%s: Selected %d of %d candidates", self.name, len(chosen), len(candidates))
        return chosen
