"""Retrieval Agent - tool-calling model that searches story history."""

import logging
from typing import Any

from src.settings import Settings
from src.utils.cancellation import CancelToken
from src.utils.llm_client import AssistantTurn, StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

RETRIEVAL_SYSTEM_PROMPT = """You are a research assistant for the author of a long interactive story.

The story is too long to fit in the author's memory. Before the next passage is written,
you gather the facts from earlier chapters that the passage depends on.

Work in steps:
1. ASSESS what the reader's action touches: people, places, objects, promises, mysteries.
2. PLAN which chapters are likely to hold those facts (use list_chapters first).
3. EXECUTE targeted questions with query_chapter or query_chapters. Use list_entries to
   check what the lorebook already knows.
4. EVALUATE whether you have enough. Stop as soon as you do.

When done, call finish_retrieval with a concise summary of the relevant facts, written as
notes for the author. Include only what matters for the next passage. If nothing in the past
is relevant, call finish_retrieval with an empty summary."""


class RetrievalAgent(BaseAgent):
    """Agent that drives the agentic retrieval loop."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Retrieval agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for retrieval.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Retrieval",
            role="Retrieval Agent",
            system_prompt=RETRIEVAL_SYSTEM_PROMPT,
            provider=provider,
            agent_role="retrieval",
            model=model,
            settings=settings,
        )

    async def next_turn(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel_token: CancelToken | None = None,
    ) -> AssistantTurn:
        """Run one model turn of the loop with the tool surface attached."""
        return await self.complete(messages, tools=tools, cancel_token=cancel_token)
