"""Timeline Agent - plans questions about story history for timeline fill."""

import logging
from collections.abc import Sequence

from src.memory.generation_models import TimelineQueries, TimelineQuery
from src.memory.story_state import Chapter, StoryEntry
from src.settings import Settings
from src.utils.llm_client import StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

TIMELINE_SYSTEM_PROMPT = """You help an author remember what happened earlier in a long story.

Given summaries of past chapters and the reader's latest action, write a few precise
questions whose answers would help write the next passage consistently. Each question
targets one chapter or a short range of chapters. Ask nothing when the recent story
already contains everything needed.

Respond with JSON matching the requested schema."""


class TimelineAgent(BaseAgent):
    """Agent that plans chapter queries for static timeline fill."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Timeline agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for timeline.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Timeline",
            role="Timeline Planner",
            system_prompt=TIMELINE_SYSTEM_PROMPT,
            provider=provider,
            agent_role="timeline",
            model=model,
            settings=settings,
        )

    async def plan_queries(
        self,
        chapters: Sequence[Chapter],
        user_input: str,
        recent_entries: Sequence[StoryEntry],
    ) -> list[TimelineQuery]:
        """Plan up to ``timeline_fill_max_queries`` questions.

        Queries referencing unknown chapters are dropped.

        Raises:
            LLMError: If the model call fails.
        """
        summaries = "\n".join(
            f"Chapter {c.number}{f' ({c.title})' if c.title else ''}: {c.summary}" for c in chapters
        )
        recent = "\n\n".join(e.content for e in recent_entries if e.type != "system")
        prompt = f"""CHAPTER SUMMARIES:
{summaries}

RECENT STORY:
{recent or "(none)"}

READER ACTION:
{user_input}

Plan at most {self.settings.timeline_fill_max_queries} questions."""
        result = await self.generate_structured(prompt, TimelineQueries)

        numbers = {c.number for c in chapters}
        planned = [q for q in result.queries if q.start_chapter in numbers and q.question.strip()]
        return planned[: self.settings.timeline_fill_max_queries]
