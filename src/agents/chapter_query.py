"""Chapter Query Agent - answers questions about summarized chapters."""

import logging
from collections.abc import Sequence

from src.memory.story_state import Chapter
from src.settings import Settings
from src.utils.llm_client import StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

CHAPTER_QUERY_SYSTEM_PROMPT = """You answer questions about earlier parts of a story.

Answer only from the chapter text you are given. Be specific: names, places, objects,
promises and unresolved threads matter most. If the chapter does not contain the answer,
say so in one sentence. Keep answers under 150 words."""


def _chapter_text(chapter: Chapter) -> str:
    title = f" - {chapter.title}" if chapter.title else ""
    body = chapter.content or chapter.summary
    return f"CHAPTER {chapter.number}{title}\n{body}"


class ChapterQueryAgent(BaseAgent):
    """Agent that backs the chapter query callbacks of the retrieval loop."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Chapter Query agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for chapter_query.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Chapter Query",
            role="Chapter Query",
            system_prompt=CHAPTER_QUERY_SYSTEM_PROMPT,
            provider=provider,
            agent_role="chapter_query",
            model=model,
            settings=settings,
        )

    async def query_chapter(self, chapter: Chapter, question: str) -> str:
        """Answer a question from a single chapter."""
        return await self.generate(f"QUESTION: {question}", context=_chapter_text(chapter))

    async def query_chapters(self, chapters: Sequence[Chapter], question: str) -> str:
        """Answer a question from a contiguous range of chapters."""
        context = "\n\n".join(_chapter_text(chapter) for chapter in chapters)
        return await self.generate(f"QUESTION: {question}", context=context)
