"""Timeline fill - static memory retrieval for stories with few chapters.

A planner model proposes a handful of questions about past chapters; each
is answered by the chapter query callbacks and the answers are injected as
a story-history block. Cheaper and more predictable than the agentic loop.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from src.memory.generation_models import TimelineQuery
from src.memory.story_state import Chapter, StoryEntry
from src.settings import Settings
from src.utils.cancellation import CancelToken, is_cancelled
from src.utils.exceptions import summarize_llm_error

from .agentic import QueryChapterFn, QueryChaptersFn

logger = logging.getLogger(__name__)

PlanQueriesFn = Callable[[Sequence[Chapter], str, Sequence[StoryEntry]], Awaitable[list[TimelineQuery]]]


@dataclass(frozen=True)
class TimelineAnswer:
    """One answered question."""

    question: str
    start_chapter: int
    end_chapter: int
    answer: str


@dataclass(frozen=True)
class TimelineFillResult:
    """Answers gathered by timeline fill."""

    answers: tuple[TimelineAnswer, ...] = ()

    def format_for_prompt(self) -> str:
        """Render answers as a story-history block."""
        if not self.answers:
            return ""
        lines = []
        for item in self.answers:
            span = (
                f"Chapter {item.start_chapter}"
                if item.start_chapter == item.end_chapter
                else f"Chapters {item.start_chapter}-{item.end_chapter}"
            )
            lines.append(f"Q ({span}): {item.question}\nA: {item.answer}")
        return "<story_history>\n" + "\n\n".join(lines) + "\n</story_history>"


class TimelineFillService:
    """Plans and answers questions about earlier chapters."""

    def __init__(
        self,
        settings: Settings,
        plan_queries: PlanQueriesFn,
        query_chapter: QueryChapterFn,
        query_chapters: QueryChaptersFn,
    ) -> None:
        self.settings = settings
        self.plan_queries = plan_queries
        self.query_chapter = query_chapter
        self.query_chapters = query_chapters

    async def fill(
        self,
        user_input: str,
        recent_entries: Sequence[StoryEntry],
        chapters: Sequence[Chapter],
        cancel_token: CancelToken | None = None,
    ) -> TimelineFillResult:
        """Plan queries and answer them one by one.

        Failed answers are skipped; a failed plan yields an empty result.
        Cancellation stops between queries and keeps the answers so far.
        """
        if not chapters:
            return TimelineFillResult()
        try:
            queries = await self.plan_queries(chapters, user_input, recent_entries)
        except Exception as e:
            logger.warning("Timeline query planning failed (non-fatal): %s", summarize_llm_error(e))
            return TimelineFillResult()

        max_range = self.settings.agentic_max_chapter_range
        answers: list[TimelineAnswer] = []
        for query in queries[: self.settings.timeline_fill_max_queries]:
            if is_cancelled(cancel_token):
                break
            start = query.start_chapter
            end = query.end_chapter if query.end_chapter is not None else start
            if end < start:
                start, end = end, start
            end = min(end, start + max_range - 1)
            try:
                if start == end:
                    answer = await self.query_chapter(start, query.question)
                else:
                    answer = await self.query_chapters(start, end, query.question)
            except Exception as e:
                logger.warning(
                    "Timeline query for chapters %d-%d failed (non-fatal): %s",
                    start,
                    end,
                    summarize_llm_error(e),
                )
                continue
            if answer.strip():
                answers.append(TimelineAnswer(query.question, start, end, answer.strip()))

        logger.info("Timeline fill answered %d of %d queries", len(answers), len(queries))
        return TimelineFillResult(answers=tuple(answers))
