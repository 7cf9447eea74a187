"""Tests for timeline fill."""

import pytest

from src.memory.generation_models import TimelineQuery
from src.memory.story_state import Chapter
from src.services.retrieval.timeline_fill import (
    TimelineAnswer,
    TimelineFillResult,
    TimelineFillService,
)
from src.settings import Settings
from src.utils.cancellation import CancelToken


def _chapters(count: int) -> list[Chapter]:
    return [Chapter(number=n, summary=f"Summary {n}") for n in range(1, count + 1)]


class _Recorder:
    def __init__(self, queries, plan_error=None, fail_chapters=()):
        self.queries = queries
        self.plan_error = plan_error
        self.fail_chapters = set(fail_chapters)
        self.asked: list[tuple] = []

    async def plan(self, chapters, user_input, recent_entries):
        if self.plan_error:
            raise self.plan_error
        return self.queries

    async def query_chapter(self, number, question):
        self.asked.append((number, question))
        if number in self.fail_chapters:
            raise RuntimeError("offline")
        return f" answer {number} "

    async def query_chapters(self, start, end, question):
        self.asked.append((start, end, question))
        return f"answer {start}-{end}"


def _service(recorder, settings=None) -> TimelineFillService:
    return TimelineFillService(
        settings or Settings(), recorder.plan, recorder.query_chapter, recorder.query_chapters
    )


class TestFill:
    @pytest.mark.asyncio
    async def test_answers_single_and_range_queries(self):
        recorder = _Recorder(
            [
                TimelineQuery(question="Who?", start_chapter=2),
                TimelineQuery(question="When?", start_chapter=5, end_chapter=1),
            ]
        )

        result = await _service(recorder, Settings(agentic_max_chapter_range=3)).fill(
            "I wait.", [], _chapters(6)
        )

        assert recorder.asked == [(2, "Who?"), (1, 3, "When?")]
        assert result.answers == (
            TimelineAnswer("Who?", 2, 2, "answer 2"),
            TimelineAnswer("When?", 1, 3, "answer 1-3"),
        )

    @pytest.mark.asyncio
    async def test_failed_query_is_skipped(self):
        recorder = _Recorder(
            [
                TimelineQuery(question="A", start_chapter=1),
                TimelineQuery(question="B", start_chapter=2),
            ],
            fail_chapters={1},
        )

        result = await _service(recorder).fill("x", [], _chapters(3))

        assert [a.question for a in result.answers] == ["B"]

    @pytest.mark.asyncio
    async def test_failed_plan_gives_empty_result(self):
        recorder = _Recorder([], plan_error=RuntimeError("planner offline"))
        result = await _service(recorder).fill("x", [], _chapters(3))
        assert result == TimelineFillResult()

    @pytest.mark.asyncio
    async def test_no_chapters_skips_planning(self):
        recorder = _Recorder([], plan_error=AssertionError("should not plan"))
        assert await _service(recorder).fill("x", [], []) == TimelineFillResult()

    @pytest.mark.asyncio
    async def test_cancellation_stops_between_queries(self):
        token = CancelToken()
        recorder = _Recorder([TimelineQuery(question=q, start_chapter=1) for q in "ABC"])
        original = recorder.query_chapter

        async def cancelling_query(number, question):
            token.cancel()
            return await original(number, question)

        recorder.query_chapter = cancelling_query

        result = await _service(recorder).fill("x", [], _chapters(2), cancel_token=token)

        assert [a.question for a in result.answers] == ["A"]


class TestFormatForPrompt:
    def test_empty(self):
        assert TimelineFillResult().format_for_prompt() == ""

    def test_spans(self):
        result = TimelineFillResult(
            answers=(TimelineAnswer("Who?", 2, 2, "Ren"), TimelineAnswer("Why?", 1, 3, "Storm"))
        )
        assert result.format_for_prompt() == (
            "<story_history>\n"
            "Q (Chapter 2): Who?\nA: Ren\n\n"
            "Q (Chapters 1-3): Why?\nA: Storm\n"
            "</story_history>"
        )
