"""Agentic retrieval - a tool-calling loop over past chapters and lore.

The model is given five tools and iterates until it calls
``finish_retrieval``, hits the iteration cap, or twice in a row answers
without calling a tool. Failures never escape: the caller gets whatever
context was gathered so far, possibly none.
"""

import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from src.memory.story_state import Chapter, LorebookEntry, StoryEntry
from src.settings import Settings
from src.utils.cancellation import CancelToken, is_cancelled
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error
from src.utils.llm_client import AssistantTurn, ToolCall

logger = logging.getLogger(__name__)

QueryChapterFn = Callable[[int, str], Awaitable[str]]
QueryChaptersFn = Callable[[int, int, str], Awaitable[str]]
ModelTurnFn = Callable[
    [list[dict[str, Any]], list[dict[str, Any]], CancelToken | None], Awaitable[AssistantTurn]
]

NUDGE_MESSAGE = (
    "Please use the available tools to gather relevant context, "
    "or call finish_retrieval when you are done."
)

# Consecutive tool-less model turns that end the loop
_MAX_TOOLLESS_TURNS = 2

# Summary characters shown per chapter by list_chapters
_CHAPTER_PREVIEW_CHARS = 300
_ENTRY_PREVIEW_CHARS = 200

TerminationReason = Literal["finished", "max_iterations", "no_tool_calls", "error", "cancelled"]

RETRIEVAL_TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "list_chapters",
            "description": "List all past chapters with their title, summary, characters and locations.",
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    },
    {
        "type": "function",
        "function": {
            "name": "query_chapter",
            "description": "Ask a specific question about one chapter's full text.",
            "parameters": {
                "type": "object",
                "properties": {
                    "chapter_number": {"type": "integer", "description": "Chapter to query"},
                    "question": {"type": "string", "description": "What you need to know"},
                },
                "required": ["chapter_number", "question"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "query_chapters",
            "description": "Ask one question across a short range of consecutive chapters (at most 3).",
            "parameters": {
                "type": "object",
                "properties": {
                    "start_chapter": {"type": "integer", "description": "First chapter"},
                    "end_chapter": {"type": "integer", "description": "Last chapter"},
                    "question": {"type": "string", "description": "What you need to know"},
                },
                "required": ["start_chapter", "end_chapter", "question"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_entries",
            "description": "List lorebook entries, optionally filtered by type.",
            "parameters": {
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["character", "location", "item", "faction", "concept", "event"],
                        "description": "Only list entries of this type",
                    }
                },
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "finish_retrieval",
            "description": "Finish and hand the author a summary of the relevant facts.",
            "parameters": {
                "type": "object",
                "properties": {
                    "summary": {"type": "string", "description": "Relevant facts for the next passage"}
                },
                "required": ["summary"],
            },
        },
    },
]


class LoopState(Enum):
    """States of the retrieval loop."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETE = "complete"


@dataclass(frozen=True)
class AgenticRetrievalContext:
    """Inputs for one retrieval session."""

    user_input: str
    recent_entries: Sequence[StoryEntry] = ()
    chapters: Sequence[Chapter] = ()
    entries: Sequence[LorebookEntry] = ()


@dataclass(frozen=True)
class AgenticRetrievalResult:
    """Outcome of one retrieval session.

    Attributes:
        context: Summary handed back by the model, or the answers gathered so far.
        queried_chapters: Chapters queried, deduplicated, in first-query order.
        iterations: Model turns taken.
        session_id: Identifier for log correlation.
        termination: Why the loop stopped.
    """

    context: str
    queried_chapters: tuple[int, ...] = ()
    iterations: int = 0
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    termination: TerminationReason = "finished"

    def format_for_prompt(self) -> str:
        """Wrap the context for injection into the narrative prompt."""
        if not self.context.strip():
            return ""
        return (
            "<retrieved_context>\n"
            "## From Earlier in the Story\n"
            f"{self.context.strip()}\n"
            "</retrieved_context>"
        )


class _Session:
    """Mutable bookkeeping for one run; never exposed to callers."""

    def __init__(self) -> None:
        self.session_id = str(uuid.uuid4())
        self.queried: list[int] = []
        self.answers: list[str] = []
        self.summary: str | None = None

    def mark_queried(self, numbers: Sequence[int]) -> None:
        for number in numbers:
            if number not in self.queried:
                self.queried.append(number)

    def accumulated_context(self) -> str:
        if self.summary is not None:
            return self.summary
        return "\n\n".join(self.answers)


def _coerce_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class AgenticRetrievalLoop:
    """Drives the retrieval model through the tool surface."""

    def __init__(self, settings: Settings, model_turn: ModelTurnFn, system_prompt: str) -> None:
        """Initialize the loop.

        Args:
            settings: Engine settings (iteration cap, chapter range).
            model_turn: Runs one model turn given messages, tools and a cancel token.
            system_prompt: System prompt for the retrieval model.
        """
        self.settings = settings
        self.model_turn = model_turn
        self.system_prompt = system_prompt

    def _initial_prompt(self, context: AgenticRetrievalContext) -> str:
        recent = "\n\n".join(
            f"[{e.type.upper()}] {e.content}" for e in context.recent_entries if e.type != "system"
        )
        return (
            f"The story has {len(context.chapters)} past chapters and "
            f"{len(context.entries)} lorebook entries.\n\n"
            f"RECENT STORY:\n{recent or '(none)'}\n\n"
            f"READER ACTION:\n{context.user_input}\n\n"
            "Gather what the next passage needs from earlier chapters."
        )

    async def run_retrieval(
        self,
        context: AgenticRetrievalContext,
        query_chapter: QueryChapterFn,
        query_chapters: QueryChaptersFn,
        cancel_token: CancelToken | None = None,
    ) -> AgenticRetrievalResult:
        """Run the loop until a terminal transition.

        Args:
            context: User input, recent entries, chapters and lorebook entries.
            query_chapter: Answers a question about one chapter.
            query_chapters: Answers a question about a chapter range.
            cancel_token: Checked before every iteration.

        Returns:
            The gathered context; never raises for model or tool failures.
        """
        session = _Session()
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self._initial_prompt(context)},
        ]
        max_iterations = self.settings.agentic_max_iterations
        state = LoopState.AWAITING_MODEL
        iterations = 0
        toolless_turns = 0
        termination: TerminationReason = "max_iterations"

        logger.info(
            "Agentic retrieval %s started (chapters=%d, max_iterations=%d)",
            session.session_id,
            len(context.chapters),
            max_iterations,
        )

        while state is not LoopState.COMPLETE:
            if is_cancelled(cancel_token):
                termination = "cancelled"
                break
            if iterations >= max_iterations:
                logger.info("Agentic retrieval hit iteration cap (%d)", max_iterations)
                termination = "max_iterations"
                break

            iterations += 1
            try:
                turn = await self.model_turn(messages, RETRIEVAL_TOOLS, cancel_token)
            except GenerationCancelledError:
                termination = "cancelled"
                break
            except Exception as e:
                logger.warning(
                    "Agentic retrieval model call failed (non-fatal): %s",
                    summarize_llm_error(e),
                    exc_info=True,
                )
                termination = "error"
                break

            if not turn.tool_calls:
                toolless_turns += 1
                messages.append({"role": "assistant", "content": turn.content})
                if toolless_turns >= _MAX_TOOLLESS_TURNS:
                    logger.info("Agentic retrieval ended after %d turns without tools", toolless_turns)
                    termination = "no_tool_calls"
                    break
                messages.append({"role": "user", "content": NUDGE_MESSAGE})
                continue

            toolless_turns = 0
            state = LoopState.EXECUTING_TOOLS
            messages.append(turn.to_message())
            try:
                for call in turn.tool_calls:
                    content = await self._execute_tool(
                        call, context, session, query_chapter, query_chapters
                    )
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": call.id,
                            "name": call.name,
                            "content": content,
                        }
                    )
            except GenerationCancelledError:
                logger.info("Agentic retrieval cancelled during a chapter query")
                termination = "cancelled"
                break
            if session.summary is not None:
                state = LoopState.COMPLETE
                termination = "finished"
            else:
                state = LoopState.AWAITING_MODEL

        result = AgenticRetrievalResult(
            context=session.accumulated_context(),
            queried_chapters=tuple(session.queried),
            iterations=iterations,
            session_id=session.session_id,
            termination=termination,
        )
        logger.info(
            "Agentic retrieval %s complete: %s after %d iteration(s), chapters=%s, context=%d chars",
            session.session_id,
            termination,
            iterations,
            list(result.queried_chapters),
            len(result.context),
        )
        return result

    async def _execute_tool(
        self,
        call: ToolCall,
        context: AgenticRetrievalContext,
        session: _Session,
        query_chapter: QueryChapterFn,
        query_chapters: QueryChaptersFn,
    ) -> str:
        """Execute one tool call and return its JSON result text."""
        args = call.arguments
        logger.debug("Executing retrieval tool %s(%s)", call.name, args)
        match call.name:
            case "list_chapters":
                return json.dumps(
                    [
                        {
                            "number": c.number,
                            "title": c.title,
                            "summary": c.summary[:_CHAPTER_PREVIEW_CHARS],
                            "characters": c.characters,
                            "locations": c.locations,
                            "keywords": c.keywords,
                        }
                        for c in context.chapters
                    ]
                )
            case "query_chapter":
                return await self._query_chapter(args, context, session, query_chapter)
            case "query_chapters":
                return await self._query_chapters(args, context, session, query_chapters)
            case "list_entries":
                type_filter = args.get("type")
                return json.dumps(
                    [
                        {
                            "name": e.name,
                            "type": e.type,
                            "description": e.description[:_ENTRY_PREVIEW_CHARS],
                        }
                        for e in context.entries
                        if not type_filter or e.type == type_filter
                    ]
                )
            case "finish_retrieval":
                session.summary = str(args.get("summary") or "")
                return json.dumps({"status": "complete"})
            case _:
                logger.warning("Model called unknown retrieval tool %r", call.name)
                return json.dumps({"error": f"Unknown tool: {call.name}"})

    async def _query_chapter(
        self,
        args: dict[str, Any],
        context: AgenticRetrievalContext,
        session: _Session,
        query_chapter: QueryChapterFn,
    ) -> str:
        number = _coerce_int(args.get("chapter_number"))
        question = str(args.get("question") or "").strip()
        chapter = next((c for c in context.chapters if c.number == number), None)
        if chapter is None:
            return json.dumps({"error": f"Chapter {args.get('chapter_number')} not found"})
        if not question:
            return json.dumps({"error": "A question is required"})

        session.mark_queried([chapter.number])
        try:
            answer = await query_chapter(chapter.number, question)
        except GenerationCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Chapter %d query failed, using summary: %s", chapter.number, summarize_llm_error(e)
            )
            answer = chapter.summary
        session.answers.append(f"Chapter {chapter.number}: {answer}")
        return json.dumps({"chapter": chapter.number, "answer": answer})

    async def _query_chapters(
        self,
        args: dict[str, Any],
        context: AgenticRetrievalContext,
        session: _Session,
        query_chapters: QueryChaptersFn,
    ) -> str:
        start = _coerce_int(args.get("start_chapter"))
        end = _coerce_int(args.get("end_chapter"))
        question = str(args.get("question") or "").strip()
        if start is None or end is None:
            return json.dumps({"error": "start_chapter and end_chapter must be integers"})
        if not question:
            return json.dumps({"error": "A question is required"})
        if end < start:
            start, end = end, start
        end = min(end, start + self.settings.agentic_max_chapter_range - 1)

        in_range = [c for c in context.chapters if start <= c.number <= end]
        if not in_range:
            return json.dumps({"error": f"Chapters {start}-{end} not found"})

        session.mark_queried([c.number for c in in_range])
        try:
            answer = await query_chapters(start, end, question)
        except GenerationCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Chapters %d-%d query failed, using summaries: %s",
                start,
                end,
                summarize_llm_error(e),
            )
            answer = "\n".join(f"Chapter {c.number}: {c.summary}" for c in in_range)
        session.answers.append(f"Chapters {start}-{end}: {answer}")
        return json.dumps({"start_chapter": start, "end_chapter": end, "answer": answer})
