"""Centralized exception hierarchy for the narrative engine.

Exception Hierarchy:

    NarrativeEngineError (base for all engine errors)
    ├── LLMError (LLM/Ollama related errors)
    │   ├── LLMConnectionError (connection failures)
    │   └── LLMGenerationError (generation failures after retries)
    ├── RetrievalError (lorebook or chapter retrieval failures)
    ├── ClassificationError (world-state extraction failures)
    ├── TranslationError (translation failures)
    ├── SuggestionError (suggestion / action choice failures)
    ├── GenerationCancelledError (user cancelled generation)
    └── TurnInProgressError (second turn started while one is in flight)

Stream watchdog timeouts raise ``StreamTimeoutError`` from
``src.utils.streaming``; it subclasses the builtin ``TimeoutError``.

Usage:
    from src.utils.exceptions import LLMError, LLMConnectionError

    try:
        await agent.classify(...)
    except LLMConnectionError:
        logger.error("Failed to connect to Ollama")
    except LLMError:
        logger.error("LLM operation failed")
"""

import logging

logger = logging.getLogger(__name__)


def summarize_llm_error(error: BaseException, max_length: int = 300) -> str:
    """Create a concise summary of an LLM-related exception.

    Ollama response errors and pydantic validation failures can carry the
    whole raw model output in their message. This keeps the actionable part
    for log lines and user-visible system entries.

    Args:
        error: The exception to summarize.
        max_length: Maximum length of the summary string.

    Returns:
        A concise error summary.
    """
    msg = str(error) or type(error).__name__

    if len(msg) <= max_length:
        return msg

    # Pydantic ValidationError exposes error_count(); keep the first line
    error_count = getattr(error, "error_count", None)
    if callable(error_count):
        first_line = msg.splitlines()[0]
        return f"{type(error).__name__}: {error_count()} validation error(s) ({first_line[:150]})"

    return f"{msg[:max_length]}... [{len(msg) - max_length} chars truncated]"


class NarrativeEngineError(Exception):
    """Base exception for all narrative engine errors.

    All custom exceptions should inherit from this class to allow
    catching all engine-specific errors with a single except clause.
    """

    pass


class LLMError(NarrativeEngineError):
    """Base exception for LLM-related errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to Ollama.

    This typically indicates the Ollama server is not running or
    the connection was refused.
    """

    pass


class LLMGenerationError(LLMError):
    """Raised when generation fails after retries.

    This indicates the LLM request failed despite multiple retry
    attempts. Check logs for specific failure reasons.
    """

    pass


class RetrievalError(NarrativeEngineError):
    """Raised when lorebook or chapter retrieval fails.

    Retrieval is always optional for a turn, so callers degrade to
    "no extra context" when they catch this.
    """

    pass


class ClassificationError(NarrativeEngineError):
    """Raised when world-state classification of a narration fails.

    Attributes:
        narrative_length: Length of the narration that failed to classify.
    """

    def __init__(self, message: str, narrative_length: int = 0):
        """Initialize ClassificationError.

        Args:
            message: Human-readable error message.
            narrative_length: Length of the narration being classified.
        """
        super().__init__(message)
        self.narrative_length = narrative_length


class TranslationError(NarrativeEngineError):
    """Raised when translating generated content fails."""

    pass


class SuggestionError(NarrativeEngineError):
    """Raised when suggestions or action choices cannot be generated."""

    pass


class GenerationCancelledError(NarrativeEngineError):
    """Raised when the user cancels an in-flight generation.

    Inside the pipeline this is converted into an ``aborted`` event and
    never escapes as an error.
    """

    pass


class TurnInProgressError(NarrativeEngineError):
    """Raised when a turn is started while another is in flight for the story.

    Attributes:
        story_id: The story that already has a turn running.
    """

    def __init__(self, message: str, story_id: str | None = None):
        """Initialize TurnInProgressError.

        Args:
            message: Human-readable error message.
            story_id: The story that already has a turn running.
        """
        super().__init__(message)
        self.story_id = story_id
