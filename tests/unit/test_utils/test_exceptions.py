"""Unit tests for custom exceptions in exceptions.py."""

from pydantic import BaseModel, ValidationError

from src.utils.exceptions import (
    ClassificationError,
    LLMConnectionError,
    LLMError,
    NarrativeEngineError,
    TurnInProgressError,
    summarize_llm_error,
)


class _Strict(BaseModel):
    count: int


class TestHierarchy:
    """Tests for the exception hierarchy."""

    def test_llm_errors_share_a_base(self) -> None:
        """LLM failures can be caught as LLMError or as the engine base."""
        error = LLMConnectionError("refused")
        assert isinstance(error, LLMError)
        assert isinstance(error, NarrativeEngineError)

    def test_classification_error_keeps_narrative_length(self) -> None:
        error = ClassificationError("bad json", narrative_length=42)
        assert str(error) == "bad json"
        assert error.narrative_length == 42

    def test_turn_in_progress_defaults(self) -> None:
        error = TurnInProgressError("busy")
        assert str(error) == "busy"
        assert error.story_id is None


class TestSummarizeLLMError:
    """Tests for summarize_llm_error."""

    def test_short_message_unchanged(self) -> None:
        assert summarize_llm_error(ValueError("model not found")) == "model not found"

    def test_empty_message_uses_class_name(self) -> None:
        assert summarize_llm_error(TimeoutError()) == "TimeoutError"

    def test_long_message_truncated(self) -> None:
        summary = summarize_llm_error(RuntimeError("x" * 400), max_length=100)
        assert summary == "x" * 100 + "... [300 chars truncated]"

    def test_validation_error_summarized_by_count(self) -> None:
        """Pydantic errors carrying raw model output collapse to their first line."""
        try:
            _Strict.model_validate({"count": "y" * 400})
        except ValidationError as e:
            summary = summarize_llm_error(e, max_length=50)
        assert summary.startswith("ValidationError: 1 validation error(s) (")
        assert len(summary) < 250
