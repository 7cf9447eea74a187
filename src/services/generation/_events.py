"""Events emitted by the generation pipeline.

The event set is closed: callers dispatch on the concrete class with
``match`` and must handle every variant.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from src.memory.generation_models import ClassificationResult

Phase = Literal["pre", "narrative", "classification", "translation", "post"]

PHASE_ORDER: tuple[Phase, ...] = ("pre", "narrative", "classification", "translation", "post")


@dataclass(frozen=True)
class PhaseStartEvent:
    """A phase is starting."""

    type: ClassVar[str] = "phase_start"
    phase: Phase


@dataclass(frozen=True)
class NarrativeChunkEvent:
    """A streamed content or reasoning delta from the narrative call."""

    type: ClassVar[str] = "narrative_chunk"
    content: str = ""
    reasoning: str = ""


@dataclass(frozen=True)
class PhaseCompleteEvent:
    """A phase finished; ``result`` is the phase-specific payload."""

    type: ClassVar[str] = "phase_complete"
    phase: Phase
    result: Any = None


@dataclass(frozen=True)
class ClassificationCompleteEvent:
    """The classifier produced a world-state delta for the caller to apply."""

    type: ClassVar[str] = "classification_complete"
    result: ClassificationResult


@dataclass(frozen=True)
class AbortedEvent:
    """The turn was cancelled; no further phases run."""

    type: ClassVar[str] = "aborted"
    phase: Phase


@dataclass(frozen=True)
class ErrorEvent:
    """A phase failed.

    Fatal errors end the turn and must be surfaced as retryable; non-fatal
    errors only mean an optional feature is missing from this turn.
    """

    type: ClassVar[str] = "error"
    phase: Phase
    error: str
    fatal: bool = False
    exception: BaseException | None = None


PipelineEvent = (
    PhaseStartEvent
    | NarrativeChunkEvent
    | PhaseCompleteEvent
    | ClassificationCompleteEvent
    | AbortedEvent
    | ErrorEvent
)
