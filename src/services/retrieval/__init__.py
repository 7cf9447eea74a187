"""Context retrieval for the generation pipeline.

- entry_retrieval: tiered lorebook selection with a shared budget
- agentic: tool-calling loop over past chapters
- timeline_fill: planned chapter questions for shorter stories
"""

from .agentic import (
    RETRIEVAL_TOOLS,
    AgenticRetrievalContext,
    AgenticRetrievalLoop,
    AgenticRetrievalResult,
    LoopState,
)
from .entry_retrieval import RetrievalResult, TieredRetrievalEngine
from .timeline_fill import TimelineFillResult, TimelineFillService

__all__ = [
    "RETRIEVAL_TOOLS",
    "AgenticRetrievalContext",
    "AgenticRetrievalLoop",
    "AgenticRetrievalResult",
    "LoopState",
    "RetrievalResult",
    "TieredRetrievalEngine",
    "TimelineFillResult",
    "TimelineFillService",
]
