"""Narrative engine agents."""

from .base import BaseAgent
from .chapter_query import ChapterQueryAgent
from .classifier import ClassifierAgent
from .lore_selector import LoreSelectorAgent
from .narrator import NarratorAgent
from .retrieval import RetrievalAgent
from .suggestions import SuggestionsAgent
from .timeline import TimelineAgent
from .translator import TranslatorAgent

__all__ = [
    "BaseAgent",
    "ChapterQueryAgent",
    "ClassifierAgent",
    "LoreSelectorAgent",
    "NarratorAgent",
    "RetrievalAgent",
    "SuggestionsAgent",
    "TimelineAgent",
    "TranslatorAgent",
]
