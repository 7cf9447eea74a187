"""Type definitions and constants for narrative engine settings."""

import logging
from typing import TypedDict

logger = logging.getLogger(__name__)


class AgentRoleInfo(TypedDict):
    """Type definition for agent role information."""

    name: str
    description: str


# Log level options accepted by setup_logging
LOG_LEVELS: dict[str, str] = {
    "DEBUG": "Debug",
    "INFO": "Info",
    "WARNING": "Warning",
    "ERROR": "Error",
}


# Agent role definitions
AGENT_ROLES: dict[str, AgentRoleInfo] = {
    "narrator": {
        "name": "Narrator",
        "description": "Streams the story continuation for each turn",
    },
    "classifier": {
        "name": "Classifier",
        "description": "Extracts world-state changes from narration",
    },
    "suggestion": {
        "name": "Suggestions",
        "description": "Proposes next actions and plot directions",
    },
    "translator": {
        "name": "Translator",
        "description": "Translates narration and follow-up content",
    },
    "lore_selector": {
        "name": "Lore Selector",
        "description": "Picks extra lorebook entries when keywords miss",
    },
    "retrieval": {
        "name": "Retrieval Agent",
        "description": "Tool-calling agent that searches past chapters",
    },
    "chapter_query": {
        "name": "Chapter Query",
        "description": "Answers questions about individual chapters",
    },
    "timeline": {
        "name": "Timeline Fill",
        "description": "Plans questions about story history",
    },
}
