"""Path constants for narrative engine settings."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SETTINGS_FILE = Path(__file__).parent.parent / "settings.json"

# Go up from src/settings to src/, then up to project root, then into logs/
LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

__all__ = [
    "LOGS_DIR",
    "SETTINGS_FILE",
    "logger",
]
