"""Settings package for the narrative engine.

All functionality is in focused modules:
- _paths.py: Path constants for the settings file and log directory
- _types.py: TypedDicts and role configurations
- _validation.py: Settings validation functions
- _settings.py: Main Settings dataclass
"""

from src.settings._paths import LOGS_DIR, SETTINGS_FILE
from src.settings._settings import Settings
from src.settings._types import AGENT_ROLES, LOG_LEVELS, AgentRoleInfo

__all__ = [
    "AGENT_ROLES",
    "LOGS_DIR",
    "LOG_LEVELS",
    "SETTINGS_FILE",
    "AgentRoleInfo",
    "Settings",
]
