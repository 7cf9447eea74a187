"""Main Settings dataclass for the narrative engine.

Settings are read from settings.json when present; anything missing falls
back to the defaults declared here. The engine never writes the file back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar

from src.settings import _validation as _validation_mod
from src.settings._paths import SETTINGS_FILE

logger = logging.getLogger(__name__)

# Dict fields with fixed expected sub-keys; merged on load so that
# new sub-keys get defaults and removed ones are cleaned up.
_STRUCTURED_DICT_FIELDS = ("agent_models", "agent_temperatures")


def _merge_with_defaults(data: dict[str, Any], settings_cls: type[Settings]) -> None:
    """Merge loaded JSON data with dataclass defaults.

    - Adds missing top-level keys with their default values
    - Removes top-level keys that no longer exist in the dataclass
    - For dict fields with fixed sub-keys, adds missing and removes obsolete sub-keys

    Modifies *data* in place.
    """
    default_dict = asdict(settings_cls())
    known_fields = {f.name for f in fields(settings_cls)}

    for key in list(data):
        if key not in known_fields:
            logger.info("Ignoring obsolete setting: %s", key)
            del data[key]

    for key in known_fields:
        if key not in data:
            data[key] = default_dict[key]

    for field_name in _STRUCTURED_DICT_FIELDS:
        default_sub = default_dict[field_name]
        current_sub = data[field_name]
        if not isinstance(current_sub, dict):
            logger.warning(
                "Resetting %s to default (expected dict, got %s)",
                field_name,
                type(current_sub).__name__,
            )
            data[field_name] = default_sub
            continue
        for sub_key in list(current_sub):
            if sub_key not in default_sub:
                logger.info("Ignoring obsolete %s[%s]", field_name, sub_key)
                del current_sub[sub_key]
        for sub_key, sub_value in default_sub.items():
            if sub_key not in current_sub:
                current_sub[sub_key] = sub_value


@dataclass
class Settings:
    """Engine settings, optionally loaded from JSON."""

    # General
    ollama_url: str = "http://localhost:11434"
    ollama_timeout: float = 120.0
    log_level: str = "INFO"

    # Model used by any role whose agent_models entry is empty
    default_model: str = "qwen3:8b"

    # Per-agent model overrides ("" means use default_model)
    agent_models: dict[str, str] = field(
        default_factory=lambda: {
            "narrator": "",
            "classifier": "",
            "suggestion": "",
            "translator": "",
            "lore_selector": "",
            "retrieval": "",
            "chapter_query": "",
            "timeline": "",
        }
    )

    # Agent temperatures
    agent_temperatures: dict[str, float] = field(
        default_factory=lambda: {
            "narrator": 0.9,
            "classifier": 0.1,
            "suggestion": 0.8,
            "translator": 0.2,
            "lore_selector": 0.1,
            "retrieval": 0.2,
            "chapter_query": 0.2,
            "timeline": 0.3,
        }
    )

    # Streaming watchdogs
    stream_inter_chunk_timeout: float = 60.0  # Max silence between chunks
    stream_wall_clock_timeout: float = 600.0  # Max total stream duration

    # Structured-output retries
    llm_max_retries: int = 3
    llm_retry_delay: float = 1.0
    llm_retry_backoff: float = 2.0

    # Tiered lorebook retrieval
    retrieval_enabled: bool = True
    retrieval_max_entries: int = 12  # Per-call cap across all tiers
    retrieval_tier_max_entries: int = 8  # No single tier may exceed this
    retrieval_token_budget: int = 1500
    retrieval_activation_threshold: float = 0.3
    retrieval_activation_max_age: int = 10  # Activations older than this are pruned
    retrieval_recent_entries: int = 5
    retrieval_llm_selection_enabled: bool = False
    retrieval_max_tier3_entries: int = 5
    retrieval_max_words_per_entry: int = 0  # 0 disables truncation

    # Agentic retrieval
    agentic_retrieval_enabled: bool = True
    agentic_max_iterations: int = 10
    agentic_chapter_threshold: int = 30  # Use agentic when chapters exceed this
    agentic_max_chapter_range: int = 3

    # Timeline fill
    timeline_fill_enabled: bool = True
    timeline_fill_max_queries: int = 5

    # Generation pipeline
    max_empty_response_retries: int = 3
    narrative_history_entries: int = 20
    classification_history_entries: int = 6
    disable_suggestions: bool = False

    # Translation
    translation_enabled: bool = False
    translation_target_language: str = ""
    translate_narration: bool = True
    translate_world_state: bool = True
    translate_suggestions: bool = True

    def validate(self) -> bool:
        """Validate all settings fields. Delegates to _validation module.

        Returns:
            True if any settings were mutated during validation, False otherwise.

        Raises:
            ValueError: If any field contains an invalid value.
        """
        return _validation_mod.validate(self)

    # Class-level cache for settings (speeds up repeated load() calls)
    _cached_instance: ClassVar[Settings | None] = None

    @classmethod
    def load(cls, use_cache: bool = True) -> Settings:
        """Load settings from JSON file, or create defaults.

        Missing keys get default values and unknown keys are dropped. The
        file is never rewritten.

        Args:
            use_cache: If True, return cached instance if available. Set to False
                to force reload from disk (useful in tests).

        Returns:
            Settings instance.

        Raises:
            ValueError: If a stored value has the wrong type or is out of range.
        """
        if use_cache and cls._cached_instance is not None:
            return cls._cached_instance

        data: dict[str, Any] = {}
        if SETTINGS_FILE.exists():
            try:
                with open(SETTINGS_FILE) as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data = loaded
                else:
                    logger.error(
                        "Corrupted settings file (expected JSON object, got %s)",
                        type(loaded).__name__,
                    )
            except json.JSONDecodeError as e:
                logger.error("Corrupted settings file (invalid JSON): %s", e)
            except OSError as e:
                logger.error("Cannot read settings file (may be locked or inaccessible): %s", e)

        logger.info("Settings load: keys_read=%d", len(data))
        _merge_with_defaults(data, cls)

        # TypeError surfaces when a stored value has the wrong type and a
        # range comparison fails inside validate().
        try:
            settings = cls(**data)
            settings.validate()
        except TypeError as e:
            raise ValueError(f"A setting has an invalid type: {e}") from e

        cls._cached_instance = settings
        return settings

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the cached settings instance.

        Use this in tests that need to verify settings loading behavior.
        """
        cls._cached_instance = None

    def get_model_for_agent(self, agent_role: str) -> str:
        """Get the model name configured for an agent role.

        Raises:
            ValueError: If agent_role is not configured in agent_models.
        """
        if agent_role not in self.agent_models:
            raise ValueError(
                f"Unknown agent role '{agent_role}' - must be one of: "
                f"{sorted(self.agent_models.keys())}"
            )
        return self.agent_models[agent_role] or self.default_model

    def get_temperature_for_agent(self, agent_role: str) -> float:
        """Get temperature setting for an agent.

        Raises:
            ValueError: If agent_role is not configured in agent_temperatures.
        """
        if agent_role not in self.agent_temperatures:
            raise ValueError(
                f"Unknown agent role '{agent_role}' - must be one of: "
                f"{sorted(self.agent_temperatures.keys())}"
            )
        return float(self.agent_temperatures[agent_role])

    def should_translate(self) -> bool:
        """Whether translation is enabled and has a target language."""
        return self.translation_enabled and bool(self.translation_target_language.strip())
