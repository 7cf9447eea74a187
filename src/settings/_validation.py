"""Validation functions for Settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.settings._types import AGENT_ROLES, LOG_LEVELS

if TYPE_CHECKING:
    from src.settings._settings import Settings

logger = logging.getLogger(__name__)


def validate(settings: Settings) -> bool:
    """Validate all settings fields.

    Delegates to individual validation functions for each category of settings.

    Returns:
        True if any settings were mutated during validation, False otherwise.

    Raises:
        ValueError: If any field contains an invalid value.
    """
    _validate_log_level(settings)
    _validate_url(settings)
    _validate_agent_roles(settings)
    _validate_temperatures(settings)
    _validate_timeouts(settings)
    _validate_retry_configuration(settings)
    _validate_retrieval_budget(settings)
    _validate_agentic(settings)
    changed = _validate_translation(settings)
    return changed


def _validate_log_level(settings: Settings) -> None:
    """Validate log_level is a known logging level."""
    if settings.log_level not in LOG_LEVELS:
        raise ValueError(
            f"log_level must be one of {list(LOG_LEVELS.keys())}, got {settings.log_level}"
        )


def _validate_url(settings: Settings) -> None:
    """Validate the Ollama URL has an http(s) scheme."""
    if not settings.ollama_url.startswith(("http://", "https://")):
        raise ValueError(f"ollama_url must start with http:// or https://, got {settings.ollama_url}")


def _validate_agent_roles(settings: Settings) -> None:
    """Validate per-agent dicts only name known roles."""
    for field_name in ("agent_models", "agent_temperatures"):
        unknown = set(getattr(settings, field_name)) - set(AGENT_ROLES)
        if unknown:
            raise ValueError(f"Unknown agent role(s) in {field_name}: {sorted(unknown)}")


def _validate_temperatures(settings: Settings) -> None:
    """Validate agent temperatures are within the range Ollama accepts."""
    for role, temp in settings.agent_temperatures.items():
        if not 0.0 <= temp <= 2.0:
            raise ValueError(f"Temperature for {role} must be between 0.0 and 2.0, got {temp}")


def _validate_timeouts(settings: Settings) -> None:
    """Validate client and streaming timeouts."""
    if settings.ollama_timeout <= 0:
        raise ValueError(f"ollama_timeout must be positive, got {settings.ollama_timeout}")
    if settings.stream_inter_chunk_timeout <= 0:
        raise ValueError(
            f"stream_inter_chunk_timeout must be positive, got {settings.stream_inter_chunk_timeout}"
        )
    if settings.stream_wall_clock_timeout < settings.stream_inter_chunk_timeout:
        raise ValueError(
            "stream_wall_clock_timeout must be >= stream_inter_chunk_timeout "
            f"({settings.stream_wall_clock_timeout} < {settings.stream_inter_chunk_timeout})"
        )


def _validate_retry_configuration(settings: Settings) -> None:
    """Validate structured-output and empty-response retry settings."""
    if not 1 <= settings.llm_max_retries <= 10:
        raise ValueError(f"llm_max_retries must be between 1 and 10, got {settings.llm_max_retries}")
    if settings.llm_retry_delay < 0:
        raise ValueError(f"llm_retry_delay must be non-negative, got {settings.llm_retry_delay}")
    if settings.llm_retry_backoff < 1.0:
        raise ValueError(f"llm_retry_backoff must be >= 1.0, got {settings.llm_retry_backoff}")
    if not 1 <= settings.max_empty_response_retries <= 10:
        raise ValueError(
            "max_empty_response_retries must be between 1 and 10, "
            f"got {settings.max_empty_response_retries}"
        )


def _validate_retrieval_budget(settings: Settings) -> None:
    """Validate tiered retrieval caps and thresholds."""
    if settings.retrieval_max_entries < 0:
        raise ValueError(
            f"retrieval_max_entries must be non-negative, got {settings.retrieval_max_entries}"
        )
    if settings.retrieval_tier_max_entries < 0:
        raise ValueError(
            "retrieval_tier_max_entries must be non-negative, "
            f"got {settings.retrieval_tier_max_entries}"
        )
    if settings.retrieval_token_budget < 0:
        raise ValueError(
            f"retrieval_token_budget must be non-negative, got {settings.retrieval_token_budget}"
        )
    if not 0.0 <= settings.retrieval_activation_threshold <= 1.0:
        raise ValueError(
            "retrieval_activation_threshold must be between 0.0 and 1.0, "
            f"got {settings.retrieval_activation_threshold}"
        )
    if settings.retrieval_activation_max_age < 0:
        raise ValueError(
            "retrieval_activation_max_age must be non-negative, "
            f"got {settings.retrieval_activation_max_age}"
        )
    if settings.retrieval_recent_entries < 0:
        raise ValueError(
            f"retrieval_recent_entries must be non-negative, got {settings.retrieval_recent_entries}"
        )
    if settings.retrieval_max_tier3_entries < 0:
        raise ValueError(
            "retrieval_max_tier3_entries must be non-negative, "
            f"got {settings.retrieval_max_tier3_entries}"
        )
    if settings.retrieval_max_words_per_entry < 0:
        raise ValueError(
            "retrieval_max_words_per_entry must be non-negative, "
            f"got {settings.retrieval_max_words_per_entry}"
        )


def _validate_agentic(settings: Settings) -> None:
    """Validate agentic retrieval and timeline fill limits."""
    if settings.agentic_max_iterations < 1:
        raise ValueError(
            f"agentic_max_iterations must be at least 1, got {settings.agentic_max_iterations}"
        )
    if settings.agentic_chapter_threshold < 0:
        raise ValueError(
            "agentic_chapter_threshold must be non-negative, "
            f"got {settings.agentic_chapter_threshold}"
        )
    if not 1 <= settings.agentic_max_chapter_range <= 10:
        raise ValueError(
            "agentic_max_chapter_range must be between 1 and 10, "
            f"got {settings.agentic_max_chapter_range}"
        )
    if settings.timeline_fill_max_queries < 1:
        raise ValueError(
            f"timeline_fill_max_queries must be at least 1, got {settings.timeline_fill_max_queries}"
        )


def _validate_translation(settings: Settings) -> bool:
    """Validate translation settings.

    Enabling translation without a target language silently disables it.

    Returns:
        True if translation_enabled was turned off.
    """
    if settings.translation_enabled and not settings.translation_target_language.strip():
        logger.warning("translation_enabled is set but no target language; disabling translation")
        settings.translation_enabled = False
        return True
    return False
