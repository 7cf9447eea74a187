"""Tests for the Settings dataclass, loading and validation."""

import json
from unittest.mock import patch

import pytest

from src.settings import AGENT_ROLES, Settings
from src.settings._settings import _merge_with_defaults


class TestSettingsDefaults:
    """Tests for default values and per-role lookups."""

    def test_defaults_validate(self):
        """Default settings pass validation without changes."""
        assert Settings().validate() is False

    def test_every_role_has_model_and_temperature(self):
        """Every agent role is present in both per-role dicts."""
        settings = Settings()
        assert set(settings.agent_models) == set(AGENT_ROLES)
        assert set(settings.agent_temperatures) == set(AGENT_ROLES)

    def test_empty_model_falls_back_to_default(self):
        """An empty per-role model means the default model."""
        settings = Settings(default_model="base:7b")
        assert settings.get_model_for_agent("narrator") == "base:7b"

    def test_role_model_override(self):
        """A per-role model overrides the default."""
        settings = Settings()
        settings.agent_models["classifier"] = "small:1b"
        assert settings.get_model_for_agent("classifier") == "small:1b"

    def test_unknown_role_raises(self):
        """Unknown roles are rejected."""
        with pytest.raises(ValueError, match="Unknown agent role"):
            Settings().get_model_for_agent("painter")
        with pytest.raises(ValueError, match="Unknown agent role"):
            Settings().get_temperature_for_agent("painter")


class TestSettingsValidation:
    """Tests for validate()."""

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"log_level": "LOUD"}, "log_level"),
            ({"ollama_url": "localhost:11434"}, "ollama_url"),
            ({"ollama_timeout": 0}, "ollama_timeout"),
            ({"stream_inter_chunk_timeout": 100, "stream_wall_clock_timeout": 50}, "wall_clock"),
            ({"llm_max_retries": 0}, "llm_max_retries"),
            ({"llm_retry_backoff": 0.5}, "llm_retry_backoff"),
            ({"max_empty_response_retries": 0}, "max_empty_response_retries"),
            ({"retrieval_token_budget": -1}, "retrieval_token_budget"),
            ({"retrieval_activation_threshold": 1.5}, "retrieval_activation_threshold"),
            ({"retrieval_activation_max_age": -1}, "retrieval_activation_max_age"),
            ({"agentic_max_iterations": 0}, "agentic_max_iterations"),
            ({"agentic_max_chapter_range": 11}, "agentic_max_chapter_range"),
            ({"timeline_fill_max_queries": 0}, "timeline_fill_max_queries"),
        ],
    )
    def test_invalid_values_raise(self, overrides, message):
        """Out-of-range values raise ValueError naming the field."""
        with pytest.raises(ValueError, match=message):
            Settings(**overrides).validate()

    def test_temperature_out_of_range(self):
        """Temperatures must be within 0.0-2.0."""
        settings = Settings()
        settings.agent_temperatures["narrator"] = 2.5
        with pytest.raises(ValueError, match="narrator"):
            settings.validate()

    def test_unknown_role_in_dict(self):
        """Per-role dicts may only name known roles."""
        settings = Settings()
        settings.agent_models["painter"] = "x"
        with pytest.raises(ValueError, match="painter"):
            settings.validate()

    def test_translation_without_language_is_disabled(self):
        """Enabling translation without a language turns it off."""
        settings = Settings(translation_enabled=True, translation_target_language=" ")
        assert settings.validate() is True
        assert settings.translation_enabled is False
        assert settings.should_translate() is False

    def test_translation_with_language(self):
        """Translation with a language stays enabled."""
        settings = Settings(translation_enabled=True, translation_target_language="German")
        assert settings.validate() is False
        assert settings.should_translate() is True


class TestSettingsLoad:
    """Tests for Settings.load()."""

    def test_missing_file_uses_defaults(self, tmp_path):
        """Without a settings file, defaults are used."""
        with patch("src.settings._settings.SETTINGS_FILE", tmp_path / "settings.json"):
            settings = Settings.load(use_cache=False)
        assert settings == Settings()

    def test_partial_file_is_merged(self, tmp_path):
        """Missing keys get defaults, obsolete keys are dropped."""
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps(
                {
                    "retrieval_token_budget": 800,
                    "obsolete_option": True,
                    "agent_models": {"narrator": "big:70b", "painter": "x"},
                }
            )
        )
        with patch("src.settings._settings.SETTINGS_FILE", path):
            settings = Settings.load(use_cache=False)
        assert settings.retrieval_token_budget == 800
        assert settings.agent_models["narrator"] == "big:70b"
        assert "painter" not in settings.agent_models
        assert settings.agent_models["classifier"] == ""

    def test_file_is_never_rewritten(self, tmp_path):
        """Loading leaves the file untouched."""
        path = tmp_path / "settings.json"
        path.write_text('{"obsolete_option": 1}')
        with patch("src.settings._settings.SETTINGS_FILE", path):
            Settings.load(use_cache=False)
        assert path.read_text() == '{"obsolete_option": 1}'

    def test_invalid_json_falls_back_to_defaults(self, tmp_path):
        """Corrupt JSON is logged and defaults are used."""
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        with patch("src.settings._settings.SETTINGS_FILE", path):
            settings = Settings.load(use_cache=False)
        assert settings.retrieval_token_budget == Settings().retrieval_token_budget

    def test_wrong_type_raises_value_error(self, tmp_path):
        """A value of the wrong type surfaces as ValueError."""
        path = tmp_path / "settings.json"
        path.write_text('{"ollama_timeout": "fast"}')
        with patch("src.settings._settings.SETTINGS_FILE", path):
            with pytest.raises(ValueError):
                Settings.load(use_cache=False)

    def test_cache(self, tmp_path):
        """load() caches until clear_cache()."""
        with patch("src.settings._settings.SETTINGS_FILE", tmp_path / "settings.json"):
            first = Settings.load()
            assert Settings.load() is first
            Settings.clear_cache()
            assert Settings.load() is not first


class TestMergeWithDefaults:
    """Tests for the in-place defaults merge used by load()."""

    def test_merges_in_place(self):
        """Missing keys are filled and obsolete keys dropped on the dict itself."""
        data = {"retrieval_token_budget": 800, "obsolete_option": True}
        assert _merge_with_defaults(data, Settings) is None
        assert data["retrieval_token_budget"] == 800
        assert "obsolete_option" not in data
        assert data["ollama_url"] == Settings().ollama_url

    def test_non_dict_role_field_is_reset(self):
        """A per-role field that is not a dict is replaced by its default."""
        data = {"agent_temperatures": "warm"}
        _merge_with_defaults(data, Settings)
        assert data["agent_temperatures"] == Settings().agent_temperatures
