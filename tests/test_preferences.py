"""
Tests for persisted user preferences and their validation.
"""

import pytest

from clarity.config import DEFAULT_PROMPTS
from clarity.errors import ConfigError
from clarity.preferences import Preferences


@pytest.fixture
def preferences(settings_store, settings):
    return Preferences(settings_store, settings)


class TestDefaults:
    def test_falls_back_to_environment(self, preferences):
        assert preferences.api_key() == "test-key"
        assert preferences.model() == "gemini-3-flash-preview"
        assert preferences.summary_interval() == 45
        assert preferences.language() == "zh"
        assert preferences.video_resolution() == "low"
        assert preferences.active_prompt() == DEFAULT_PROMPTS["zh"]

    def test_stored_values_win(self, preferences):
        preferences.set_api_key("  stored-key ")
        preferences.set_model("gemini-2.5-pro")

        assert preferences.api_key() == "stored-key"
        assert preferences.model() == "gemini-2.5-pro"


class TestValidation:
    @pytest.mark.parametrize("seconds", [10, 45, 3600])
    def test_interval_in_range(self, preferences, seconds):
        assert preferences.set_summary_interval(seconds) == seconds
        assert preferences.summary_interval() == seconds

    @pytest.mark.parametrize("seconds", [9, 0, 3601, "soon"])
    def test_interval_out_of_range(self, preferences, seconds):
        with pytest.raises(ConfigError):
            preferences.set_summary_interval(seconds)
        assert preferences.summary_interval() == 45

    def test_empty_values_rejected(self, preferences):
        with pytest.raises(ConfigError):
            preferences.set_api_key("   ")
        with pytest.raises(ConfigError):
            preferences.set_model("")
        with pytest.raises(ConfigError):
            preferences.set_prompt("", "en")

    def test_language_and_resolution(self, preferences):
        preferences.set_language("EN")
        preferences.set_video_resolution("default")

        assert preferences.language() == "en"
        assert preferences.video_resolution() == "default"
        with pytest.raises(ConfigError):
            preferences.set_language("fr")
        with pytest.raises(ConfigError, match="Must be 'low' or 'default'"):
            preferences.set_video_resolution("4k")


class TestPrompts:
    def test_prompt_per_language(self, preferences):
        preferences.set_prompt("Describe briefly", "en")

        assert preferences.prompt_for("en") == "Describe briefly"
        assert preferences.prompt_for("zh") == DEFAULT_PROMPTS["zh"]

    def test_active_prompt_follows_language(self, preferences):
        preferences.set_prompt("Describe briefly", "en")
        preferences.set_language("en")

        assert preferences.active_prompt() == "Describe briefly"

    def test_reset_prompt(self, preferences):
        preferences.set_prompt("Custom", "zh")

        assert preferences.reset_prompt("zh") == DEFAULT_PROMPTS["zh"]
        assert preferences.prompt_for("zh") == DEFAULT_PROMPTS["zh"]

    def test_unknown_prompt_language(self, preferences):
        with pytest.raises(ConfigError):
            preferences.prompt_for("de")
