from __future__ import annotations

from typing import Optional

from .config import (
    DEFAULT_PROMPTS,
    LANGUAGES,
    MAX_SUMMARY_INTERVAL_SECONDS,
    MIN_SUMMARY_INTERVAL_SECONDS,
    VIDEO_RESOLUTIONS,
    AppSettings,
)
from .errors import ConfigError
from .storage import SettingsStore

API_KEY = "gemini_api_key"
MODEL = "ai_model"
SUMMARY_INTERVAL = "summary_interval_seconds"
LANGUAGE = "language"
VIDEO_RESOLUTION = "video_resolution"


def _prompt_key(language: str) -> str:
    return f"ai_prompt_{language}"


class Preferences:
    """User-editable settings persisted in the settings table.

    Stored values win over the environment defaults in `AppSettings`.
    Setters validate their input and raise `ConfigError` with a message
    suitable for showing to the user.
    """

    def __init__(self, store: SettingsStore, settings: AppSettings):
        self._store = store
        self._settings = settings

    def api_key(self) -> Optional[str]:
        return self._store.get(API_KEY) or self._settings.gemini.api_key

    def set_api_key(self, value: str) -> None:
        value = (value or "").strip()
        if not value:
            raise ConfigError("API key cannot be empty")
        self._store.set(API_KEY, value)

    def model(self) -> str:
        return self._store.get(MODEL) or self._settings.gemini.model

    def set_model(self, value: str) -> None:
        value = (value or "").strip()
        if not value:
            raise ConfigError("Model name cannot be empty")
        self._store.set(MODEL, value)

    def summary_interval(self) -> int:
        raw = self._store.get(SUMMARY_INTERVAL)
        if raw is None:
            return self._settings.summary.interval_seconds
        try:
            return int(raw)
        except ValueError:
            return self._settings.summary.interval_seconds

    def set_summary_interval(self, seconds: int) -> int:
        try:
            seconds = int(seconds)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid summary interval: {seconds!r}") from exc
        if not MIN_SUMMARY_INTERVAL_SECONDS <= seconds <= MAX_SUMMARY_INTERVAL_SECONDS:
            raise ConfigError(
                f"Summary interval must be between {MIN_SUMMARY_INTERVAL_SECONDS} "
                f"and {MAX_SUMMARY_INTERVAL_SECONDS} seconds"
            )
        self._store.set(SUMMARY_INTERVAL, str(seconds))
        return seconds

    def language(self) -> str:
        value = self._store.get(LANGUAGE)
        return value if value in LANGUAGES else self._settings.summary.language

    def set_language(self, value: str) -> None:
        value = (value or "").strip().lower()
        if value not in LANGUAGES:
            raise ConfigError(f"Unsupported language: {value!r} (expected one of {', '.join(LANGUAGES)})")
        self._store.set(LANGUAGE, value)

    def video_resolution(self) -> str:
        value = self._store.get(VIDEO_RESOLUTION)
        return value if value in VIDEO_RESOLUTIONS else self._settings.summary.video_resolution

    def set_video_resolution(self, value: str) -> None:
        value = (value or "").strip().lower()
        if value not in VIDEO_RESOLUTIONS:
            raise ConfigError(f"Invalid video resolution: {value!r}. Must be 'low' or 'default'")
        self._store.set(VIDEO_RESOLUTION, value)

    def prompt_for(self, language: Optional[str] = None) -> str:
        language = self._checked_language(language)
        return self._store.get(_prompt_key(language)) or DEFAULT_PROMPTS[language]

    def set_prompt(self, prompt: str, language: Optional[str] = None) -> None:
        language = self._checked_language(language)
        prompt = (prompt or "").strip()
        if not prompt:
            raise ConfigError("Prompt cannot be empty")
        self._store.set(_prompt_key(language), prompt)

    def reset_prompt(self, language: Optional[str] = None) -> str:
        language = self._checked_language(language)
        self._store.set(_prompt_key(language), DEFAULT_PROMPTS[language])
        return DEFAULT_PROMPTS[language]

    def active_prompt(self) -> str:
        return self.prompt_for(self.language())

    def _checked_language(self, language: Optional[str]) -> str:
        if language is None:
            return self.language()
        language = language.strip().lower()
        if language not in LANGUAGES:
            raise ConfigError(f"Unsupported language: {language!r} (expected one of {', '.join(LANGUAGES)})")
        return language
