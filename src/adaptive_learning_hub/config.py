"""Settings for the learning hub: environment, .env and config/settings.yaml."""

import functools
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# (yaml section, yaml key) -> Settings field
YAML_FIELDS: dict[tuple[str, str], str] = {
    ("server", "host"): "host",
    ("server", "port"): "port",
    ("openai", "generation_model"): "generation_model",
    ("openai", "vision_model"): "vision_model",
    ("openai", "tts_model"): "tts_model",
    ("openai", "tts_voice"): "tts_voice",
    ("openai", "transcription_model"): "transcription_model",
    ("store", "backend"): "profile_store",
    ("store", "supabase_url"): "supabase_url",
    ("sync", "debounce_seconds"): "save_debounce_seconds",
    ("activities", "feedback_display_seconds"): "feedback_display_seconds",
    ("activities", "persona_refresh_interval"): "persona_refresh_interval",
    ("notifications", "ttl_seconds"): "notification_ttl_seconds",
    ("audio", "sample_rate"): "audio_sample_rate",
    ("audio", "input_device"): "audio_input_device",
    ("audio", "output_device"): "audio_output_device",
}


def _find_project_root() -> Path:
    """Nearest ancestor holding pyproject.toml."""
    here = Path(__file__).resolve()
    for candidate in here.parents:
        if (candidate / "pyproject.toml").exists():
            return candidate
    return here.parents[2]


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Reads config/settings.yaml and maps its sections onto Settings fields."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        # Values come from __call__ in one pass.
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        path = _find_project_root() / "config" / "settings.yaml"
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            sections = yaml.safe_load(f) or {}

        values: dict[str, Any] = {}
        for (section, key), field in YAML_FIELDS.items():
            value = (sections.get(section) or {}).get(key)
            if value is not None:
                values[field] = value
        return values


class Settings(BaseSettings):
    """Hub settings. Init args win over env vars, then .env, then YAML."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI; no key disables every generation capability
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    generation_model: str = Field(default="gpt-4o-mini")
    vision_model: str = Field(default="gpt-4o-mini")
    tts_model: str = Field(default="gpt-4o-mini-tts")
    tts_voice: str = Field(default="alloy")
    transcription_model: str = Field(default="whisper-1")

    # Shared secret for API and WebSocket access; None disables the check
    app_secret: str | None = Field(default=None)

    # Profile store
    profile_store: Literal["json", "supabase"] = Field(default="json")
    supabase_url: str | None = Field(default=None)
    supabase_key: str | None = Field(default=None)

    # Sync, notifications and activities
    save_debounce_seconds: float = Field(default=1.0, ge=0)
    notification_ttl_seconds: float = Field(default=4.0, gt=0)
    feedback_display_seconds: float = Field(default=1.5, ge=0)
    persona_refresh_interval: int = Field(default=5, ge=1)

    # Speech devices
    audio_sample_rate: int = Field(default=24000)
    audio_input_device: int | None = Field(default=None)
    audio_output_device: int | None = Field(default=None)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def profiles_dir(self) -> Path:
        """Directory of the local JSON store, created on first use."""
        path = self.project_root / "data" / "profiles"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    return Settings()
