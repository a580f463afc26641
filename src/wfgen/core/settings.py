"""Settings management for wfgen with environment variable override support."""

import json
import logging
import os
import stat
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class AISettings(BaseModel):
    """Generation service configuration.

    The default provider talks to an Ollama-compatible endpoint over HTTP.
    Setting ``provider`` to ``"llm"`` routes calls through the ``llm`` library
    instead, so any model installed there (plugins included) can drive planning.
    """

    provider: str = Field(default="ollama", description="Backend: ollama or llm")
    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(default="deepseek-r1:14b")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    max_tokens: int = Field(default=2000, ge=1, le=32768)
    max_concurrency: int = Field(default=4, ge=1, le=64)
    request_timeout: float = Field(default=60.0, gt=0)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate provider is known."""
        if v not in ("ollama", "llm"):
            raise ValueError(f"Invalid provider: {v}. Must be 'ollama' or 'llm'")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class CacheSettings(BaseModel):
    """Prompt/response cache configuration."""

    enabled: bool = Field(default=True)
    max_entries: int = Field(default=1000, ge=1)
    ttl_seconds: float = Field(default=1800.0, gt=0)


class GenerationSettings(BaseModel):
    """Pipeline behaviour.

    ``max_simplification_passes`` bounds how many times the orchestrator asks
    for simplification suggestions after a failed or overly complex validation.
    """

    complexity_threshold: int = Field(default=7, ge=1, le=10)
    max_simplification_passes: int = Field(default=1, ge=0, le=5)
    ai_retries: int = Field(default=2, ge=1, le=10)
    retry_wait: float = Field(default=1.0, ge=0)
    max_complex_nodes: int = Field(default=3, ge=1)


class WfgenSettings(BaseModel):
    """Main settings configuration."""

    version: str = Field(default="1.0.0")
    ai: AISettings = Field(default_factory=AISettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    templates_path: Optional[str] = Field(
        default=None, description="Optional JSON file with extra node templates"
    )


def _to_int(value: str) -> int:
    return int(value)


def _to_float(value: str) -> float:
    return float(value)


# env var -> (section, field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], object]]] = {
    "WFGEN_PROVIDER": ("ai", "provider", str),
    "WFGEN_BASE_URL": ("ai", "base_url", str),
    "WFGEN_MODEL": ("ai", "model", str),
    "WFGEN_MAX_CONCURRENCY": ("ai", "max_concurrency", _to_int),
    "WFGEN_REQUEST_TIMEOUT": ("ai", "request_timeout", _to_float),
    "WFGEN_CACHE_TTL": ("cache", "ttl_seconds", _to_float),
    "WFGEN_CACHE_SIZE": ("cache", "max_entries", _to_int),
    "WFGEN_COMPLEXITY_THRESHOLD": ("generation", "complexity_threshold", _to_int),
}


class SettingsManager:
    """Manages wfgen settings with environment variable override support."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or Path.home() / ".wfgen" / "settings.json"
        self._settings: Optional[WfgenSettings] = None
        # Lock for thread-safe load-modify-save operations
        self._lock = threading.Lock()

    def load(self) -> WfgenSettings:
        """Load settings with environment variable overrides."""
        with self._lock:
            if self._settings is None:
                self._settings = self._load_from_file()
            settings = self._settings
        return self._apply_env_overrides(settings)

    def reload(self) -> WfgenSettings:
        """Force reload settings from file."""
        with self._lock:
            self._settings = None
        return self.load()

    def _load_from_file(self) -> WfgenSettings:
        """Load settings from file or return defaults."""
        if not self.settings_path.exists():
            return WfgenSettings()
        try:
            with open(self.settings_path, encoding="utf-8") as f:
                data = json.load(f)
            return WfgenSettings.model_validate(data)
        except (OSError, ValueError) as e:
            # pydantic's ValidationError and json's JSONDecodeError are both ValueErrors
            logger.warning(f"Failed to load settings from {self.settings_path} ({e}); using defaults")
            return WfgenSettings()

    def _apply_env_overrides(self, settings: WfgenSettings) -> WfgenSettings:
        """Return a copy of ``settings`` with environment overrides applied.

        The cached file settings are never mutated, so removing an env var
        takes effect on the next load.
        """
        data = settings.model_dump()
        for env_name, (section, field_name, convert) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            # Validated one override at a time; an invalid value drops only itself
            try:
                candidate = {**data[section], field_name: convert(raw)}
                data[section] = type(getattr(settings, section)).model_validate(candidate).model_dump()
            except ValueError as e:
                logger.warning(f"Ignoring invalid {env_name}={raw!r}: {e}", extra={"env": env_name})
        return WfgenSettings.model_validate(data)

    def save(self, settings: Optional[WfgenSettings] = None) -> None:
        """Save settings to file with atomic operations and secure permissions."""
        if settings is None:
            settings = self.load()

        self.settings_path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write pattern: write to temp file, then replace
        temp_fd, temp_path = tempfile.mkstemp(dir=self.settings_path.parent, prefix=".settings.", suffix=".tmp")

        try:
            with open(temp_fd, "w", encoding="utf-8") as f:
                json.dump(settings.model_dump(), f, indent=2)

            os.replace(temp_path, self.settings_path)
            os.chmod(self.settings_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600

            with self._lock:
                self._settings = None
        except Exception:
            Path(temp_path).unlink(missing_ok=True)
            raise
