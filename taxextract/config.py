"""
Configuration for the extraction service.

Supports:
- Loading settings from YAML
- Environment variable overrides (AI_PROVIDER, OPENAI_API_KEY, ...)
- Validation with Pydantic

Settings are read once at startup and handed to the provider adapters.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


PROVIDER_NAMES = ("ollama", "openai", "claude")


# =============================================================================
# Pydantic Settings Models
# =============================================================================


class OllamaSettings(BaseModel):
    """Local Ollama server."""

    enabled: bool = True
    base_url: str = "http://localhost:11434"
    model: str = "mistral"
    probe_timeout: float = 15.0  # Cold model loads are slow
    request_timeout: float = 180.0  # HTTP timeout for /api/generate

    @property
    def is_enabled(self) -> bool:
        return self.enabled


class OpenAISettings(BaseModel):
    """OpenAI chat completions API."""

    enabled: Optional[bool] = None  # None = enabled when an API key is set
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    probe_timeout: float = 5.0

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False and bool(self.api_key)


class ClaudeSettings(BaseModel):
    """Anthropic messages API."""

    enabled: Optional[bool] = None  # None = enabled when an API key is set
    api_key: Optional[str] = None
    model: str = "claude-3-5-sonnet-latest"
    probe_timeout: float = 5.0

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False and bool(self.api_key)


class ExtractionSettings(BaseModel):
    """Generation parameters for extraction and report calls."""

    temperature: float = 0.1
    max_tokens: int = 2000
    report_temperature: float = 0.3
    report_max_tokens: int = 4000
    invoke_timeout: Optional[float] = None  # Per-call timeout (None = transport default)
    max_document_tokens: Optional[int] = None  # Token cap for document text (None = never truncate)


class AISettings(BaseModel):
    """Complete provider configuration."""

    preferred_provider: str = "ollama"
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)

    @field_validator("preferred_provider")
    @classmethod
    def check_provider(cls, v: str) -> str:
        name = v.strip().lower()
        if name not in PROVIDER_NAMES:
            raise ValueError(f"Unknown provider '{v}'. Valid options: {list(PROVIDER_NAMES)}")
        return name


# =============================================================================
# Loading
# =============================================================================

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "AI_PROVIDER": (None, "preferred_provider"),
    "OLLAMA_BASE_URL": ("ollama", "base_url"),
    "OLLAMA_MODEL": ("ollama", "model"),
    "OPENAI_API_KEY": ("openai", "api_key"),
    "OPENAI_MODEL": ("openai", "model"),
    "OPENAI_BASE_URL": ("openai", "base_url"),
    "ANTHROPIC_API_KEY": ("claude", "api_key"),
    "CLAUDE_API_KEY": ("claude", "api_key"),  # Wins over ANTHROPIC_API_KEY
    "CLAUDE_MODEL": ("claude", "model"),
    "EXTRACTION_INVOKE_TIMEOUT": ("extraction", "invoke_timeout"),
}


def load_yaml(path: Union[str, Path]) -> dict[str, Any]:
    """Load a YAML file, treating an empty file as an empty mapping."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def env_overrides(environ: Mapping[str, str]) -> dict:
    """Collect non-empty environment overrides as a nested settings dict."""
    overrides: dict = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        if section is None:
            overrides[key] = value
        else:
            overrides.setdefault(section, {})[key] = value
    return overrides


def load_settings(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AISettings:
    """
    Load settings from an optional YAML file plus environment overrides.

    Args:
        path: Optional YAML settings file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated AISettings

    Raises:
        FileNotFoundError: If path is given but does not exist
        pydantic.ValidationError: If the merged settings are invalid
    """
    if environ is None:
        environ = os.environ

    settings_dict = load_yaml(path) if path is not None else {}
    overrides = env_overrides(environ)
    if overrides:
        settings_dict = deep_merge(settings_dict, overrides)
        logger.debug(f"Applied environment overrides: {sorted(overrides)}")

    settings = AISettings.model_validate(settings_dict)
    logger.info(f"Loaded settings (preferred provider: {settings.preferred_provider})")
    return settings


def validate_settings(settings: AISettings) -> list[str]:
    """
    Validate settings and return list of warnings/issues.

    Args:
        settings: AISettings to validate

    Returns:
        List of warning messages (empty if all good)
    """
    warnings = []

    enabled = {
        "ollama": settings.ollama.is_enabled,
        "openai": settings.openai.is_enabled,
        "claude": settings.claude.is_enabled,
    }
    if not any(enabled.values()):
        warnings.append("No AI provider is enabled - extraction will return default records")
    elif not enabled[settings.preferred_provider]:
        warnings.append(
            f"Preferred provider '{settings.preferred_provider}' is not enabled, "
            "other providers will be tried in discovery order"
        )

    if settings.openai.enabled and not settings.openai.api_key:
        warnings.append("OpenAI is enabled but OPENAI_API_KEY is not set")
    if settings.claude.enabled and not settings.claude.api_key:
        warnings.append("Claude is enabled but CLAUDE_API_KEY is not set")

    timeouts = {
        "ollama.probe_timeout": settings.ollama.probe_timeout,
        "ollama.request_timeout": settings.ollama.request_timeout,
        "openai.probe_timeout": settings.openai.probe_timeout,
        "claude.probe_timeout": settings.claude.probe_timeout,
        "extraction.invoke_timeout": settings.extraction.invoke_timeout,
    }
    for name, value in timeouts.items():
        if value is not None and value <= 0:
            warnings.append(f"{name}={value} must be positive")

    if settings.extraction.max_document_tokens is not None and settings.extraction.max_document_tokens < 500:
        warnings.append(
            f"max_document_tokens={settings.extraction.max_document_tokens} is very low, "
            "most statements will be truncated"
        )

    return warnings
