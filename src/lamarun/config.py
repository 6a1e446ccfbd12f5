"""Configuration system for lamarun.

Two layers:

- ``LamarunSettings`` uses pydantic-settings for declarative, layered
  configuration: init kwargs -> environment variables (LAMARUN_*) -> .env
  file -> field defaults. It holds process-wide infrastructure: backend,
  cache directory, context size, eviction policy, logging.
- ``SamplingConfig`` is a frozen pydantic model describing one generation
  request. It is validated by ``validate_sampling_config()`` before any
  backend interaction, and per-task overrides are merged with
  ``resolve_sampling_config()`` without mutating the defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from lamarun.exceptions import ConfigError

MAX_TEMPERATURE = 2.0

DEFAULT_STAGES: tuple[str, ...] = (
    "temperature",
    "repeat_penalty",
    "top_k",
    "top_p",
    "min_p",
)

_EVICTION_POLICIES: frozenset[str] = frozenset({"none", "sliding"})
_LOG_LEVELS: frozenset[str] = frozenset({"none", "summary", "full"})


def default_cache_dir() -> Path:
    """Return ``~/.cache/lamarun``."""
    return Path.home() / ".cache" / "lamarun"


class LamarunSettings(BaseSettings):
    """Process-wide settings for lamarun.

    Resolution order: init kwargs -> env vars (LAMARUN_*) -> .env file -> defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAMARUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Backend ---

    backend: str = Field(
        default="llama_cpp",
        description="Registered inference backend name",
    )
    ctx_size: int = Field(
        default=2048,
        description="Context window capacity in tokens",
    )
    threads: int | None = Field(
        default=None,
        description="Compute threads passed through to the backend (None = backend default)",
    )
    batch_capacity: int = Field(
        default=512,
        description="Maximum tokens per backend submission; larger batches are split",
    )

    # --- Context overflow ---

    eviction: str = Field(
        default="none",
        description="Overflow policy: 'none' (stop with context_full) or 'sliding'",
    )
    keep_tokens: int = Field(
        default=0,
        description="Pinned prefix length preserved by the sliding policy",
    )

    # --- Model cache ---

    cache_dir: Path = Field(
        default_factory=default_cache_dir,
        description="Directory holding downloaded models",
    )

    # --- Sampling pipeline ---

    stages: list[str] = Field(
        default_factory=lambda: list(DEFAULT_STAGES),
        description="Ordered sampling stage names",
    )

    # --- Logging ---

    log_level: str = Field(
        default="none",
        description="Per-step logging verbosity: 'none', 'summary', 'full'",
    )
    diagnostic_mode: bool = Field(
        default=False,
        description="Keep every step record in memory for analysis",
    )


class SamplingConfig(BaseModel):
    """Sampling policy for one generation request.

    Construct freely, then call ``validate_sampling_config()``; the engine
    does so before touching the backend.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    temperature: float = Field(
        default=0.8,
        description="Score divisor; 0 selects greedy arg-max decoding",
    )
    top_k: int = Field(
        default=40,
        description="Keep only the k highest-scoring tokens (0 disables)",
    )
    top_p: float = Field(
        default=0.95,
        description="Nucleus threshold in (0, 1] (1.0 disables)",
    )
    min_p: float = Field(
        default=0.0,
        description="Drop tokens below min_p * max probability (0 disables)",
    )
    repeat_penalty: float = Field(
        default=1.0,
        description="Penalty applied to recently generated tokens (1.0 disables)",
    )
    repeat_last_n: int = Field(
        default=64,
        description="How many recent tokens the repeat penalty considers",
    )
    max_tokens: int = Field(
        default=1024,
        description="Maximum number of fragments to emit",
    )
    seed: int | None = Field(
        default=None,
        description="Random seed; None draws from OS entropy",
    )


def validate_sampling_config(config: SamplingConfig) -> None:
    """Check every SamplingConfig field against its allowed range.

    Args:
        config: The request configuration.

    Raises:
        ConfigError: Naming the first offending field.
    """
    if not 0.0 <= config.temperature <= MAX_TEMPERATURE:
        raise ConfigError(
            f"temperature must be between 0.0 and {MAX_TEMPERATURE}, got {config.temperature}"
        )
    if config.top_k < 0:
        raise ConfigError(f"top_k must be >= 0, got {config.top_k}")
    if not 0.0 < config.top_p <= 1.0:
        raise ConfigError(f"top_p must be in (0, 1], got {config.top_p}")
    if not 0.0 <= config.min_p < 1.0:
        raise ConfigError(f"min_p must be in [0, 1), got {config.min_p}")
    if config.repeat_penalty <= 0.0:
        raise ConfigError(f"repeat_penalty must be > 0, got {config.repeat_penalty}")
    if config.repeat_last_n < 0:
        raise ConfigError(f"repeat_last_n must be >= 0, got {config.repeat_last_n}")
    if config.max_tokens <= 0:
        raise ConfigError(f"max_tokens must be greater than 0, got {config.max_tokens}")
    if config.seed is not None and config.seed < 0:
        raise ConfigError(f"seed must be >= 0, got {config.seed}")


def validate_settings(settings: LamarunSettings) -> None:
    """Check infrastructure settings that pydantic types alone cannot express.

    Raises:
        ConfigError: If a setting is out of range or names an unknown option.
    """
    if settings.ctx_size <= 0:
        raise ConfigError(f"ctx_size must be > 0, got {settings.ctx_size}")
    if settings.batch_capacity <= 0:
        raise ConfigError(f"batch_capacity must be > 0, got {settings.batch_capacity}")
    if settings.threads is not None and settings.threads <= 0:
        raise ConfigError(f"threads must be > 0, got {settings.threads}")
    if settings.eviction not in _EVICTION_POLICIES:
        raise ConfigError(
            f"Unknown eviction policy '{settings.eviction}'. "
            f"Available: {', '.join(sorted(_EVICTION_POLICIES))}"
        )
    if not 0 <= settings.keep_tokens < settings.ctx_size:
        raise ConfigError(
            f"keep_tokens must be in [0, ctx_size), got {settings.keep_tokens}"
        )
    if settings.log_level not in _LOG_LEVELS:
        raise ConfigError(
            f"Unknown log_level '{settings.log_level}'. "
            f"Available: {', '.join(sorted(_LOG_LEVELS))}"
        )


def resolve_sampling_config(
    defaults: SamplingConfig,
    overrides: dict[str, Any] | None,
) -> SamplingConfig:
    """Create a new SamplingConfig merging defaults with overrides.

    ``None`` values in *overrides* mean "not set" and keep the default.

    Args:
        defaults: Base configuration.
        overrides: Field values to replace.

    Returns:
        A new validated SamplingConfig, or *defaults* itself if nothing changed.

    Raises:
        ConfigError: If a key is unknown, a value has the wrong type, or the
            merged config is out of range.
    """
    if not overrides:
        return defaults

    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return defaults

    unknown = sorted(set(updates) - set(SamplingConfig.model_fields))
    if unknown:
        raise ConfigError(f"Unknown sampling field(s): {', '.join(unknown)}")

    # model_copy(update=...) skips validation, so a string "40" would not be
    # coerced to int. model_validate runs the full validator.
    merged = defaults.model_dump()
    merged.update(updates)
    try:
        config = SamplingConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid sampling configuration: {exc}") from exc

    validate_sampling_config(config)
    return config
