"""lamarun: fast local LLM inference with a pluggable sampling pipeline.

Loads GGUF models through llama.cpp, drives prompt evaluation and
token-by-token decoding, and streams text fragments as they are sampled.
Models can be fetched from the Hugging Face Hub and batch runs described
in YAML workflow files.
"""

from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("lamarun")
except PackageNotFoundError:
    __version__ = "0.0.0"

from lamarun.config import (
    LamarunSettings,
    SamplingConfig,
    resolve_sampling_config,
    validate_sampling_config,
)
from lamarun.engine import (
    GenerationResult,
    GenerationSession,
    GenerationStats,
    InferenceEngine,
    SessionState,
    StopReason,
)
from lamarun.exceptions import (
    BackendFailure,
    CapacityExceeded,
    ConfigError,
    HandleBusy,
    LamarunError,
    ModelNotFound,
    ScoresUnavailable,
    WorkflowError,
)

__all__ = [
    "BackendFailure",
    "CapacityExceeded",
    "ConfigError",
    "GenerationResult",
    "GenerationSession",
    "GenerationStats",
    "HandleBusy",
    "InferenceEngine",
    "LamarunError",
    "LamarunSettings",
    "ModelNotFound",
    "SamplingConfig",
    "ScoresUnavailable",
    "SessionState",
    "StopReason",
    "WorkflowError",
    "__version__",
    "resolve_sampling_config",
    "validate_sampling_config",
]
