"""YAML workflow files: batch inference and model management.

Example::

    version: "1.0"
    name: "Nightly prompts"
    defaults:
      model: "TheBloke/Llama-2-7B-Chat-GGUF"
      max_tokens: 256
      temperature: 0.7
    models:
      - action: pull
        model_id: "TheBloke/Llama-2-7B-Chat-GGUF"
        filename: "llama-2-7b-chat.Q4_K_M.gguf"
    tasks:
      - name: "Summary"
        prompt: "Summarize the plot of Hamlet"
        output_file: "hamlet.txt"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from lamarun.config import MAX_TEMPERATURE
from lamarun.exceptions import ConfigError

# Sampling fields a task or the defaults block may set.
SAMPLING_FIELDS: tuple[str, ...] = (
    "max_tokens",
    "temperature",
    "top_k",
    "top_p",
    "min_p",
    "repeat_penalty",
    "seed",
)


class _SamplingOverrides(BaseModel):
    """Optional sampling fields shared by defaults and tasks."""

    model_config = ConfigDict(extra="forbid")

    max_tokens: int | None = None
    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    min_p: float | None = None
    repeat_penalty: float | None = None
    seed: int | None = None

    @field_validator("temperature")
    @classmethod
    def _check_temperature(cls, value: float | None) -> float | None:
        if value is not None and not 0.0 <= value <= MAX_TEMPERATURE:
            raise ValueError(f"temperature must be between 0.0 and {MAX_TEMPERATURE}")
        return value

    @field_validator("top_p")
    @classmethod
    def _check_top_p(cls, value: float | None) -> float | None:
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError("top_p must be between 0.0 and 1.0")
        return value

    def sampling_overrides(self) -> dict[str, Any]:
        """Sampling fields that are set, ready for ``resolve_sampling_config``."""
        return {name: getattr(self, name) for name in SAMPLING_FIELDS if getattr(self, name) is not None}


class DefaultsConfig(_SamplingOverrides):
    """Values every inference task inherits unless it sets its own."""

    model: str | None = None
    hf_filename: str | None = None
    cache_dir: str | None = None
    ctx_size: int | None = None
    threads: int | None = None
    verbose: bool = False
    no_color: bool = False
    stats: bool = False


class ModelTask(BaseModel):
    """One model-management step."""

    model_config = ConfigDict(extra="forbid")

    action: Literal["pull", "remove", "list", "usage"]
    model_id: str | None = None
    filename: str | None = None
    cache_dir: str | None = None
    force: bool = False
    verbose: bool = False
    description: str | None = None

    @model_validator(mode="after")
    def _require_model_id(self) -> ModelTask:
        if self.action in ("pull", "remove") and not self.model_id:
            raise ValueError(f"model action '{self.action}' requires model_id")
        return self


class InferenceTask(_SamplingOverrides):
    """One prompt to run."""

    name: str
    prompt: str
    model: str | None = None
    hf_filename: str | None = None
    cache_dir: str | None = None
    force_download: bool = False
    ctx_size: int | None = None
    threads: int | None = None
    no_color: bool = False
    stats: bool = False
    verbose: bool = False
    output_file: str | None = None
    description: str | None = None
    continue_on_error: bool = False

    @field_validator("name", "prompt")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value


class WorkflowConfig(BaseModel):
    """A whole workflow file."""

    model_config = ConfigDict(extra="forbid")

    version: str
    name: str | None = None
    description: str | None = None
    defaults: DefaultsConfig | None = None
    models: list[ModelTask] = Field(default_factory=list)
    tasks: list[InferenceTask] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _version_required(cls, value: str) -> str:
        if not value:
            raise ValueError("configuration version is required")
        return value

    def apply_defaults(self, task: InferenceTask) -> InferenceTask:
        """Return a copy of *task* with unset fields filled from ``defaults``.

        Boolean flags are switched on when the defaults switch them on.
        """
        if self.defaults is None:
            return task

        updates: dict[str, Any] = {}
        for name in (*SAMPLING_FIELDS, "model", "hf_filename", "cache_dir", "ctx_size", "threads"):
            if getattr(task, name) is None and getattr(self.defaults, name) is not None:
                updates[name] = getattr(self.defaults, name)
        for name in ("verbose", "no_color", "stats"):
            if getattr(self.defaults, name) and not getattr(task, name):
                updates[name] = True
        return task.model_copy(update=updates) if updates else task

    @classmethod
    def generate_sample(cls) -> WorkflowConfig:
        """A starter workflow for ``lamarun init-config``."""
        return cls(
            version="1.0",
            name="lamarun workflow",
            description="Example configuration for batch inference and model management",
            defaults=DefaultsConfig(
                model="TheBloke/Llama-2-7B-Chat-GGUF",
                max_tokens=1024,
                temperature=0.8,
                top_k=40,
                top_p=0.95,
                ctx_size=2048,
            ),
            models=[
                ModelTask(
                    action="pull",
                    model_id="TheBloke/Llama-2-7B-Chat-GGUF",
                    filename="llama-2-7b-chat.Q4_K_M.gguf",
                    description="Download Llama 2 7B Chat",
                ),
            ],
            tasks=[
                InferenceTask(
                    name="Creative Writing",
                    prompt="Write a short story about space exploration",
                    max_tokens=512,
                    temperature=1.0,
                    top_p=0.9,
                    stats=True,
                    output_file="creative_story.txt",
                    description="Generate creative content",
                ),
                InferenceTask(
                    name="Technical Explanation",
                    prompt="Explain how neural networks work in simple terms",
                    temperature=0.3,
                    top_k=20,
                    stats=True,
                    output_file="neural_networks.txt",
                    description="Generate technical documentation",
                ),
            ],
            environment={"LAMARUN_LOG_LEVEL": "none"},
        )


def load_workflow(path: Path | str) -> WorkflowConfig:
    """Read and validate a workflow file.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or does
            not describe a valid workflow.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read workflow file '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse workflow file '{path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Workflow file '{path}' must contain a mapping")
    try:
        return WorkflowConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid workflow file '{path}': {exc}") from exc


def save_workflow(config: WorkflowConfig, path: Path | str) -> None:
    """Write *config* as YAML, omitting unset fields."""
    data = config.model_dump(mode="json", exclude_none=True)
    Path(path).write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
