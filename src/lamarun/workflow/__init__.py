"""YAML workflows: batch inference and model management from one file."""

from lamarun.workflow.config import (
    DefaultsConfig,
    InferenceTask,
    ModelTask,
    WorkflowConfig,
    load_workflow,
    save_workflow,
)
from lamarun.workflow.runner import TaskOutcome, WorkflowRunner

__all__ = [
    "DefaultsConfig",
    "InferenceTask",
    "ModelTask",
    "TaskOutcome",
    "WorkflowConfig",
    "WorkflowRunner",
    "load_workflow",
    "save_workflow",
]
