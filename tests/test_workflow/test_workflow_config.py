"""Tests for workflow file parsing and defaults."""

from __future__ import annotations

from pathlib import Path

import pytest

from lamarun.exceptions import ConfigError
from lamarun.workflow.config import (
    DefaultsConfig,
    InferenceTask,
    WorkflowConfig,
    load_workflow,
    save_workflow,
)

WORKFLOW_YAML = """\
version: "1.0"
name: "Batch"
defaults:
  model: "TheBloke/Llama-2-7B-Chat-GGUF"
  max_tokens: 64
  temperature: 0.5
  stats: true
models:
  - action: pull
    model_id: "TheBloke/Llama-2-7B-Chat-GGUF"
    filename: "llama-2-7b-chat.Q4_K_M.gguf"
  - action: usage
tasks:
  - name: "Summary"
    prompt: "Summarize Hamlet"
    temperature: 0.2
    output_file: "out/summary.txt"
environment:
  LAMARUN_LOG_LEVEL: "summary"
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "lamarun.yml"
    path.write_text(text)
    return path


class TestLoadWorkflow:
    def test_parses_all_sections(self, tmp_path: Path) -> None:
        config = load_workflow(_write(tmp_path, WORKFLOW_YAML))
        assert config.version == "1.0"
        assert config.defaults is not None
        assert config.defaults.max_tokens == 64
        assert [task.action for task in config.models] == ["pull", "usage"]
        assert config.tasks[0].output_file == "out/summary.txt"
        assert config.environment == {"LAMARUN_LOG_LEVEL": "summary"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_workflow(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_workflow(_write(tmp_path, "version: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            load_workflow(_write(tmp_path, "- just\n- a list\n"))

    @pytest.mark.parametrize(
        "text",
        [
            'version: ""\n',
            "name: no version\n",
            'version: "1"\nmodels:\n  - action: pull\n',
            'version: "1"\nmodels:\n  - action: fetch\n    model_id: a/b\n',
            'version: "1"\ntasks:\n  - name: t\n    prompt: ""\n',
            'version: "1"\ntasks:\n  - name: t\n    prompt: p\n    temperature: 3.0\n',
            'version: "1"\ntasks:\n  - name: t\n    prompt: p\n    top_p: 1.5\n',
            'version: "1"\nunknown_section: 1\n',
        ],
    )
    def test_invalid_workflows(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ConfigError, match="Invalid workflow"):
            load_workflow(_write(tmp_path, text))


class TestApplyDefaults:
    def test_fills_unset_fields(self) -> None:
        config = WorkflowConfig(
            version="1",
            defaults=DefaultsConfig(model="a/b", max_tokens=64, temperature=0.5, verbose=True),
        )
        task = config.apply_defaults(InferenceTask(name="t", prompt="p", temperature=0.2))

        assert task.model == "a/b"
        assert task.max_tokens == 64
        assert task.temperature == 0.2
        assert task.verbose is True

    def test_original_task_unchanged(self) -> None:
        config = WorkflowConfig(version="1", defaults=DefaultsConfig(model="a/b"))
        original = InferenceTask(name="t", prompt="p")
        config.apply_defaults(original)
        assert original.model is None

    def test_without_defaults(self) -> None:
        task = InferenceTask(name="t", prompt="p")
        assert WorkflowConfig(version="1").apply_defaults(task) is task

    def test_sampling_overrides(self) -> None:
        task = InferenceTask(name="t", prompt="p", top_k=5, seed=3)
        assert task.sampling_overrides() == {"top_k": 5, "seed": 3}


class TestSaveWorkflow:
    def test_sample_survives_save_and_load(self, tmp_path: Path) -> None:
        sample = WorkflowConfig.generate_sample()
        path = tmp_path / "sample.yml"
        save_workflow(sample, path)

        loaded = load_workflow(path)
        assert loaded == sample

    def test_unset_fields_omitted(self, tmp_path: Path) -> None:
        path = tmp_path / "min.yml"
        save_workflow(WorkflowConfig(version="1"), path)
        assert "name" not in path.read_text()
