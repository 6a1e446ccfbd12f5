"""Tests for WorkflowRunner."""

from __future__ import annotations

import io
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from lamarun.engine.session import InferenceEngine
from lamarun.exceptions import WorkflowError
from lamarun.workflow.config import DefaultsConfig, InferenceTask, ModelTask, WorkflowConfig
from lamarun.workflow.runner import WorkflowRunner

PROMPT = "The capital of France is"
PARIS = 2


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "tiny.gguf"
    path.write_bytes(b"GGUF")
    return path


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), no_color=True, width=120)


@pytest.fixture
def engine_factory(backend):
    """Factory producing engines over fresh scripted backends; keeps what it built."""
    backend_cls = type(backend)
    created: list[InferenceEngine] = []

    def factory(settings, model_path: str) -> InferenceEngine:
        scripted = backend_cls(script=[PARIS])
        handle = scripted.load(model_path, settings.ctx_size, settings.threads, settings.batch_capacity)
        engine = InferenceEngine(scripted, handle, settings)
        created.append(engine)
        return engine

    factory.created = created  # type: ignore[attr-defined]
    return factory


def _runner(config, tmp_path, engine_factory, console, settings_factory) -> WorkflowRunner:
    return WorkflowRunner(
        config,
        settings=settings_factory(cache_dir=tmp_path / "cache"),
        base_dir=tmp_path,
        engine_factory=engine_factory,
        console=console,
    )


def _task(model_file: Path, **overrides) -> InferenceTask:
    fields = {"name": "capital", "prompt": PROMPT, "model": str(model_file), "temperature": 0.0, "max_tokens": 1}
    fields.update(overrides)
    return InferenceTask(**fields)


class TestInferenceTasks:
    def test_writes_output_relative_to_base_dir(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(version="1", tasks=[_task(model_file, output_file="out/capital.txt")])
        outcomes = _runner(config, tmp_path, engine_factory, console, settings_factory).run()

        assert len(outcomes) == 1
        assert outcomes[0].ok
        assert outcomes[0].detail == "length_limit"
        assert (tmp_path / "out" / "capital.txt").read_text() == " Paris"
        assert " Paris" in console.file.getvalue()

    def test_defaults_supply_model(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(
            version="1",
            defaults=DefaultsConfig(model=str(model_file), max_tokens=1, temperature=0.0),
            tasks=[InferenceTask(name="t", prompt=PROMPT)],
        )
        outcomes = _runner(config, tmp_path, engine_factory, console, settings_factory).run()
        assert outcomes[0].result is not None
        assert outcomes[0].result.text == " Paris"

    def test_engine_reused_and_closed(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(
            version="1", tasks=[_task(model_file, name="a"), _task(model_file, name="b")]
        )
        _runner(config, tmp_path, engine_factory, console, settings_factory).run()

        assert len(engine_factory.created) == 1
        assert engine_factory.created[0].backend.closed

    def test_ctx_size_override_loads_new_engine(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(
            version="1",
            tasks=[_task(model_file, name="a"), _task(model_file, name="b", ctx_size=128)],
        )
        _runner(config, tmp_path, engine_factory, console, settings_factory).run()

        assert [e.handle.ctx_capacity for e in engine_factory.created] == [2048, 128]

    def test_continue_on_error(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(
            version="1",
            tasks=[
                _task(tmp_path / "missing.gguf", name="broken", continue_on_error=True),
                _task(model_file, name="fine"),
            ],
        )
        outcomes = _runner(config, tmp_path, engine_factory, console, settings_factory).run()

        assert [o.ok for o in outcomes] == [False, True]
        assert "Model file not found" in outcomes[0].detail

    def test_failure_stops_workflow(
        self, tmp_path, model_file, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(
            version="1",
            tasks=[_task(tmp_path / "missing.gguf", name="broken"), _task(model_file, name="fine")],
        )
        with pytest.raises(WorkflowError, match="broken"):
            _runner(config, tmp_path, engine_factory, console, settings_factory).run()

    def test_task_without_model(
        self, tmp_path, engine_factory, console, settings_factory
    ) -> None:
        config = WorkflowConfig(version="1", tasks=[InferenceTask(name="orphan", prompt=PROMPT)])
        with pytest.raises(WorkflowError, match="no model"):
            _runner(config, tmp_path, engine_factory, console, settings_factory).run()

    def test_environment_applied_then_restored(
        self, tmp_path, model_file, console, settings_factory, backend, monkeypatch
    ) -> None:
        monkeypatch.delenv("LAMARUN_WORKFLOW_FLAG", raising=False)
        seen = []

        def factory(settings, model_path):
            seen.append(os.environ.get("LAMARUN_WORKFLOW_FLAG"))
            scripted = type(backend)(script=[PARIS])
            return InferenceEngine(scripted, scripted.load(model_path, 64), settings)

        config = WorkflowConfig(
            version="1",
            tasks=[_task(model_file)],
            environment={"LAMARUN_WORKFLOW_FLAG": "on"},
        )
        _runner(config, tmp_path, factory, console, settings_factory).run()

        assert seen == ["on"]
        assert "LAMARUN_WORKFLOW_FLAG" not in os.environ


class TestModelTasks:
    def test_pull_list_usage_remove(
        self, tmp_path, engine_factory, console, settings_factory
    ) -> None:
        def fake_download(repo_id, filename, local_dir, force_download):
            target = Path(local_dir) / filename
            target.write_bytes(b"\x00" * 2048)
            return str(target)

        config = WorkflowConfig(
            version="1",
            models=[
                ModelTask(action="pull", model_id="owner/tiny-GGUF", filename="tiny.gguf"),
                ModelTask(action="list"),
                ModelTask(action="usage"),
                ModelTask(action="remove", model_id="owner/tiny-GGUF"),
            ],
        )
        with patch("lamarun.hub.hf_hub_download", side_effect=fake_download):
            outcomes = _runner(config, tmp_path, engine_factory, console, settings_factory).run()

        assert [o.ok for o in outcomes] == [True, True, True, True]
        assert outcomes[0].detail.endswith("tiny.gguf")
        assert outcomes[1].detail == "1 model(s)"
        assert outcomes[2].detail == "2.0 KB"
        assert outcomes[3].detail == "removed"
        assert not (tmp_path / "cache" / "models" / "owner--tiny-GGUF").exists()

    def test_failed_pull_raises(
        self, tmp_path, engine_factory, console, settings_factory
    ) -> None:
        from huggingface_hub.errors import HfHubHTTPError

        config = WorkflowConfig(
            version="1",
            models=[ModelTask(action="pull", model_id="owner/missing", filename="x.gguf")],
        )
        with patch("lamarun.hub.hf_hub_download", side_effect=HfHubHTTPError("404")):
            with pytest.raises(WorkflowError, match="Model task"):
                _runner(config, tmp_path, engine_factory, console, settings_factory).run()
