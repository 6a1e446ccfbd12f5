"""Executes a WorkflowConfig: model tasks first, then inference tasks."""

from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape

from lamarun.config import LamarunSettings, SamplingConfig, resolve_sampling_config
from lamarun.display import format_bytes, models_table, stats_table, stream_fragments, usage_table
from lamarun.engine.session import InferenceEngine
from lamarun.exceptions import LamarunError, WorkflowError
from lamarun.hub import ModelCache, is_hf_model_id, resolve_model

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from lamarun.engine.types import GenerationResult
    from lamarun.workflow.config import InferenceTask, ModelTask, WorkflowConfig

logger = logging.getLogger("lamarun")


@dataclass
class TaskOutcome:
    """Result of one workflow step."""

    name: str
    kind: str
    ok: bool
    detail: str = ""
    output_file: Path | None = None
    result: GenerationResult | None = None


@contextlib.contextmanager
def _environment(values: dict[str, str]) -> Iterator[None]:
    """Apply *values* to ``os.environ`` for the duration of the block."""
    saved = {key: os.environ.get(key) for key in values}
    os.environ.update(values)
    try:
        yield
    finally:
        for key, previous in saved.items():
            if previous is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = previous


class WorkflowRunner:
    """Runs every step of a workflow in order.

    Engines are loaded once per (model, ctx_size, threads) and reused by
    later tasks; all of them are closed when the run ends.

    Args:
        config: The validated workflow.
        settings: Base settings; tasks override ``ctx_size``, ``threads``
            and ``cache_dir``. When omitted, settings are read after the
            workflow's ``environment`` block has been applied.
        base_dir: Directory ``output_file`` paths are relative to.
        engine_factory: Builds an engine for (settings, model path).
        console: Where progress and generated text are printed.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        settings: LamarunSettings | None = None,
        base_dir: Path | None = None,
        engine_factory: Callable[[LamarunSettings, str], InferenceEngine] | None = None,
        console: Console | None = None,
    ) -> None:
        self._config = config
        self._settings = settings
        self._base_dir = base_dir if base_dir is not None else Path.cwd()
        self._engine_factory = engine_factory if engine_factory is not None else InferenceEngine.from_settings
        self._console = console if console is not None else Console()
        self._engines: dict[tuple[str, int, int | None], InferenceEngine] = {}

    def run(self) -> list[TaskOutcome]:
        """Run all model tasks, then all inference tasks.

        Raises:
            WorkflowError: If a step fails. Inference tasks with
                ``continue_on_error`` record the failure and the run goes on.
        """
        outcomes: list[TaskOutcome] = []
        with _environment(self._config.environment):
            settings = self._settings if self._settings is not None else LamarunSettings()
            try:
                for index, task in enumerate(self._config.models):
                    outcomes.append(self._run_model_task(index, task, settings))
                for task in self._config.tasks:
                    outcomes.append(self._run_inference_task(self._config.apply_defaults(task), settings))
            finally:
                self._close_engines()
        return outcomes

    # --- Model management ---

    def _cache(self, cache_dir: str | None, settings: LamarunSettings) -> ModelCache:
        return ModelCache(Path(cache_dir) if cache_dir else settings.cache_dir)

    def _run_model_task(self, index: int, task: ModelTask, settings: LamarunSettings) -> TaskOutcome:
        name = task.description or f"{task.action} #{index}"
        cache = self._cache(task.cache_dir, settings)
        self._console.print(f"[bold blue]Model task:[/bold blue] {name}")
        try:
            detail = self._model_action(task, cache)
        except LamarunError as exc:
            raise WorkflowError(f"Model task '{name}' failed: {exc}") from exc
        return TaskOutcome(name=name, kind="model", ok=True, detail=detail)

    def _model_action(self, task: ModelTask, cache: ModelCache) -> str:
        if task.action == "pull":
            assert task.model_id is not None
            path = resolve_model(task.model_id, cache, task.filename, download=True, force=task.force)
            return str(path)
        if task.action == "remove":
            assert task.model_id is not None
            removed = cache.remove(task.model_id)
            return "removed" if removed else "not cached"
        if task.action == "list":
            models = cache.list_models()
            self._console.print(models_table(models))
            return f"{len(models)} model(s)"
        per_model, total = cache.disk_usage()
        self._console.print(usage_table(per_model, total))
        return format_bytes(total)

    # --- Inference ---

    def _run_inference_task(self, task: InferenceTask, settings: LamarunSettings) -> TaskOutcome:
        self._console.print(f"\n[bold blue]Task:[/bold blue] {task.name}")
        try:
            result = self._generate(task, settings)
            output_file = self._write_output(task, result.text)
        except (LamarunError, OSError) as exc:
            logger.error("Task '%s' failed: %s", task.name, exc)
            if not task.continue_on_error:
                raise WorkflowError(f"Task '{task.name}' failed: {exc}") from exc
            self._console.print(f"[red]Task '{escape(task.name)}' failed:[/red] {escape(str(exc))}")
            return TaskOutcome(name=task.name, kind="inference", ok=False, detail=str(exc))

        if task.stats:
            self._console.print(stats_table(result.stats, result.stop_reason))
        return TaskOutcome(
            name=task.name,
            kind="inference",
            ok=True,
            detail=result.stop_reason.value,
            output_file=output_file,
            result=result,
        )

    def _generate(self, task: InferenceTask, settings: LamarunSettings) -> GenerationResult:
        if not task.model:
            raise WorkflowError(f"Task '{task.name}' has no model and no default model is set")

        cache = self._cache(task.cache_dir, settings)
        model_path = resolve_model(
            task.model,
            cache,
            task.hf_filename,
            download=is_hf_model_id(task.model),
            force=task.force_download,
        )
        engine = self._engine_for(str(model_path), task, settings)
        config = resolve_sampling_config(SamplingConfig(), task.sampling_overrides())

        session = engine.start(task.prompt, config)
        style = None if task.no_color else "green"
        stream_fragments(session, self._console, style=style)
        self._console.print()
        return session.result()

    def _engine_for(self, model_path: str, task: InferenceTask, settings: LamarunSettings) -> InferenceEngine:
        updates: dict[str, Any] = {}
        if task.ctx_size is not None:
            updates["ctx_size"] = task.ctx_size
        if task.threads is not None:
            updates["threads"] = task.threads
        task_settings = settings.model_copy(update=updates) if updates else settings

        key = (model_path, task_settings.ctx_size, task_settings.threads)
        engine = self._engines.get(key)
        if engine is None:
            logger.info("Loading %s (ctx=%d)", model_path, task_settings.ctx_size)
            engine = self._engine_factory(task_settings, model_path)
            self._engines[key] = engine
        return engine

    def _write_output(self, task: InferenceTask, text: str) -> Path | None:
        if not task.output_file:
            return None
        path = Path(task.output_file)
        if not path.is_absolute():
            path = self._base_dir / path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        self._console.print(f"[dim]Saved output to {path}[/dim]")
        return path

    def _close_engines(self) -> None:
        for engine in self._engines.values():
            engine.close()
        self._engines.clear()
