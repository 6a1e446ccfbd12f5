"""Command-line interface.

Usage:
    lamarun run -m model.gguf -p "Hello, world"
    lamarun run -m TheBloke/Llama-2-7B-Chat-GGUF --download -p "Hi" --stats
    lamarun pull TheBloke/Llama-2-7B-Chat-GGUF --filename llama-2-7b-chat.Q4_K_M.gguf
    lamarun workflow lamarun.yml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from lamarun import __version__
from lamarun.config import LamarunSettings, SamplingConfig, resolve_sampling_config, validate_settings
from lamarun.display import format_bytes, models_table, stats_table, stream_fragments, usage_table
from lamarun.engine.session import InferenceEngine
from lamarun.exceptions import LamarunError
from lamarun.hub import ModelCache, resolve_model
from lamarun.workflow.config import WorkflowConfig, load_workflow, save_workflow
from lamarun.workflow.runner import WorkflowRunner

app = typer.Typer(
    pretty_exceptions_show_locals=False,
    no_args_is_help=True,
    help="Run GGUF language models locally through llama.cpp.",
)

logger = logging.getLogger("lamarun")


def _configure_logging(verbose: bool, console: Console) -> None:
    handler = RichHandler(console=console, show_path=False, markup=False)
    package_logger = logging.getLogger("lamarun")
    package_logger.handlers = [handler]
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)


def _settings(**overrides: Any) -> LamarunSettings:
    settings = LamarunSettings(**{key: value for key, value in overrides.items() if value is not None})
    validate_settings(settings)
    return settings


def _fail(console: Console, exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    return typer.Exit(code=1)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lamarun {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Fast local LLM inference."""


@app.command()
def run(
    model: str = typer.Option(..., "--model", "-m", help="Path to a GGUF file or a Hugging Face model id"),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Input prompt"),
    max_tokens: int = typer.Option(1024, "--max-tokens", "-n", help="Maximum tokens to generate"),
    temperature: float = typer.Option(0.8, "--temperature", "-t", help="Sampling temperature (0 = greedy)"),
    top_k: int = typer.Option(40, help="Keep the k most likely tokens (0 disables)"),
    top_p: float = typer.Option(0.95, help="Nucleus threshold (1.0 disables)"),
    min_p: float = typer.Option(0.0, help="Minimum probability relative to the best token"),
    repeat_penalty: float = typer.Option(1.0, help="Penalty for recently generated tokens (1.0 disables)"),
    seed: Optional[int] = typer.Option(None, help="Random seed for reproducible sampling"),
    ctx_size: Optional[int] = typer.Option(None, "--ctx-size", "-c", help="Context size in tokens"),
    threads: Optional[int] = typer.Option(None, "--threads", "-j", help="Compute threads"),
    eviction: Optional[str] = typer.Option(None, help="Context overflow policy: none or sliding"),
    keep: Optional[int] = typer.Option(None, help="Prompt tokens pinned by the sliding policy"),
    download: bool = typer.Option(False, help="Download the model from the Hugging Face Hub"),
    hf_filename: Optional[str] = typer.Option(None, help="File to use from the Hub repository"),
    cache_dir: Optional[Path] = typer.Option(None, help="Model cache directory"),
    force_download: bool = typer.Option(False, help="Re-download even if cached"),
    no_color: bool = typer.Option(False, help="Disable colored output"),
    stats: bool = typer.Option(False, "--stats", "-s", help="Show generation statistics"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Generate text from a prompt."""
    console = Console(no_color=no_color, highlight=False)
    _configure_logging(verbose, console)

    try:
        settings = _settings(
            ctx_size=ctx_size,
            threads=threads,
            eviction=eviction,
            keep_tokens=keep,
            cache_dir=cache_dir,
        )
        config = resolve_sampling_config(
            SamplingConfig(),
            {
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_k": top_k,
                "top_p": top_p,
                "min_p": min_p,
                "repeat_penalty": repeat_penalty,
                "seed": seed,
            },
        )
    except LamarunError as exc:
        raise _fail(console, exc) from exc

    if verbose:
        console.print(
            Panel.fit(
                f"[cyan]Model:[/cyan] {model}\n"
                f"[cyan]Max tokens:[/cyan] {config.max_tokens}\n"
                f"[cyan]Temperature:[/cyan] {config.temperature}\n"
                f"[cyan]Top-k:[/cyan] {config.top_k}  [cyan]Top-p:[/cyan] {config.top_p}\n"
                f"[cyan]Context:[/cyan] {settings.ctx_size}",
                title="lamarun",
                border_style="yellow",
            )
        )

    try:
        model_path = resolve_model(
            model,
            ModelCache(settings.cache_dir),
            hf_filename,
            download=download,
            force=force_download,
        )
        logger.info("Loading model: %s", model_path)
        with console.status("Loading model...", spinner="dots"):
            engine = InferenceEngine.from_settings(settings, str(model_path))
    except LamarunError as exc:
        raise _fail(console, exc) from exc

    try:
        session = engine.start(prompt, config)
        if not verbose:
            console.print(prompt, style=None if no_color else "bright_blue", markup=False)
        try:
            stream_fragments(session, console, style=None if no_color else "green")
        except KeyboardInterrupt:
            session.cancel()
            session.close()
            console.print("\n[yellow]Cancelled[/yellow]")
        console.print()
        result = session.result()
    except LamarunError as exc:
        raise _fail(console, exc) from exc
    finally:
        engine.close()

    logger.info("Stop reason: %s", result.stop_reason.value)
    if stats:
        console.print(stats_table(result.stats, result.stop_reason))


@app.command()
def pull(
    model_id: str = typer.Argument(..., help="Hugging Face model id (owner/name)"),
    filename: Optional[str] = typer.Option(None, help="GGUF file to download (default: first published)"),
    cache_dir: Optional[Path] = typer.Option(None, help="Model cache directory"),
    force: bool = typer.Option(False, help="Re-download even if cached"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Download a model into the cache."""
    console = Console(highlight=False)
    _configure_logging(verbose, console)
    try:
        settings = _settings(cache_dir=cache_dir)
        path = resolve_model(model_id, ModelCache(settings.cache_dir), filename, download=True, force=force)
    except LamarunError as exc:
        raise _fail(console, exc) from exc
    console.print(f"[green]Model ready:[/green] {path}")


@app.command("list")
def list_models(
    cache_dir: Optional[Path] = typer.Option(None, help="Model cache directory"),
) -> None:
    """List cached models."""
    console = Console(highlight=False)
    try:
        settings = _settings(cache_dir=cache_dir)
    except LamarunError as exc:
        raise _fail(console, exc) from exc
    models = ModelCache(settings.cache_dir).list_models()
    if not models:
        console.print(f"No models cached in {settings.cache_dir}")
        return
    console.print(models_table(models))


@app.command()
def remove(
    model_id: str = typer.Argument(..., help="Hugging Face model id (owner/name)"),
    cache_dir: Optional[Path] = typer.Option(None, help="Model cache directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a cached model."""
    console = Console(highlight=False)
    try:
        settings = _settings(cache_dir=cache_dir)
    except LamarunError as exc:
        raise _fail(console, exc) from exc
    cache = ModelCache(settings.cache_dir)
    if not cache.model_dir(model_id).exists():
        console.print(f"[yellow]Model not cached:[/yellow] {model_id}")
        raise typer.Exit(code=1)
    if not yes and not typer.confirm(f"Remove {model_id}?"):
        raise typer.Abort()
    cache.remove(model_id)
    console.print(f"[green]Removed[/green] {model_id}")


@app.command()
def usage(
    cache_dir: Optional[Path] = typer.Option(None, help="Model cache directory"),
) -> None:
    """Show disk usage of the model cache."""
    console = Console(highlight=False)
    try:
        settings = _settings(cache_dir=cache_dir)
    except LamarunError as exc:
        raise _fail(console, exc) from exc
    per_model, total = ModelCache(settings.cache_dir).disk_usage()
    if not per_model:
        console.print(f"No models cached in {settings.cache_dir} ({format_bytes(total)})")
        return
    console.print(usage_table(per_model, total))


@app.command()
def workflow(
    file: Path = typer.Argument(..., help="Workflow YAML file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run the model and inference tasks of a workflow file."""
    console = Console(highlight=False)
    _configure_logging(verbose, console)
    try:
        config = load_workflow(file)
        title = config.name or file.name
        console.print(Panel.fit(config.description or title, title=title, border_style="blue"))
        outcomes = WorkflowRunner(config, base_dir=file.resolve().parent, console=console).run()
    except LamarunError as exc:
        raise _fail(console, exc) from exc

    failed = [outcome for outcome in outcomes if not outcome.ok]
    console.print(f"\n[bold]{len(outcomes) - len(failed)}/{len(outcomes)} steps succeeded[/bold]")
    if failed:
        raise typer.Exit(code=1)


@app.command("init-config")
def init_config(
    file: Path = typer.Argument(Path("lamarun.yml"), help="Where to write the sample workflow"),
    force: bool = typer.Option(False, help="Overwrite an existing file"),
) -> None:
    """Write a sample workflow file."""
    console = Console(highlight=False)
    if file.exists() and not force:
        console.print(f"[yellow]{file} already exists[/yellow] (use --force to overwrite)")
        raise typer.Exit(code=1)
    save_workflow(WorkflowConfig.generate_sample(), file)
    console.print(f"[green]Wrote sample workflow to[/green] {file}")


if __name__ == "__main__":
    app()
