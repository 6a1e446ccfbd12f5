"""Rich rendering helpers shared by the CLI and the workflow runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.table import Table

if TYPE_CHECKING:
    from rich.console import Console

    from lamarun.engine.session import GenerationSession
    from lamarun.engine.types import GenerationStats, StopReason
    from lamarun.hub import CachedModel


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. ``3.8 GB``."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def stream_fragments(session: GenerationSession, console: Console, style: str | None = None) -> str:
    """Print each fragment as soon as it is produced and return the full text."""
    parts = []
    for fragment in session:
        parts.append(fragment)
        console.print(fragment, end="", style=style, markup=False, highlight=False, soft_wrap=True)
    return "".join(parts)


def stats_table(stats: GenerationStats, stop_reason: StopReason | None = None) -> Table:
    table = Table(title="Generation statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Prompt tokens", str(stats.prompt_tokens))
    table.add_row("Prompt eval", f"{stats.prompt_eval_seconds:.3f} s")
    table.add_row("Generated tokens", str(stats.emitted_tokens))
    table.add_row("Decode", f"{stats.decode_seconds:.3f} s")
    table.add_row("Tokens/second", f"{stats.tokens_per_second:.2f}")
    if stop_reason is not None:
        table.add_row("Stop reason", stop_reason.value)
    return table


def models_table(models: list[CachedModel]) -> Table:
    table = Table(title="Cached models")
    table.add_column("Model", style="cyan")
    table.add_column("Files")
    table.add_column("Size", justify="right")
    for model in models:
        table.add_row(model.model_id, "\n".join(model.files) or "-", format_bytes(model.size_bytes))
    return table


def usage_table(per_model: dict[str, int], total: int) -> Table:
    table = Table(title="Disk usage")
    table.add_column("Model", style="cyan")
    table.add_column("Size", justify="right")
    for model_id, size in per_model.items():
        table.add_row(model_id, format_bytes(size))
    table.add_row("[bold]Total[/bold]", f"[bold]{format_bytes(total)}[/bold]")
    return table
