"""Diagnostic logger for per-step generation events.

Uses the standard ``logging`` module with the ``"lamarun"`` logger.
No ``print()`` statements. Supports three verbosity levels and an
in-memory diagnostic mode for post-hoc analysis.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lamarun.logging.types import StepRecord

logger = logging.getLogger("lamarun")


class GenerationLogger:
    """Per-step diagnostic logger.

    Log levels:
        ``"none"``: No logging output. Records are still stored if
        ``diagnostic_mode=True``.

        ``"summary"``: One line per step with the key metrics.

        ``"full"``: Full JSON dump of all record fields.

    Args:
        log_level: ``'none'``, ``'summary'`` or ``'full'``.
        diagnostic_mode: Keep every record in memory.
    """

    def __init__(self, log_level: str = "none", diagnostic_mode: bool = False) -> None:
        self._log_level = log_level
        self._diagnostic_mode = diagnostic_mode
        self._records: list[StepRecord] = []

    def log_step(self, record: StepRecord) -> None:
        """Log a single generation step."""
        if self._diagnostic_mode:
            self._records.append(record)

        if self._log_level == "none":
            return

        if self._log_level == "summary":
            logger.info(
                "%s pos=%d token=%d rank=%d prob=%.4f candidates=%d%s "
                "backend=%.2fms sampling=%.2fms",
                record.phase,
                record.position,
                record.token_id,
                record.token_rank,
                record.token_prob,
                record.num_candidates,
                " [GREEDY]" if record.greedy else "",
                record.backend_ms,
                record.sampling_ms,
            )
        elif self._log_level == "full":
            logger.info("step_record: %s", json.dumps(asdict(record), default=str))

    def get_diagnostic_data(self) -> list[StepRecord]:
        """Return all stored records (empty unless ``diagnostic_mode=True``)."""
        return list(self._records)

    def get_summary_stats(self) -> dict[str, Any]:
        """Compute summary statistics over all stored records.

        Returns:
            Dictionary with aggregate stats, or empty dict if no records.
        """
        if not self._records:
            return {}

        n = len(self._records)
        backend_times = [r.backend_ms for r in self._records]
        sampling_times = [r.sampling_ms for r in self._records]
        return {
            "total_steps": n,
            "decode_steps": sum(1 for r in self._records if r.phase == "decode"),
            "resync_steps": sum(1 for r in self._records if r.phase == "resync"),
            "mean_rank": sum(r.token_rank for r in self._records) / n,
            "mean_prob": sum(r.token_prob for r in self._records) / n,
            "mean_candidates": sum(r.num_candidates for r in self._records) / n,
            "mean_backend_ms": sum(backend_times) / n,
            "max_backend_ms": max(backend_times),
            "mean_sampling_ms": sum(sampling_times) / n,
        }
