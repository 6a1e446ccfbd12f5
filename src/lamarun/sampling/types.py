"""Data types for the sampling subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class SelectionResult:
    """Result of running the sampling pipeline on one score vector.

    Attributes:
        token_id: Vocabulary index of the selected token.
        token_rank: Rank among probability-sorted candidates (0 = most probable).
        token_prob: Probability of the selected token after filtering.
        num_candidates: Number of tokens surviving every filter.
        greedy: True when temperature 0 short-circuited the pipeline.
        diagnostics: Additional info (stages applied, random draw).
    """

    token_id: int
    token_rank: int
    token_prob: float
    num_candidates: int
    greedy: bool = False
    diagnostics: dict[str, Any] = field(default_factory=dict)
