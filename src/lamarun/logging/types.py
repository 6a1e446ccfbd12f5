"""Data types for the diagnostic logging subsystem."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StepRecord:
    """Immutable record of one generation step.

    Attributes:
        timestamp_ns: ``perf_counter_ns()`` at the start of the step.
        phase: ``'prompt_eval'``, ``'decode'`` or ``'resync'``.
        position: Context position whose scores were sampled.
        batch_tokens: Tokens submitted to the backend in this step.
        backend_ms: Time spent in backend submissions (milliseconds).
        sampling_ms: Time spent in the sampling pipeline (milliseconds).
        token_id: Vocabulary index of the selected token.
        token_rank: Rank of selected token (0 = most probable).
        token_prob: Probability of the selected token.
        num_candidates: Number of tokens surviving filtering.
        greedy: True if temperature 0 short-circuited sampling.
    """

    # Timing
    timestamp_ns: int
    phase: str
    position: int
    batch_tokens: int
    backend_ms: float
    sampling_ms: float

    # Selection
    token_id: int
    token_rank: int
    token_prob: float
    num_candidates: int
    greedy: bool
