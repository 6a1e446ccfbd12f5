"""Sampling pipeline: one score vector in, one token id out.

Pipeline:
    0. temperature == 0 -> arg-max over the raw scores, nothing else runs
    1. Each enabled stage in order (temperature, repeat_penalty, top_k,
       top_p, min_p by default)
    2. Softmax over the surviving scores
    3. Descending sort, CDF, binary search with a uniform draw from the
       session's random generator
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from lamarun.config import DEFAULT_STAGES

# Importing the stage modules registers them.
from lamarun.sampling import filters, penalties, temperature  # noqa: F401
from lamarun.sampling.base import descending_order, stable_softmax
from lamarun.sampling.registry import StageRegistry
from lamarun.sampling.types import SelectionResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lamarun.config import SamplingConfig


class SamplingPipeline:
    """Ordered sequence of sampling stages.

    The pipeline keeps no per-call state: given the same scores, config,
    history and generator state it always selects the same token, and it is
    safe to share between sessions.

    Args:
        stages: Stage names in application order. Defaults to ``DEFAULT_STAGES``.
    """

    def __init__(self, stages: Sequence[str] | None = None) -> None:
        names = list(stages) if stages is not None else list(DEFAULT_STAGES)
        self._stages = StageRegistry.build(names)

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    def select(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        rng: np.random.Generator,
        history: Sequence[int] = (),
    ) -> SelectionResult:
        """Select one token from *scores*.

        Args:
            scores: 1-D score vector (vocab_size,). Not modified.
            config: Validated sampling configuration.
            rng: The session's random generator.
            history: Tokens already in the sequence, oldest first.

        Returns:
            SelectionResult with the chosen token and diagnostics.

        Raises:
            ValueError: If *scores* is not a non-empty 1-D vector.
        """
        raw = np.asarray(scores, dtype=np.float64)
        if raw.ndim != 1 or raw.size == 0:
            raise ValueError(f"scores must be a non-empty 1-D vector, got shape {raw.shape}")

        if config.temperature == 0:
            # np.argmax returns the first maximum, so ties go to the lowest index.
            return SelectionResult(
                token_id=int(np.argmax(raw)),
                token_rank=0,
                token_prob=1.0,
                num_candidates=1,
                greedy=True,
                diagnostics={"greedy": True},
            )

        working = raw
        applied: list[str] = []
        for stage in self._stages:
            if stage.is_enabled(config):
                working = stage.apply(working, config, history)
                applied.append(stage.name)

        probs = stable_softmax(working)
        u = float(rng.random())
        vocab_idx, rank, prob, num_candidates = self._cdf_select(probs, u)

        return SelectionResult(
            token_id=vocab_idx,
            token_rank=rank,
            token_prob=prob,
            num_candidates=num_candidates,
            diagnostics={"stages": applied, "u": u},
        )

    @staticmethod
    def _cdf_select(probs: np.ndarray, u: float) -> tuple[int, int, float, int]:
        """Select a token via CDF binary search.

        Args:
            probs: Probability array (vocab_size,). Must sum to ~1.0.
            u: Uniform random value in [0, 1).

        Returns:
            Tuple of (vocabulary index, rank, probability, num_candidates).
        """
        order = descending_order(probs)
        num_candidates = int(np.count_nonzero(probs > 0))
        candidate_indices = order[:num_candidates]
        candidate_probs = probs[candidate_indices]

        cdf = np.cumsum(candidate_probs)
        # Scale by the final CDF value so rounding never leaves u unreachable.
        rank = int(np.searchsorted(cdf, u * cdf[-1], side="right"))
        rank = min(rank, num_candidates - 1)

        return int(candidate_indices[rank]), rank, float(candidate_probs[rank]), num_candidates
