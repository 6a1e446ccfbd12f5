"""Candidate filtering stages: top-k, top-p (nucleus) and min-p.

Every filter masks removed entries with ``-inf`` and always leaves at
least one entry standing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from lamarun.sampling.base import SamplingStage, descending_order, stable_softmax
from lamarun.sampling.registry import StageRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lamarun.config import SamplingConfig


@StageRegistry.register("top_k")
class TopKStage(SamplingStage):
    """Keep the k highest scores; ties go to the lower vocabulary index."""

    def is_enabled(self, config: SamplingConfig) -> bool:
        return config.top_k > 0

    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        k = config.top_k
        if k >= len(scores):
            return scores

        # argpartition would be O(n) but does not give a stable tie order.
        dropped = descending_order(scores)[k:]
        result = scores.copy()
        result[dropped] = -np.inf
        return result


@StageRegistry.register("top_p")
class TopPStage(SamplingStage):
    """Nucleus filter: smallest probability-sorted prefix with mass >= top_p."""

    def is_enabled(self, config: SamplingConfig) -> bool:
        return config.top_p < 1.0

    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        probs = stable_softmax(scores)
        order = descending_order(probs)
        cumulative = np.cumsum(probs[order])

        # Include the token that crosses the threshold, so at least one survives.
        reached = cumulative >= config.top_p
        cutoff = int(np.argmax(reached)) if np.any(reached) else len(order) - 1

        result = np.full_like(scores, -np.inf)
        keep = order[: cutoff + 1]
        result[keep] = scores[keep]
        return result


@StageRegistry.register("min_p")
class MinPStage(SamplingStage):
    """Drop tokens whose probability is below ``min_p`` times the best one."""

    def is_enabled(self, config: SamplingConfig) -> bool:
        return config.min_p > 0.0

    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        probs = stable_softmax(scores)
        threshold = config.min_p * float(np.max(probs))
        result = scores.copy()
        result[probs < threshold] = -np.inf
        return result
