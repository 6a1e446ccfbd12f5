"""Base class for sampling stages and shared numeric helpers.

A stage receives the working score vector (float64, masked entries set to
``-inf``), the request's SamplingConfig and the token history, and returns
a new score vector. Stages never mutate their input.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lamarun.config import SamplingConfig


class SamplingStage(ABC):
    """Abstract base class for one step of the sampling pipeline."""

    name: str = ""

    def is_enabled(self, config: SamplingConfig) -> bool:
        """Whether the stage has any effect under *config*. Default: always."""
        return True

    @abstractmethod
    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        """Return a transformed copy of *scores*.

        Args:
            scores: 1-D float64 score vector; ``-inf`` marks removed entries.
            config: Active sampling configuration.
            history: Tokens already in the sequence, oldest first.

        Returns:
            New score vector of the same shape.
        """


def stable_softmax(scores: np.ndarray) -> np.ndarray:
    """Numerically stable softmax via shift-by-max.

    Args:
        scores: 1-D score array (may contain -inf for masked tokens).

    Returns:
        Probability array of the same shape, summing to 1.0.
    """
    finite_mask = np.isfinite(scores)
    if not np.any(finite_mask):
        # All masked: uniform over all tokens (degenerate case).
        n = len(scores)
        return np.full(n, 1.0 / n)

    shifted = scores - np.max(scores[finite_mask])
    # -inf - max is still -inf, exp(-inf) = 0.
    exp_shifted = np.exp(shifted)
    result: np.ndarray = exp_shifted / np.sum(exp_shifted)
    return result


def descending_order(values: np.ndarray) -> np.ndarray:
    """Indices sorting *values* high to low, equal values by ascending index."""
    return np.argsort(-values, kind="stable")
