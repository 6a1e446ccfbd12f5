"""Repetition penalty stage.

Scores of tokens seen in the last ``repeat_last_n`` positions are pushed
down: positive scores divided by the penalty, negative ones multiplied
(https://arxiv.org/abs/1909.05858). Both operations commute with
temperature scaling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from lamarun.sampling.base import SamplingStage
from lamarun.sampling.registry import StageRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lamarun.config import SamplingConfig


@StageRegistry.register("repeat_penalty")
class RepeatPenaltyStage(SamplingStage):
    """Penalizes recently generated tokens."""

    def is_enabled(self, config: SamplingConfig) -> bool:
        return config.repeat_penalty != 1.0 and config.repeat_last_n > 0

    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        recent = list(history)[-config.repeat_last_n :]
        ids = np.unique(np.asarray([t for t in recent if 0 <= t < len(scores)], dtype=np.int64))
        if ids.size == 0:
            return scores

        result = scores.copy()
        selected = result[ids]
        result[ids] = np.where(
            selected < 0,
            selected * config.repeat_penalty,
            selected / config.repeat_penalty,
        )
        return result
