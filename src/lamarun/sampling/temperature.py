"""Temperature scaling stage.

Greedy decoding (temperature 0) never reaches this stage: the pipeline
short-circuits to arg-max before any stage runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from lamarun.sampling.base import SamplingStage
from lamarun.sampling.registry import StageRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np

    from lamarun.config import SamplingConfig


@StageRegistry.register("temperature")
class TemperatureStage(SamplingStage):
    """Divides every score by ``config.temperature``."""

    def is_enabled(self, config: SamplingConfig) -> bool:
        return config.temperature > 0 and config.temperature != 1.0

    def apply(
        self,
        scores: np.ndarray,
        config: SamplingConfig,
        history: Sequence[int],
    ) -> np.ndarray:
        return scores / config.temperature
