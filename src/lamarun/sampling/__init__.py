"""Sampling subsystem for lamarun.

Converts one position's score vector into a chosen token through an
ordered pipeline of pluggable stages.
"""

from lamarun.sampling.base import SamplingStage, stable_softmax
from lamarun.sampling.filters import MinPStage, TopKStage, TopPStage
from lamarun.sampling.penalties import RepeatPenaltyStage
from lamarun.sampling.pipeline import SamplingPipeline
from lamarun.sampling.registry import StageRegistry
from lamarun.sampling.temperature import TemperatureStage
from lamarun.sampling.types import SelectionResult

__all__ = [
    "MinPStage",
    "RepeatPenaltyStage",
    "SamplingPipeline",
    "SamplingStage",
    "SelectionResult",
    "StageRegistry",
    "TemperatureStage",
    "TopKStage",
    "TopPStage",
    "stable_softmax",
]
