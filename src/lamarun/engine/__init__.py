"""Generation loop and the components it drives."""

from lamarun.engine.gate import ScoreGate
from lamarun.engine.scheduler import DecodeScheduler
from lamarun.engine.sequence import SequenceStore
from lamarun.engine.session import GenerationSession, InferenceEngine
from lamarun.engine.types import (
    GenerationResult,
    GenerationStats,
    SessionState,
    StopReason,
)

__all__ = [
    "DecodeScheduler",
    "GenerationResult",
    "GenerationSession",
    "GenerationStats",
    "InferenceEngine",
    "ScoreGate",
    "SequenceStore",
    "SessionState",
    "StopReason",
]
