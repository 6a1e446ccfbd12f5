"""Diagnostic logging subsystem for lamarun.

Provides immutable per-step records and a configurable logger that
supports none/summary/full verbosity and in-memory diagnostic mode.
"""

from lamarun.logging.logger import GenerationLogger
from lamarun.logging.types import StepRecord

__all__ = [
    "GenerationLogger",
    "StepRecord",
]
