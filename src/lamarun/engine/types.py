"""Data types for the generation loop."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class SessionState(str, enum.Enum):
    """Lifecycle of one generation session."""

    IDLE = "idle"
    PROMPT_EVAL = "prompt_eval"
    DECODING = "decoding"
    STOPPED = "stopped"


class StopReason(str, enum.Enum):
    """Why a session reached ``STOPPED``."""

    END_OF_SEQUENCE = "end_of_sequence"
    LENGTH_LIMIT = "length_limit"
    CONTEXT_FULL = "context_full"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class GenerationStats:
    """Phase timings of a session.

    Attributes:
        prompt_tokens: Tokens evaluated during prompt evaluation.
        emitted_tokens: Fragments delivered to the caller.
        decode_steps: Backend submissions made after prompt evaluation.
        prompt_eval_seconds: Time spent evaluating the prompt and sampling
            the first token.
        decode_seconds: Time spent in decode steps. Time the caller spends
            holding a fragment is not counted.
    """

    prompt_tokens: int
    emitted_tokens: int
    decode_steps: int
    prompt_eval_seconds: float
    decode_seconds: float

    @property
    def tokens_per_second(self) -> float:
        """Decode throughput; 0.0 before any decode step finished."""
        if self.decode_seconds <= 0:
            return 0.0
        return self.decode_steps / self.decode_seconds

    @property
    def prompt_tokens_per_second(self) -> float:
        if self.prompt_eval_seconds <= 0:
            return 0.0
        return self.prompt_tokens / self.prompt_eval_seconds


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Final outcome of a session.

    Attributes:
        text: Concatenated fragments.
        tokens: Generated token ids, in order.
        emitted: Number of fragments delivered.
        stop_reason: Terminal reason.
        stats: Phase timings.
    """

    text: str
    tokens: tuple[int, ...]
    emitted: int
    stop_reason: StopReason
    stats: GenerationStats
