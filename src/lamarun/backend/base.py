"""Abstract interface every inference backend implements.

The engine drives a backend only through this narrow surface: load a model
into a fixed-size context, submit batches of tokens asking for score
vectors at chosen positions, clear the context, and convert between text
and tokens. Backends never decide which scores are readable; that is the
job of :class:`~lamarun.engine.gate.ScoreGate`.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from lamarun.exceptions import HandleBusy


@dataclass(frozen=True, slots=True)
class Batch:
    """Contiguous run of tokens submitted in one logical decode call.

    Attributes:
        tokens: Token ids in position order.
        start: Absolute context position of ``tokens[0]``.
        requested: Absolute positions whose score vectors must be returned.
    """

    tokens: tuple[int, ...]
    start: int
    requested: frozenset[int]

    def __post_init__(self) -> None:
        if not self.tokens:
            raise ValueError("Batch must contain at least one token")
        if self.start < 0:
            raise ValueError(f"Batch start must be >= 0, got {self.start}")
        outside = [p for p in self.requested if not self.start <= p < self.end]
        if outside:
            raise ValueError(
                f"Requested positions {sorted(outside)} fall outside batch "
                f"[{self.start}, {self.end})"
            )

    @property
    def end(self) -> int:
        """One past the last position covered by the batch."""
        return self.start + len(self.tokens)

    @property
    def positions(self) -> range:
        """Absolute positions of every token in the batch."""
        return range(self.start, self.end)

    def __len__(self) -> int:
        return len(self.tokens)


@dataclass(eq=False)
class ModelHandle:
    """A loaded model bound to one context window.

    Attributes:
        model_path: File the weights were loaded from.
        ctx_capacity: Context window size fixed at load time.
        vocab_size: Length of every score vector.
        batch_capacity: Largest token count the backend accepts per call.
        native: Backend-specific object (e.g. a ``llama_cpp.Llama``).
    """

    model_path: str
    ctx_capacity: int
    vocab_size: int
    batch_capacity: int
    native: Any = None
    decode_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def claim(self) -> None:
        """Take exclusive ownership of the handle for one session.

        Raises:
            HandleBusy: If another session already owns it.
        """
        if not self._owner.acquire(blocking=False):
            raise HandleBusy(f"Model handle for {self.model_path!r} is in use by another session")

    def release(self) -> None:
        """Give up ownership taken by :meth:`claim`. No-op if not owned."""
        if self._owner.locked():
            self._owner.release()

    @property
    def in_use(self) -> bool:
        """Whether a session currently owns the handle."""
        return self._owner.locked()


class InferenceBackend(ABC):
    """Abstract base for inference backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registered backend identifier (e.g. ``'llama_cpp'``)."""

    @abstractmethod
    def load(
        self,
        model_path: str,
        ctx_capacity: int,
        thread_count: int | None = None,
        batch_capacity: int = 512,
    ) -> ModelHandle:
        """Load model weights and allocate a context window.

        Raises:
            BackendFailure: If the model cannot be loaded.
        """

    @abstractmethod
    def submit(self, handle: ModelHandle, batch: Batch) -> dict[int, np.ndarray]:
        """Evaluate *batch* and return score vectors for its requested positions.

        ``batch.start`` must equal the number of tokens already evaluated in
        the context. Callers serialize access via ``handle.decode_lock``.

        Returns:
            Mapping of absolute position to a 1-D score vector.

        Raises:
            BackendFailure: If the backend rejects the batch.
        """

    @abstractmethod
    def clear(self, handle: ModelHandle) -> None:
        """Forget every evaluated position so the next batch starts at 0."""

    @abstractmethod
    def tokenize(self, handle: ModelHandle, text: str) -> list[int]:
        """Convert *text* to token ids, including any beginning-of-sequence marker."""

    @abstractmethod
    def detokenize(self, handle: ModelHandle, tokens: list[int]) -> str:
        """Convert token ids back to text."""

    @abstractmethod
    def is_end_of_sequence(self, handle: ModelHandle, token: int) -> bool:
        """Whether *token* marks the end of generation."""

    def close(self, handle: ModelHandle) -> None:
        """Release native resources held by *handle*. Default: no-op."""
