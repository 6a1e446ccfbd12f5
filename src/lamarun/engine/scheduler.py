"""Decode Scheduler: turns token runs into backend submissions.

Policy:
    - Prompt phase: every prompt token in one logical batch, score
      requested only for the final position (it predicts the first
      generated token).
    - Generation phase: one token per step, its score always requested.

A logical batch larger than the backend's batch capacity is split into
chunks in position order; each chunk carries exactly the requested
positions it covers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lamarun.backend.base import Batch
from lamarun.exceptions import BackendFailure

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lamarun.backend.base import InferenceBackend, ModelHandle
    from lamarun.engine.gate import ScoreGate

logger = logging.getLogger("lamarun")


class DecodeScheduler:
    """Builds batches and submits them to a backend for one model handle.

    Args:
        backend: The inference backend.
        handle: Loaded model handle; its ``decode_lock`` serializes submits.
        gate: Score gate that receives the returned vectors.
        batch_capacity: Largest chunk sent in one backend call. Defaults to
            ``handle.batch_capacity``.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        handle: ModelHandle,
        gate: ScoreGate,
        batch_capacity: int | None = None,
    ) -> None:
        capacity = batch_capacity if batch_capacity is not None else handle.batch_capacity
        if capacity <= 0:
            raise ValueError(f"batch_capacity must be > 0, got {capacity}")
        self._backend = backend
        self._handle = handle
        self._gate = gate
        self._batch_capacity = capacity
        self._submissions = 0

    @property
    def submissions(self) -> int:
        """Backend calls issued so far."""
        return self._submissions

    @staticmethod
    def prompt_batch(tokens: Sequence[int], start: int = 0) -> Batch:
        """Batch of all prompt tokens requesting only the final position."""
        if not tokens:
            raise ValueError("Cannot build a prompt batch from zero tokens")
        end = start + len(tokens)
        return Batch(tokens=tuple(tokens), start=start, requested=frozenset({end - 1}))

    @staticmethod
    def step_batch(token: int, position: int) -> Batch:
        """Single-token batch requesting its own position."""
        return Batch(tokens=(token,), start=position, requested=frozenset({position}))

    def split(self, batch: Batch) -> list[Batch]:
        """Split *batch* into chunks no larger than the batch capacity."""
        if len(batch) <= self._batch_capacity:
            return [batch]
        chunks: list[Batch] = []
        for offset in range(0, len(batch), self._batch_capacity):
            tokens = batch.tokens[offset : offset + self._batch_capacity]
            start = batch.start + offset
            end = start + len(tokens)
            requested = frozenset(p for p in batch.requested if start <= p < end)
            chunks.append(Batch(tokens=tokens, start=start, requested=requested))
        return chunks

    def submit(self, batch: Batch) -> None:
        """Send *batch* to the backend and deliver its scores to the gate.

        Raises:
            BackendFailure: If the backend rejects any chunk. Not retried.
        """
        self._gate.open(batch.requested)
        chunks = self.split(batch)
        if len(chunks) > 1:
            logger.debug("Split %d tokens into %d chunks", len(batch), len(chunks))

        for chunk in chunks:
            with self._handle.decode_lock:
                try:
                    results = self._backend.submit(self._handle, chunk)
                except BackendFailure:
                    raise
                except Exception as exc:
                    raise BackendFailure(str(exc)) from exc
                finally:
                    self._submissions += 1
            self._gate.receive(results)

    def reset(self) -> None:
        """Clear the backend's context for this handle and close the gate."""
        with self._handle.decode_lock:
            try:
                self._backend.clear(self._handle)
            except BackendFailure:
                raise
            except Exception as exc:
                raise BackendFailure(str(exc)) from exc
        self._gate.open(())
