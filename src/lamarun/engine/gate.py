"""Score Buffer Gate: capability-checked access to backend score vectors.

A score vector for position *p* exists if and only if *p* was requested in
the most recently submitted batch. Every other read fails with
:class:`~lamarun.exceptions.ScoresUnavailable` instead of returning stale
or uninitialized data. Nothing survives from one step to the next.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from lamarun.exceptions import ScoresUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger("lamarun")


class ScoreGate:
    """Holds the score vectors of exactly one submitted batch."""

    def __init__(self) -> None:
        self._requested: frozenset[int] = frozenset()
        self._scores: dict[int, np.ndarray] = {}

    @property
    def requested(self) -> frozenset[int]:
        """Positions requested in the most recently opened batch."""
        return self._requested

    def open(self, requested: Iterable[int]) -> None:
        """Start a new step: forget every previous vector and record *requested*."""
        self._requested = frozenset(requested)
        self._scores = {}

    def receive(self, results: Mapping[int, np.ndarray]) -> None:
        """Accept vectors returned by the backend for the open batch.

        Positions that were not requested are dropped. Stored vectors are
        private read-only copies.
        """
        for position, vector in results.items():
            if position not in self._requested:
                logger.debug("Dropping unrequested scores for position %d", position)
                continue
            stored = np.array(vector, dtype=np.float64)
            stored.setflags(write=False)
            self._scores[position] = stored

    def get_scores(self, position: int) -> np.ndarray:
        """Return the read-only score vector for *position*.

        Raises:
            ScoresUnavailable: If *position* was not requested in the last
                batch or the backend did not return it.
        """
        scores = self._scores.get(position)
        if scores is None:
            logger.error(
                "Scores requested for position %d; last batch requested %s, received %s",
                position,
                sorted(self._requested),
                sorted(self._scores),
            )
            raise ScoresUnavailable(position, self._requested)
        return scores

    def has_scores(self, position: int) -> bool:
        return position in self._scores
