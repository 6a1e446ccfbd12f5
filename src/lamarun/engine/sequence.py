"""Token history for one generation session."""

from __future__ import annotations

import logging

from lamarun.exceptions import CapacityExceeded

logger = logging.getLogger("lamarun")


class SequenceStore:
    """Append-only token sequence bounded by the context window.

    With ``eviction="sliding"`` a full window drops half of the tokens after
    the pinned prefix (the first ``keep`` tokens) before appending, the way
    llama.cpp performs its context shift. With ``eviction="none"`` a full
    window rejects the append.

    Args:
        capacity: Context window size in tokens.
        eviction: ``'none'`` or ``'sliding'``.
        keep: Pinned prefix length preserved by the sliding policy.
    """

    def __init__(self, capacity: int, eviction: str = "none", keep: int = 0) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        if not 0 <= keep < capacity:
            raise ValueError(f"keep must be in [0, {capacity}), got {keep}")
        self._capacity = capacity
        self._eviction = eviction
        self._keep = keep
        self._tokens: list[int] = []
        self._evicted_total = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def can_evict(self) -> bool:
        return self._eviction == "sliding"

    @property
    def evicted_total(self) -> int:
        """Tokens dropped by the sliding policy over the session."""
        return self._evicted_total

    def position(self) -> int:
        """Current length, i.e. the position the next token will occupy."""
        return len(self._tokens)

    def has_room(self) -> bool:
        """Whether one more token fits, counting eviction as room."""
        return len(self._tokens) < self._capacity or self.can_evict

    def tokens(self) -> tuple[int, ...]:
        return tuple(self._tokens)

    def append(self, token: int) -> int:
        """Append *token*, evicting first if the window is full.

        Returns:
            Number of tokens evicted to make room (0 when none were).

        Raises:
            CapacityExceeded: If the window is full and eviction is disabled.
        """
        evicted = 0
        if len(self._tokens) >= self._capacity:
            if not self.can_evict:
                raise CapacityExceeded(self._capacity)
            evicted = self._evict()
        self._tokens.append(token)
        return evicted

    def extend(self, tokens: list[int]) -> None:
        """Append a whole prompt. The prompt must already fit the window."""
        if len(self._tokens) + len(tokens) > self._capacity:
            raise CapacityExceeded(self._capacity)
        self._tokens.extend(tokens)

    def fit_prompt(self, tokens: list[int]) -> list[int]:
        """Trim a prompt longer than the window.

        Keeps the pinned prefix and the most recent tail when eviction is
        enabled.

        Raises:
            CapacityExceeded: If the prompt does not fit and eviction is disabled.
        """
        if len(tokens) <= self._capacity:
            return list(tokens)
        if not self.can_evict:
            raise CapacityExceeded(self._capacity)
        tail = self._capacity - self._keep
        trimmed = list(tokens[: self._keep]) + list(tokens[-tail:])
        logger.warning(
            "Prompt of %d tokens truncated to %d (kept %d pinned)",
            len(tokens),
            len(trimmed),
            self._keep,
        )
        return trimmed

    def _evict(self) -> int:
        n_left = len(self._tokens) - self._keep
        n_discard = max(1, n_left // 2)
        del self._tokens[self._keep : self._keep + n_discard]
        self._evicted_total += n_discard
        logger.debug("Evicted %d tokens after pinned prefix of %d", n_discard, self._keep)
        return n_discard

    def __len__(self) -> int:
        return len(self._tokens)
