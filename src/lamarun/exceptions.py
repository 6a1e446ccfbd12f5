"""Exception hierarchy for lamarun.

All exceptions derive from LamarunError, enabling broad catch patterns
at the CLI boundary while allowing fine-grained handling internally.
"""


class LamarunError(Exception):
    """Base exception for all lamarun errors."""


class ConfigError(LamarunError):
    """Configuration validation failed.

    Raised for an invalid SamplingConfig, settings value or workflow file.
    Always raised before any backend interaction and never retried.
    """


class ScoresUnavailable(LamarunError):
    """A score vector was requested for a position that has none.

    The position was not marked as requested in the most recently submitted
    batch, or the backend did not return it. This is a broken internal
    invariant and is fatal to the session.
    """

    def __init__(self, position: int, requested: frozenset[int]) -> None:
        self.position = position
        self.requested = requested
        wanted = ", ".join(str(p) for p in sorted(requested)) or "none"
        super().__init__(
            f"Scores for position {position} are not available "
            f"(requested in last batch: {wanted})"
        )


class BackendFailure(LamarunError):
    """The inference backend rejected a call.

    Allocation failure, malformed model, rejected batch. Fatal to the
    session; the original message is surfaced unchanged.
    """


class CapacityExceeded(LamarunError):
    """The context window is full and no eviction policy is configured."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Context window of {capacity} tokens is full")


class HandleBusy(LamarunError):
    """A model handle is already owned by another active session."""


class ModelNotFound(LamarunError):
    """A model could not be found locally or in the remote registry."""


class WorkflowError(LamarunError):
    """A workflow task failed and the workflow was not told to continue."""
