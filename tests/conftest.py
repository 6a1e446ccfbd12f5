"""Shared pytest fixtures for lamarun tests.

Provides a deterministic in-memory backend that plays back a script of
next-token choices, plus engine factories and sample score vectors used
across multiple test modules.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest

from lamarun.backend.base import Batch, InferenceBackend, ModelHandle
from lamarun.config import LamarunSettings, SamplingConfig
from lamarun.engine.session import InferenceEngine
from lamarun.exceptions import BackendFailure

VOCAB: list[str] = [
    "</s>",
    "<s>",
    " Paris",
    " The",
    " capital",
    " of",
    " France",
    " is",
    " a",
    " city",
    " and",
    " the",
    " river",
    " Seine",
    ".",
    "<unk>",
]
EOS_ID = 0
BOS_ID = 1
UNK_ID = 15
WORD_IDS = {piece.strip(): index for index, piece in enumerate(VOCAB) if index > BOS_ID}


class ScriptedBackend(InferenceBackend):
    """Deterministic backend for exercising the generation loop.

    Tokenization splits on whitespace. Every returned score vector peaks
    at the next token of ``script``; once the script runs out, vectors
    peak at ``filler``. Like llama.cpp, each batch must start exactly where
    the evaluated context ends.

    Args:
        script: Token ids to favor, one per returned score vector.
        filler: Token favored after the script is exhausted.
        fail_at: Index of the submit call that raises ``RuntimeError``.
        score_fn: Overrides scripted scores; called with (position, vector index).
    """

    def __init__(
        self,
        script: list[int] | None = None,
        filler: int = 9,
        fail_at: int | None = None,
        score_fn: Callable[[int, int], np.ndarray] | None = None,
    ) -> None:
        self.script = list(script or [])
        self.filler = filler
        self.fail_at = fail_at
        self.score_fn = score_fn
        self.calls: list[tuple[str, object]] = []
        self.batches: list[Batch] = []
        self.n_tokens = 0
        self.vectors_returned = 0
        self.closed = False

    @property
    def name(self) -> str:
        return "scripted"

    def load(
        self,
        model_path: str,
        ctx_capacity: int,
        thread_count: int | None = None,
        batch_capacity: int = 512,
    ) -> ModelHandle:
        self.calls.append(("load", model_path))
        return ModelHandle(
            model_path=model_path,
            ctx_capacity=ctx_capacity,
            vocab_size=len(VOCAB),
            batch_capacity=batch_capacity,
        )

    def submit(self, handle: ModelHandle, batch: Batch) -> dict[int, np.ndarray]:
        self.calls.append(("submit", batch))
        if self.fail_at is not None and len(self.batches) == self.fail_at:
            self.batches.append(batch)
            raise RuntimeError("llama_decode returned -1")
        self.batches.append(batch)
        if batch.start != self.n_tokens:
            raise BackendFailure(f"batch starts at {batch.start}, context holds {self.n_tokens}")
        if batch.end > handle.ctx_capacity:
            raise BackendFailure("batch overflows the context window")
        self.n_tokens = batch.end

        results = {}
        for position in sorted(batch.requested):
            results[position] = self._scores(position)
            self.vectors_returned += 1
        return results

    def _scores(self, position: int) -> np.ndarray:
        if self.score_fn is not None:
            return self.score_fn(position, self.vectors_returned)
        index = self.vectors_returned
        target = self.script[index] if index < len(self.script) else self.filler
        scores = np.full(len(VOCAB), -10.0, dtype=np.float32)
        scores[target] = 10.0
        return scores

    def clear(self, handle: ModelHandle) -> None:
        self.calls.append(("clear", None))
        self.n_tokens = 0

    def tokenize(self, handle: ModelHandle, text: str) -> list[int]:
        self.calls.append(("tokenize", text))
        if not text:
            return []
        return [BOS_ID] + [WORD_IDS.get(word, UNK_ID) for word in text.split()]

    def detokenize(self, handle: ModelHandle, tokens: list[int]) -> str:
        return "".join(VOCAB[token] for token in tokens)

    def is_end_of_sequence(self, handle: ModelHandle, token: int) -> bool:
        return token == EOS_ID

    def close(self, handle: ModelHandle) -> None:
        self.closed = True

    def submitted(self) -> list[Batch]:
        return [call[1] for call in self.calls if call[0] == "submit"]  # type: ignore[misc]


def make_settings(**overrides: object) -> LamarunSettings:
    """Settings isolated from the environment and any .env file."""
    return LamarunSettings(_env_file=None, **overrides)  # type: ignore[call-arg]


EngineFactory = Callable[..., InferenceEngine]


@pytest.fixture
def make_engine() -> EngineFactory:
    """Return a factory building an engine over a fresh ScriptedBackend.

    Keyword arguments ``script``, ``filler``, ``fail_at`` and ``score_fn``
    go to the backend, ``ctx_capacity`` to the handle, everything else to
    LamarunSettings.
    """

    def factory(
        script: list[int] | None = None,
        ctx_capacity: int = 64,
        filler: int = 9,
        fail_at: int | None = None,
        score_fn: Callable[[int, int], np.ndarray] | None = None,
        **settings: object,
    ) -> InferenceEngine:
        backend = ScriptedBackend(script, filler=filler, fail_at=fail_at, score_fn=score_fn)
        handle = backend.load("scripted.gguf", ctx_capacity, None, 512)
        backend.calls.clear()
        return InferenceEngine(backend, handle, make_settings(**settings))

    return factory


@pytest.fixture
def greedy_config() -> SamplingConfig:
    """Return a greedy config with a generous token limit."""
    return SamplingConfig(temperature=0.0, max_tokens=100)


@pytest.fixture
def default_config() -> SamplingConfig:
    """Return a SamplingConfig with all default values."""
    return SamplingConfig()


@pytest.fixture
def sample_scores() -> np.ndarray:
    """Return a small score vector with a clear ordering.

    Index:   0    1    2    3    4    5    6    7
    Score:  1.0  5.0  3.0  2.0  4.0  0.5  3.0  -1.0
    """
    return np.array([1.0, 5.0, 3.0, 2.0, 4.0, 0.5, 3.0, -1.0])


@pytest.fixture
def uniform_scores() -> np.ndarray:
    """Return 100 equal scores."""
    return np.zeros(100)


@pytest.fixture
def backend() -> ScriptedBackend:
    """Return a ScriptedBackend with an empty script."""
    return ScriptedBackend()


@pytest.fixture
def handle(backend: ScriptedBackend) -> ModelHandle:
    """Return a 64-token handle loaded from ``backend``."""
    loaded = backend.load("scripted.gguf", 64, None, 512)
    backend.calls.clear()
    return loaded


@pytest.fixture
def settings_factory() -> Callable[..., LamarunSettings]:
    """Return ``make_settings`` for tests that build settings directly."""
    return make_settings
