"""llama.cpp backend via the ``llama-cpp-python`` bindings.

The bindings are an optional dependency (``pip install lamarun[llama]``)
and are imported only when a model is loaded, so the engine and its tests
never require a compiled llama.cpp.

llama.cpp keeps one score row per decode call unless the context was built
with ``logits_all``; the scheduler only ever asks for the final position of
a submission, which is exactly the row llama.cpp retains. With
``logits_all`` every row is mirrored into ``Llama.scores``.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from lamarun.backend.base import Batch, InferenceBackend, ModelHandle
from lamarun.backend.registry import register_backend
from lamarun.exceptions import BackendFailure

logger = logging.getLogger("lamarun")


@register_backend("llama_cpp")
class LlamaCppBackend(InferenceBackend):
    """Runs GGUF models through ``llama_cpp.Llama``."""

    def __init__(self, logits_all: bool = False, verbose: bool = False) -> None:
        self._logits_all = logits_all
        self._verbose = verbose

    @property
    def name(self) -> str:
        """Return ``'llama_cpp'``."""
        return "llama_cpp"

    def load(
        self,
        model_path: str,
        ctx_capacity: int,
        thread_count: int | None = None,
        batch_capacity: int = 512,
    ) -> ModelHandle:
        try:
            import llama_cpp
        except ImportError as exc:
            raise BackendFailure(
                "llama-cpp-python is not installed; install it with 'pip install lamarun[llama]'"
            ) from exc

        kwargs: dict[str, Any] = {
            "model_path": model_path,
            "n_ctx": ctx_capacity,
            "n_batch": batch_capacity,
            "logits_all": self._logits_all,
            "verbose": self._verbose,
        }
        if thread_count is not None:
            kwargs["n_threads"] = thread_count

        try:
            llm = llama_cpp.Llama(**kwargs)
        except (ValueError, RuntimeError, OSError) as exc:
            raise BackendFailure(f"Failed to load model: {exc}") from exc

        handle = ModelHandle(
            model_path=model_path,
            ctx_capacity=int(llm.n_ctx()),
            vocab_size=int(llm.n_vocab()),
            batch_capacity=batch_capacity,
            native=llm,
        )
        logger.info(
            "Loaded %s: n_ctx=%d n_vocab=%d n_batch=%d",
            model_path,
            handle.ctx_capacity,
            handle.vocab_size,
            batch_capacity,
        )
        return handle

    def submit(self, handle: ModelHandle, batch: Batch) -> dict[int, np.ndarray]:
        llm = handle.native
        if batch.start != llm.n_tokens:
            raise BackendFailure(
                f"Batch starts at position {batch.start} but the context holds {llm.n_tokens} tokens"
            )
        last = batch.end - 1
        if not self._logits_all and any(p != last for p in batch.requested):
            raise BackendFailure(
                f"Only the final position ({last}) of a batch has scores without logits_all; "
                f"requested {sorted(batch.requested)}"
            )

        try:
            llm.eval(list(batch.tokens))
        except RuntimeError as exc:
            raise BackendFailure(f"Failed to decode batch: {exc}") from exc

        if self._logits_all:
            return {p: np.array(llm.scores[p], dtype=np.float32) for p in batch.requested}
        if not batch.requested:
            return {}

        import llama_cpp

        # Without logits_all the context keeps a single row: the final token.
        logits = llama_cpp.llama_get_logits(llm.ctx)
        row = np.ctypeslib.as_array(logits, shape=(handle.vocab_size,))
        return {last: np.array(row, dtype=np.float32)}

    def clear(self, handle: ModelHandle) -> None:
        handle.native.reset()

    def tokenize(self, handle: ModelHandle, text: str) -> list[int]:
        return list(handle.native.tokenize(text.encode("utf-8"), add_bos=True))

    def detokenize(self, handle: ModelHandle, tokens: list[int]) -> str:
        raw: bytes = handle.native.detokenize(tokens)
        return raw.decode("utf-8", errors="ignore")

    def is_end_of_sequence(self, handle: ModelHandle, token: int) -> bool:
        return token == handle.native.token_eos()

    def close(self, handle: ModelHandle) -> None:
        close = getattr(handle.native, "close", None)
        if close is not None:
            close()
