"""Generation loop: the state machine that drives one request.

States::

    IDLE -> PROMPT_EVAL -> DECODING -> STOPPED(reason)

Each DECODING iteration checks, in priority order: the pending token is
the end-of-sequence marker, the emitted count reached ``max_tokens``, the
window is full with no eviction policy, cancellation was requested.
Otherwise the pending token is appended, its fragment delivered, and the
next token decoded. The next step never starts before the caller has taken
the previous fragment.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

import numpy as np

from lamarun.backend.registry import BackendRegistry
from lamarun.config import (
    LamarunSettings,
    SamplingConfig,
    validate_sampling_config,
    validate_settings,
)
from lamarun.engine.gate import ScoreGate
from lamarun.engine.scheduler import DecodeScheduler
from lamarun.engine.sequence import SequenceStore
from lamarun.engine.types import (
    GenerationResult,
    GenerationStats,
    SessionState,
    StopReason,
)
from lamarun.exceptions import CapacityExceeded, ConfigError, HandleBusy
from lamarun.logging.logger import GenerationLogger
from lamarun.logging.types import StepRecord
from lamarun.sampling.pipeline import SamplingPipeline

if TYPE_CHECKING:
    from collections.abc import Iterator

    from lamarun.backend.base import Batch, InferenceBackend, ModelHandle

logger = logging.getLogger("lamarun")


class GenerationSession:
    """Lazy, single-pass stream of text fragments for one prompt.

    Iterate to drive generation; each ``next()`` runs at most one decode
    step. The session claims its model handle on the first step and
    releases it when it stops. ``cancel()`` may be called from any thread.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        handle: ModelHandle,
        config: SamplingConfig,
        prompt_tokens: list[int],
        pipeline: SamplingPipeline,
        step_logger: GenerationLogger,
        eviction: str = "none",
        keep_tokens: int = 0,
        batch_capacity: int | None = None,
    ) -> None:
        self._backend = backend
        self._handle = handle
        self._config = config
        self._prompt_tokens = list(prompt_tokens)
        self._pipeline = pipeline
        self._step_logger = step_logger

        self._store = SequenceStore(handle.ctx_capacity, eviction, keep_tokens)
        self._gate = ScoreGate()
        self._scheduler = DecodeScheduler(backend, handle, self._gate, batch_capacity)
        self._rng = np.random.default_rng(config.seed)
        self._cancel = threading.Event()

        self._state = SessionState.IDLE
        self._stop_reason: StopReason | None = None
        self._generated: list[int] = []
        self._fragments: list[str] = []
        self._needs_resync = False
        self._prompt_evaluated = 0
        self._decode_steps = 0
        self._prompt_seconds = 0.0
        self._decode_seconds = 0.0

        self._steps = self._run()

    # --- Caller API ---

    def __iter__(self) -> GenerationSession:
        return self

    def __next__(self) -> str:
        return next(self._steps)

    def __enter__(self) -> GenerationSession:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def cancel(self) -> None:
        """Request cooperative cancellation, observed before the next step."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def config(self) -> SamplingConfig:
        return self._config

    def stats(self) -> GenerationStats:
        """Timings so far; final once the session is stopped."""
        return GenerationStats(
            prompt_tokens=self._prompt_evaluated,
            emitted_tokens=len(self._generated),
            decode_steps=self._decode_steps,
            prompt_eval_seconds=self._prompt_seconds,
            decode_seconds=self._decode_seconds,
        )

    def result(self) -> GenerationResult:
        """Drain the remaining fragments and return the final result."""
        for _ in self:
            pass
        if self._stop_reason is None:
            raise RuntimeError("Session ended without a stop reason")
        return GenerationResult(
            text="".join(self._fragments),
            tokens=tuple(self._generated),
            emitted=len(self._generated),
            stop_reason=self._stop_reason,
            stats=self.stats(),
        )

    def close(self) -> None:
        """Stop the session early. A session that is already stopped is unchanged."""
        self._steps.close()
        if self._state is not SessionState.STOPPED:
            self._finish(StopReason.CANCELLED)

    # --- State machine ---

    def _run(self) -> Iterator[str]:
        try:
            self._handle.claim()
        except HandleBusy:
            self._finish(StopReason.ERROR)
            raise
        try:
            token = self._prompt_eval()
            if token is None:
                return
            self._state = SessionState.DECODING

            while True:
                reason = self._check_stop(token)
                if reason is not None:
                    self._finish(reason)
                    return

                yield self._commit(token)

                reason = self._check_stop(None)
                if reason is not None:
                    self._finish(reason)
                    return

                token = self._decode_step()
        except (GeneratorExit, KeyboardInterrupt):
            self._finish(StopReason.CANCELLED)
            raise
        except Exception:
            self._finish(StopReason.ERROR)
            raise
        finally:
            self._handle.release()

    def _prompt_eval(self) -> int | None:
        self._state = SessionState.PROMPT_EVAL
        t_start = time.perf_counter()
        try:
            tokens = self._store.fit_prompt(self._prompt_tokens)
        except CapacityExceeded:
            logger.warning(
                "Prompt of %d tokens does not fit a context of %d and eviction is disabled",
                len(self._prompt_tokens),
                self._store.capacity,
            )
            self._finish(StopReason.CONTEXT_FULL)
            return None

        self._scheduler.reset()
        self._store.extend(tokens)
        self._prompt_evaluated = len(tokens)
        token = self._submit_and_sample(self._scheduler.prompt_batch(tokens), "prompt_eval")
        self._prompt_seconds = time.perf_counter() - t_start
        return token

    def _decode_step(self) -> int:
        t_start = time.perf_counter()
        if self._needs_resync:
            # Evicted positions are gone from the sequence but not from the
            # backend context, so the retained window is evaluated afresh.
            self._needs_resync = False
            self._scheduler.reset()
            batch = self._scheduler.prompt_batch(self._store.tokens())
            phase = "resync"
        else:
            position = self._store.position() - 1
            batch = self._scheduler.step_batch(self._store.tokens()[-1], position)
            phase = "decode"

        token = self._submit_and_sample(batch, phase)
        self._decode_steps += 1
        self._decode_seconds += time.perf_counter() - t_start
        return token

    def _submit_and_sample(self, batch: Batch, phase: str) -> int:
        t_start_ns = time.perf_counter_ns()
        self._scheduler.submit(batch)
        t_backend_ns = time.perf_counter_ns()

        position = batch.end - 1
        scores = self._gate.get_scores(position)
        selection = self._pipeline.select(scores, self._config, self._rng, self._store.tokens())
        t_end_ns = time.perf_counter_ns()

        self._step_logger.log_step(
            StepRecord(
                timestamp_ns=t_start_ns,
                phase=phase,
                position=position,
                batch_tokens=len(batch),
                backend_ms=(t_backend_ns - t_start_ns) / 1_000_000.0,
                sampling_ms=(t_end_ns - t_backend_ns) / 1_000_000.0,
                token_id=selection.token_id,
                token_rank=selection.token_rank,
                token_prob=selection.token_prob,
                num_candidates=selection.num_candidates,
                greedy=selection.greedy,
            )
        )
        return selection.token_id

    def _check_stop(self, token: int | None) -> StopReason | None:
        if token is not None and self._backend.is_end_of_sequence(self._handle, token):
            return StopReason.END_OF_SEQUENCE
        if len(self._generated) >= self._config.max_tokens:
            return StopReason.LENGTH_LIMIT
        if token is not None and not self._store.has_room():
            return StopReason.CONTEXT_FULL
        if self._cancel.is_set():
            return StopReason.CANCELLED
        return None

    def _commit(self, token: int) -> str:
        if self._store.append(token):
            self._needs_resync = True
        self._generated.append(token)
        fragment = self._backend.detokenize(self._handle, [token])
        self._fragments.append(fragment)
        return fragment

    def _finish(self, reason: StopReason) -> None:
        if self._state is SessionState.STOPPED:
            return
        self._state = SessionState.STOPPED
        self._stop_reason = reason
        logger.info(
            "Generation stopped: reason=%s emitted=%d prompt=%.3fs decode=%.3fs",
            reason.value,
            len(self._generated),
            self._prompt_seconds,
            self._decode_seconds,
        )


class InferenceEngine:
    """Facade binding a backend, a loaded model handle and the sampling pipeline.

    Args:
        backend: The inference backend that produced *handle*.
        handle: Loaded model handle.
        settings: Process settings; defaults to ``LamarunSettings()``.
        pipeline: Sampling pipeline; defaults to one built from ``settings.stages``.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        handle: ModelHandle,
        settings: LamarunSettings | None = None,
        pipeline: SamplingPipeline | None = None,
    ) -> None:
        self._settings = settings if settings is not None else LamarunSettings()
        validate_settings(self._settings)
        if self._settings.keep_tokens >= handle.ctx_capacity:
            raise ConfigError(
                f"keep_tokens ({self._settings.keep_tokens}) must be smaller than the "
                f"context capacity ({handle.ctx_capacity})"
            )
        self._backend = backend
        self._handle = handle
        try:
            self._pipeline = pipeline if pipeline is not None else SamplingPipeline(self._settings.stages)
        except KeyError as exc:
            raise ConfigError(str(exc)) from exc
        self._step_logger = GenerationLogger(
            self._settings.log_level, self._settings.diagnostic_mode
        )

    @classmethod
    def from_settings(cls, settings: LamarunSettings, model_path: str) -> InferenceEngine:
        """Load *model_path* with the backend named in ``settings.backend``.

        Raises:
            ConfigError: If the settings are invalid or the backend is unknown.
            BackendFailure: If the model cannot be loaded.
        """
        validate_settings(settings)
        try:
            backend_cls = BackendRegistry.get(settings.backend)
        except KeyError as exc:
            raise ConfigError(str(exc)) from exc
        backend = backend_cls()
        handle = backend.load(
            model_path,
            settings.ctx_size,
            settings.threads,
            settings.batch_capacity,
        )
        return cls(backend, handle, settings)

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def handle(self) -> ModelHandle:
        return self._handle

    @property
    def settings(self) -> LamarunSettings:
        return self._settings

    @property
    def step_logger(self) -> GenerationLogger:
        return self._step_logger

    def start(self, prompt: str, config: SamplingConfig | None = None) -> GenerationSession:
        """Validate *config*, tokenize *prompt* and return a lazy session.

        Raises:
            ConfigError: Before any backend call if *config* is invalid, or
                if the prompt produces no tokens.
        """
        config = config if config is not None else SamplingConfig()
        validate_sampling_config(config)

        prompt_tokens = self._backend.tokenize(self._handle, prompt)
        if not prompt_tokens:
            raise ConfigError("Prompt produced no tokens")

        return GenerationSession(
            self._backend,
            self._handle,
            config,
            prompt_tokens,
            self._pipeline,
            self._step_logger,
            eviction=self._settings.eviction,
            keep_tokens=self._settings.keep_tokens,
            batch_capacity=min(self._settings.batch_capacity, self._handle.batch_capacity),
        )

    def generate(self, prompt: str, config: SamplingConfig | None = None) -> GenerationResult:
        """Run a session to completion."""
        return self.start(prompt, config).result()

    def close(self) -> None:
        """Release the backend's native resources."""
        self._backend.close(self._handle)
