"""Inference backend subsystem for lamarun.

Re-exports the ABC, the handle and batch types, and the registry::

    from lamarun.backend import BackendRegistry, InferenceBackend
"""

from lamarun.backend.base import Batch, InferenceBackend, ModelHandle
from lamarun.backend.llama_cpp import LlamaCppBackend
from lamarun.backend.registry import BackendRegistry, register_backend

__all__ = [
    "BackendRegistry",
    "Batch",
    "InferenceBackend",
    "LlamaCppBackend",
    "ModelHandle",
    "register_backend",
]
