"""Backend registry with entry-point auto-discovery.

Built-in backends are registered at module import time via the
``@register_backend`` decorator. Third-party backends from other packages
are discovered lazily on the first :meth:`BackendRegistry.get` call via the
``lamarun.backends`` entry-point group.
"""

from __future__ import annotations

import importlib.metadata
import logging
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from lamarun.backend.base import InferenceBackend

logger = logging.getLogger("lamarun")

_ENTRY_POINT_GROUP = "lamarun.backends"


class BackendRegistry:
    """Registry for inference backend classes.

    Discovery chain:

    1. Built-in backends registered via ``@register_backend``
    2. Third-party backends discovered via ``lamarun.backends`` entry points
       (loaded lazily on first ``get()`` call)
    """

    _registry: ClassVar[dict[str, type[InferenceBackend]]] = {}
    _entry_points_loaded: ClassVar[bool] = False

    @classmethod
    def register(cls, name: str) -> Callable[[type[InferenceBackend]], type[InferenceBackend]]:
        """Decorator to register a backend class under a string key.

        Args:
            name: Unique identifier for the backend (e.g., ``'llama_cpp'``).

        Returns:
            The original class, unmodified.
        """

        def decorator(backend_cls: type[InferenceBackend]) -> type[InferenceBackend]:
            cls._registry[name] = backend_cls
            return backend_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[InferenceBackend]:
        """Look up a backend class by name.

        Raises:
            KeyError: If *name* is not found after loading entry points.
        """
        if name in cls._registry:
            return cls._registry[name]

        if not cls._entry_points_loaded:
            cls._load_entry_points()
            if name in cls._registry:
                return cls._registry[name]

        available = ", ".join(sorted(cls._registry.keys())) or "(none)"
        raise KeyError(f"Unknown backend: {name!r}. Available: {available}")

    @classmethod
    def list_available(cls) -> list[str]:
        """Return all registered backend names, loading entry points first."""
        if not cls._entry_points_loaded:
            cls._load_entry_points()
        return sorted(cls._registry.keys())

    @classmethod
    def _load_entry_points(cls) -> None:
        """Discover and register backends from the entry-point group.

        Errors while loading one entry point are logged as warnings and do
        not prevent other backends from loading.
        """
        cls._entry_points_loaded = True
        try:
            eps = importlib.metadata.entry_points(group=_ENTRY_POINT_GROUP)
        except Exception:  # broken metadata must not crash startup
            logger.warning("Failed to load entry points for %s", _ENTRY_POINT_GROUP, exc_info=True)
            return

        for ep in eps:
            if ep.name in cls._registry:
                # Built-in decorator registration takes precedence.
                continue
            try:
                cls._registry[ep.name] = ep.load()
                logger.debug("Loaded backend %r from entry point", ep.name)
            except Exception:  # one bad plugin must not block others
                logger.warning(
                    "Failed to load backend entry point %r: %s",
                    ep.name,
                    ep.value,
                    exc_info=True,
                )

    @classmethod
    def _reset(cls) -> None:
        """Reset registry state. **Test-only**."""
        cls._registry.clear()
        cls._entry_points_loaded = False


register_backend = BackendRegistry.register
