"""Registry for sampling stage implementations.

Stages register via the ``@StageRegistry.register()`` decorator. The
pipeline is built from an ordered list of names, so a new stage plugs in
without touching the generation loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from lamarun.sampling.base import SamplingStage


class StageRegistry:
    """Registry mapping string names to SamplingStage classes."""

    _registry: ClassVar[dict[str, type[SamplingStage]]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[SamplingStage]], type[SamplingStage]]:
        """Decorator that registers a SamplingStage class under *name*.

        Raises:
            ValueError: If *name* is already registered.
        """

        def decorator(klass: type[SamplingStage]) -> type[SamplingStage]:
            if name in cls._registry:
                raise ValueError(f"Sampling stage '{name}' is already registered")
            klass.name = name
            cls._registry[name] = klass
            return klass

        return decorator

    @classmethod
    def get(cls, name: str) -> type[SamplingStage]:
        """Return the stage class registered under *name*.

        Raises:
            KeyError: If *name* is not registered.
        """
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry)) or "(none)"
            raise KeyError(f"Unknown sampling stage '{name}'. Available: {available}")
        return cls._registry[name]

    @classmethod
    def build(cls, names: Iterable[str]) -> list[SamplingStage]:
        """Instantiate the stages named in *names*, preserving order."""
        return [cls.get(name)() for name in names]

    @classmethod
    def list_registered(cls) -> list[str]:
        """Return sorted list of registered stage names."""
        return sorted(cls._registry)
