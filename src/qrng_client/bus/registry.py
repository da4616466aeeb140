"""Bus backend registry with entry-point auto-discovery.

Built-in backends are registered at module import time via the
``@register_bus`` decorator. Third-party backends from other packages are
discovered lazily on the first :meth:`BusRegistry.get` call via the
``qrng_client.buses`` entry-point group.
"""

from __future__ import annotations

import importlib.metadata
import logging
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from qrng_client.bus.base import RpcFacade
    from qrng_client.config import QrngClientConfig

logger = logging.getLogger("qrng_client")

_ENTRY_POINT_GROUP = "qrng_client.buses"


class BusRegistry:
    """Registry for bus backend classes.

    Discovery chain:

    1. Built-in backends registered via ``@register_bus`` decorator
    2. Third-party backends discovered via ``qrng_client.buses`` entry points
       (loaded lazily on first ``get()`` call)

    Every backend class is constructed with the run's
    :class:`~qrng_client.config.QrngClientConfig`.
    """

    _registry: ClassVar[dict[str, type[RpcFacade]]] = {}
    _entry_points_loaded: ClassVar[bool] = False

    @classmethod
    def register(cls, name: str) -> Callable[[type[RpcFacade]], type[RpcFacade]]:
        """Decorator to register a backend class under a string key.

        Args:
            name: Unique identifier for the backend (e.g., ``'session'``).

        Returns:
            The original class, unmodified.
        """

        def decorator(bus_cls: type[RpcFacade]) -> type[RpcFacade]:
            cls._registry[name] = bus_cls
            return bus_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[RpcFacade]:
        """Look up a backend class by name.

        Loads entry points on the first call if not already loaded.

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
        raise KeyError(f"Unknown bus backend: {name!r}. Available: {available}")

    @classmethod
    def build(cls, config: QrngClientConfig) -> RpcFacade:
        """Instantiate the backend named by ``config.bus`` (not yet opened)."""
        return cls.get(config.bus)(config)  # type: ignore[call-arg]

    @classmethod
    def list_available(cls) -> list[str]:
        """Return all registered backend names, loading entry points if needed."""
        if not cls._entry_points_loaded:
            cls._load_entry_points()
        return sorted(cls._registry.keys())

    @classmethod
    def _load_entry_points(cls) -> None:
        """Discover and register backends from the entry-point group.

        Errors during individual entry-point loading are logged as warnings
        but do not prevent other backends from loading.
        """
        cls._entry_points_loaded = True
        try:
            eps = importlib.metadata.entry_points(group=_ENTRY_POINT_GROUP)
        except Exception:  # Intentional: must not crash on broken metadata
            logger.warning("Failed to load entry points for %s", _ENTRY_POINT_GROUP, exc_info=True)
            return

        for ep in eps:
            if ep.name in cls._registry:
                continue
            try:
                cls._registry[ep.name] = ep.load()
                logger.debug("Loaded bus backend %r from entry point", ep.name)
            except Exception:  # Intentional: one bad plugin must not block others
                logger.warning(
                    "Failed to load bus backend entry point %r: %s",
                    ep.name,
                    ep.value,
                    exc_info=True,
                )


# Convenience alias used as a decorator in backend modules.
register_bus = BusRegistry.register
