"""Service container holding the wired pipeline components."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Factory = Callable[["ServiceContainer"], Any]
Finalizer = Callable[[Any], None]


class ServiceContainer:
    """Dependency container with lazy singleton semantics and ordered teardown."""

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}
        self._finalizers: dict[str, Finalizer] = {}
        self._instances: dict[str, Any] = {}
        self._resolution_order: list[str] = []

    def register(
        self,
        key: str,
        factory: Callable[[ServiceContainer], T],
        *,
        finalizer: Callable[[T], None] | None = None,
    ) -> None:
        """Register a factory, and optionally its teardown hook, under ``key``."""
        self._factories[key] = factory
        if finalizer is not None:
            self._finalizers[key] = finalizer

    def register_instance(self, key: str, instance: Any) -> None:
        """Register an already constructed service."""
        self._factories[key] = lambda _container: instance
        self._instances[key] = instance
        self._resolution_order.append(key)

    def resolve(self, key: str) -> Any:
        """Resolve a dependency by key, invoking its factory once."""
        if key in self._instances:
            return self._instances[key]
        if key not in self._factories:
            msg = f"Service '{key}' is not registered"
            raise KeyError(msg)
        instance = self._factories[key](self)
        self._instances[key] = instance
        self._resolution_order.append(key)
        return instance

    def try_resolve(self, key: str) -> Any | None:
        """Resolve a dependency if registered; return None otherwise."""
        if key not in self._factories:
            return None
        return self.resolve(key)

    def is_resolved(self, key: str) -> bool:
        """Return ``True`` when ``key`` has already been instantiated."""
        return key in self._instances

    def close(self) -> None:
        """Run finalizers for resolved services, newest first, and forget them."""
        for key in reversed(self._resolution_order):
            finalizer = self._finalizers.get(key)
            if finalizer is None or key not in self._instances:
                continue
            try:
                finalizer(self._instances[key])
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Failed to finalise service '%s'", key)
        self._instances.clear()
        self._resolution_order.clear()


__all__ = ["ServiceContainer"]
