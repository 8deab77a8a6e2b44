"""
Provider registry: the set of available AI backends and the default one.

Usage:
    registry = ProviderRegistry()
    registry.register(claude)      # first registration becomes the default
    registry.register(local)
    registry.set_default("local")

    provider = registry.get_default()
"""

from __future__ import annotations

import threading

from aicore.core.console import get_logger
from aicore.providers import AIProvider

logger = get_logger(__name__)


class ProviderRegistry:
    """Registered providers keyed by id, in registration order.

    Mutations happen only through the methods below and are serialized by a
    lock; lookups return None rather than raising.
    """

    def __init__(self) -> None:
        self._providers: dict[str, AIProvider] = {}
        self._default_id: str | None = None
        self._lock = threading.RLock()

    def register(self, provider: AIProvider) -> None:
        """Insert or overwrite a provider by id.

        The first provider ever registered becomes the default.
        """
        with self._lock:
            replaced = provider.id in self._providers
            self._providers[provider.id] = provider
            if self._default_id is None:
                self._default_id = provider.id
                logger.debug("Default AI provider set to %s", provider.id)
        logger.debug("%s AI provider %s", "Replaced" if replaced else "Registered", provider.id)

    def unregister(self, provider_id: str) -> None:
        """Remove a provider; a removed default falls back to the first remaining one."""
        with self._lock:
            if self._providers.pop(provider_id, None) is None:
                return
            if self._default_id == provider_id:
                self._default_id = next(iter(self._providers), None)
                logger.debug("Default AI provider now %s", self._default_id)
        logger.debug("Unregistered AI provider %s", provider_id)

    def get(self, provider_id: str) -> AIProvider | None:
        with self._lock:
            return self._providers.get(provider_id)

    def get_default(self) -> AIProvider | None:
        with self._lock:
            if self._default_id is None:
                return None
            return self._providers.get(self._default_id)

    def set_default(self, provider_id: str) -> None:
        """Make a registered provider the default.

        Raises:
            ValueError: If no provider with this id is registered
        """
        with self._lock:
            if provider_id not in self._providers:
                raise ValueError(f"Provider '{provider_id}' is not registered")
            self._default_id = provider_id
        logger.debug("Default AI provider set to %s", provider_id)

    def list_providers(self) -> list[AIProvider]:
        with self._lock:
            return list(self._providers.values())

    def __contains__(self, provider_id: object) -> bool:
        with self._lock:
            return provider_id in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)


__all__ = ["ProviderRegistry"]
