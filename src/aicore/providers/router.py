"""
Model router: per-task (provider, model) selection with ordered fallback.

Routes bind a task type ("classify", "draft", ...) to a provider and model.
Fallback chains list candidates tried strictly in order when a call fails
with a retryable `AIProviderError`.

Usage:
    router = ModelRouter(registry)
    router.set_route("classify", "claude", "claude-haiku")
    router.set_fallback_chain(
        FallbackChain("classify", [RouteTarget("claude", "claude-haiku"),
                                   RouteTarget("local", "llama3")])
    )

    provider, model = router.resolve("classify")
    response = await router.complete_with_fallback("classify", request)
"""

from __future__ import annotations

import threading
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field, replace
from typing import NamedTuple

from aicore.core.console import get_logger
from aicore.providers import (
    AIProvider,
    AIProviderError,
    CompletionRequest,
    CompletionResponse,
    Model,
    ProviderUnavailableError,
    StreamChunk,
    find_model,
)
from aicore.providers.registry import ProviderRegistry

logger = get_logger(__name__)

GENERAL_TASK_TYPE = "general"


@dataclass(frozen=True, slots=True)
class ModelRoute:
    """Explicit task type -> (provider, model) binding."""

    task_type: str
    provider_id: str
    model_id: str


@dataclass(frozen=True, slots=True)
class RouteTarget:
    """One candidate in a fallback chain."""

    provider_id: str
    model_id: str


@dataclass(frozen=True, slots=True)
class FallbackChain:
    """Ordered candidates for a task type."""

    task_type: str
    chain: tuple[RouteTarget, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "chain", tuple(self.chain))


class ResolvedRoute(NamedTuple):
    provider: AIProvider
    model: Model


class ModelRouter:
    """Resolve task types to providers and retry across fallback chains.

    Route and chain configuration is process-wide and guarded by a lock;
    provider calls themselves run outside the lock.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry
        self._routes: dict[str, ModelRoute] = {}
        self._fallbacks: dict[str, FallbackChain] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_route(self, task_type: str, provider_id: str, model_id: str) -> None:
        with self._lock:
            self._routes[task_type] = ModelRoute(task_type, provider_id, model_id)
        logger.debug("Route %s -> %s/%s", task_type, provider_id, model_id)

    def get_routes(self) -> list[ModelRoute]:
        with self._lock:
            return list(self._routes.values())

    def remove_route(self, task_type: str) -> None:
        """Remove the route and any fallback chain for a task type."""
        with self._lock:
            self._routes.pop(task_type, None)
            self._fallbacks.pop(task_type, None)
        logger.debug("Removed routing for %s", task_type)

    def set_fallback_chain(self, chain: FallbackChain) -> None:
        with self._lock:
            self._fallbacks[chain.task_type] = chain
        logger.debug(
            "Fallback chain %s -> %s",
            chain.task_type,
            ", ".join(f"{c.provider_id}/{c.model_id}" for c in chain.chain),
        )

    def get_fallback_chains(self) -> list[FallbackChain]:
        with self._lock:
            return list(self._fallbacks.values())

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, task_type: str) -> ResolvedRoute:
        """Resolve the provider and model serving a task type.

        Order: explicit route for `task_type`, else the "general" route, then
        the default provider with its first-listed model. Only one route is
        consulted: an explicit route whose provider or model is no longer
        registered goes straight to the default, never to "general".

        Raises:
            ProviderUnavailableError: If no provider is available at all
        """
        with self._lock:
            route = self._routes.get(task_type) or self._routes.get(GENERAL_TASK_TYPE)

        if route is not None:
            resolved = self._resolve_target(route.provider_id, route.model_id)
            if resolved is not None:
                return resolved
            logger.debug(
                "Route %s -> %s/%s is not resolvable; using default provider",
                route.task_type,
                route.provider_id,
                route.model_id,
            )

        provider = self._registry.get_default()
        if provider is None or not provider.models:
            raise ProviderUnavailableError(
                "No AI provider available for routing",
                provider="router",
                retryable=False,
            )
        return ResolvedRoute(provider, provider.models[0])

    def _resolve_target(self, provider_id: str, model_id: str) -> ResolvedRoute | None:
        provider = self._registry.get(provider_id)
        if provider is None:
            return None
        model = find_model(provider, model_id)
        if model is None:
            return None
        return ResolvedRoute(provider, model)

    def _chain_for(self, task_type: str) -> Sequence[RouteTarget]:
        with self._lock:
            chain = self._fallbacks.get(task_type)
        return chain.chain if chain is not None else ()

    # -------------------------------------------------------------------------
    # Execution with fallback
    # -------------------------------------------------------------------------

    async def complete_with_fallback(
        self,
        task_type: str,
        request: CompletionRequest,
    ) -> CompletionResponse:
        """Run a completion, advancing through the fallback chain on retryable errors.

        Candidates are tried strictly in order. A non-retryable error propagates
        immediately; an exhausted chain re-raises the last error. Without a
        chain (or when every candidate's provider is unregistered) a single
        attempt is made through `resolve()`.
        """
        last_error: AIProviderError | None = None

        for target in self._chain_for(task_type):
            provider = self._registry.get(target.provider_id)
            if provider is None:
                logger.debug("Skipping unregistered provider %s", target.provider_id)
                continue

            try:
                return await provider.complete(replace(request, model=target.model_id))
            except AIProviderError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                logger.warning(
                    "%s/%s failed for %s (%s); trying next candidate%s",
                    target.provider_id,
                    target.model_id,
                    task_type,
                    exc.kind.value,
                    f" (retry after {exc.retry_after}s)" if exc.retry_after else "",
                )

        if last_error is not None:
            logger.error("Fallback chain exhausted for %s: %s", task_type, last_error)
            raise last_error

        provider, model = self.resolve(task_type)
        return await provider.complete(replace(request, model=model.id))

    async def stream_with_fallback(
        self,
        task_type: str,
        request: CompletionRequest,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion with fallback.

        Retries happen only before the first chunk; once a chunk has been
        yielded the stream is committed to that candidate. An exhausted chain
        falls back to streaming from `resolve()`.
        """
        last_error: AIProviderError | None = None

        for target in self._chain_for(task_type):
            provider = self._registry.get(target.provider_id)
            if provider is None:
                logger.debug("Skipping unregistered provider %s", target.provider_id)
                continue

            started = False
            try:
                async for chunk in provider.stream(replace(request, model=target.model_id)):
                    started = True
                    yield chunk
                return
            except AIProviderError as exc:
                if started or not exc.retryable:
                    raise
                last_error = exc
                logger.warning(
                    "Stream from %s/%s failed for %s (%s); trying next candidate",
                    target.provider_id,
                    target.model_id,
                    task_type,
                    exc.kind.value,
                )

        if last_error is not None:
            logger.error(
                "Fallback chain exhausted for %s: %s; streaming from resolved route",
                task_type,
                last_error,
            )

        provider, model = self.resolve(task_type)
        async for chunk in provider.stream(replace(request, model=model.id)):
            yield chunk


__all__ = [
    "GENERAL_TASK_TYPE",
    "FallbackChain",
    "ModelRoute",
    "ModelRouter",
    "ResolvedRoute",
    "RouteTarget",
]
