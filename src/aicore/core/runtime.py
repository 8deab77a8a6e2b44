"""
Composition root for the AI core.

Wires the provider registry, router, context manager, cost tracker and
pipeline engine from an `AppConfig`, and exposes the wired set through a
context variable so async tasks and threads each see their own runtime.

Usage:
    from aicore.core.runtime import build_runtime, runtime_context, get_runtime

    config, _ = load_config()
    with runtime_context(build_runtime(config, ledger, providers=[claude])):
        router = get_runtime().router
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from aicore.core.config import AppConfig
from aicore.core.console import get_logger
from aicore.core.context import ContextBudget, ContextManager
from aicore.core.cost_tracker import CostTracker, UsageLedger
from aicore.pipeline.engine import PipelineEngine
from aicore.providers import AIProvider
from aicore.providers.registry import ProviderRegistry
from aicore.providers.router import FallbackChain, ModelRouter, RouteTarget

logger = get_logger(__name__)


@dataclass
class AIRuntime:
    """The five AI core components sharing one registry.

    Attributes:
        config: Configuration the runtime was built from
        registry: Registered providers and the default
        router: Task routing and fallback chains over `registry`
        context: System context and history trimming
        costs: Usage recording and budget enforcement
        pipelines: Pipeline definitions and executor
    """

    config: AppConfig
    registry: ProviderRegistry
    router: ModelRouter
    context: ContextManager
    costs: CostTracker
    pipelines: PipelineEngine


def build_runtime(
    config: AppConfig,
    ledger: UsageLedger,
    providers: Iterable[AIProvider] = (),
    *,
    clock: Callable[[], datetime] = datetime.now,
) -> AIRuntime:
    """Build an `AIRuntime` from configuration.

    Providers are registered in the given order. The configured default
    provider is applied only when it was registered; otherwise the first
    registered provider stays the default.
    """
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider)

    default_provider = config.routing.default_provider
    if default_provider is not None:
        if default_provider in registry:
            registry.set_default(default_provider)
        else:
            logger.warning("Configured default provider %s is not registered", default_provider)

    router = ModelRouter(registry)
    for task_type, route in config.routing.routes.items():
        router.set_route(task_type, route.provider_id, route.model_id)
    for task_type, chain in config.routing.fallbacks.items():
        router.set_fallback_chain(
            FallbackChain(
                task_type,
                tuple(RouteTarget(c.provider_id, c.model_id) for c in chain),
            )
        )

    context = ContextManager(
        ContextBudget(
            max_context_tokens=config.context.max_context_tokens,
            reserved_output_tokens=config.context.reserved_output_tokens,
        )
    )

    costs = CostTracker(ledger, clock=clock)
    daily = config.budget.daily
    monthly = config.budget.monthly
    costs.set_daily_budget(max_cost_usd=daily.max_cost_usd, max_operations=daily.max_operations)
    costs.set_monthly_budget(
        max_cost_usd=monthly.max_cost_usd, max_operations=monthly.max_operations
    )

    logger.debug(
        "AI runtime ready: %d providers, %d routes, %d fallback chains",
        len(registry),
        len(config.routing.routes),
        len(config.routing.fallbacks),
    )

    return AIRuntime(
        config=config,
        registry=registry,
        router=router,
        context=context,
        costs=costs,
        pipelines=PipelineEngine(),
    )


# Context variable for async/thread isolation
_runtime_ctx: contextvars.ContextVar[AIRuntime | None] = contextvars.ContextVar(
    "aicore_runtime",
    default=None,
)


class NoRuntimeContextError(RuntimeError):
    """Raised when get_runtime() is called outside a runtime_context block."""

    def __init__(self) -> None:
        super().__init__(
            "No AI runtime available. Wrap entrypoints in 'with runtime_context(runtime):'."
        )


def get_runtime() -> AIRuntime:
    """Get the active runtime.

    Raises:
        NoRuntimeContextError: If called outside a runtime_context block
    """
    runtime = _runtime_ctx.get()
    if runtime is None:
        raise NoRuntimeContextError()
    return runtime


def get_runtime_or_none() -> AIRuntime | None:
    return _runtime_ctx.get()


@contextmanager
def runtime_context(runtime: AIRuntime) -> Iterator[AIRuntime]:
    """Make `runtime` the active runtime for the duration of the block."""
    token = _runtime_ctx.set(runtime)
    try:
        yield runtime
    finally:
        _runtime_ctx.reset(token)


__all__ = [
    "AIRuntime",
    "NoRuntimeContextError",
    "build_runtime",
    "get_runtime",
    "get_runtime_or_none",
    "runtime_context",
]
