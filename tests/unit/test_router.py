"""Unit tests for the model router: resolution order and fallback chains."""

from __future__ import annotations

import logging

import pytest

from aicore.providers import (
    AuthenticationError,
    CompletionRequest,
    Message,
    Model,
    NetworkError,
    ProviderUnavailableError,
    RateLimitError,
    StreamChunk,
)
from aicore.providers.registry import ProviderRegistry
from aicore.providers.router import FallbackChain, ModelRouter, RouteTarget
from tests.mocks.mock_provider import MockProvider

M1 = Model("m1", "Model 1", 100_000, "0.003", "0.015")
M2 = Model("m2", "Model 2", 100_000, "0.001", "0.005")

REQUEST = CompletionRequest(messages=[Message(role="user", content="hello")])


@pytest.fixture
def claude() -> MockProvider:
    return MockProvider("claude", models=[M1, M2], content="from claude")


@pytest.fixture
def local() -> MockProvider:
    return MockProvider("local", models=[M2], content="from local")


@pytest.fixture
def router(registry: ProviderRegistry, claude: MockProvider, local: MockProvider) -> ModelRouter:
    registry.register(claude)
    registry.register(local)
    return ModelRouter(registry)


class TestRouteConfiguration:
    def test_set_and_get_routes(self, router: ModelRouter) -> None:
        router.set_route("classify", "claude", "m1")
        router.set_route("classify", "local", "m2")
        routes = router.get_routes()
        assert len(routes) == 1
        assert (routes[0].provider_id, routes[0].model_id) == ("local", "m2")

    def test_remove_route_clears_fallback_chain(self, router: ModelRouter) -> None:
        router.set_route("draft", "claude", "m1")
        router.set_fallback_chain(FallbackChain("draft", [RouteTarget("claude", "m1")]))
        router.remove_route("draft")
        assert router.get_routes() == []
        assert router.get_fallback_chains() == []

    def test_fallback_chain_is_stored_as_tuple(self, router: ModelRouter) -> None:
        router.set_fallback_chain(FallbackChain("x", [RouteTarget("claude", "m1")]))
        (chain,) = router.get_fallback_chains()
        assert chain.chain == (RouteTarget("claude", "m1"),)


class TestResolve:
    def test_explicit_route_wins(self, router: ModelRouter) -> None:
        router.set_route("classify", "local", "m2")
        router.set_route("general", "claude", "m1")
        provider, model = router.resolve("classify")
        assert (provider.id, model.id) == ("local", "m2")

    def test_general_route_used_when_no_explicit(self, router: ModelRouter) -> None:
        router.set_route("general", "claude", "m2")
        provider, model = router.resolve("summarize")
        assert (provider.id, model.id) == ("claude", "m2")

    def test_default_provider_first_model(self, router: ModelRouter) -> None:
        provider, model = router.resolve("anything")
        assert (provider.id, model.id) == ("claude", "m1")

    def test_unresolvable_route_skips_general_for_default(self, router: ModelRouter) -> None:
        router.set_route("classify", "gone", "m1")
        router.set_route("general", "local", "m2")
        provider, model = router.resolve("classify")
        assert (provider.id, model.id) == ("claude", "m1")

    def test_unresolvable_general_route_uses_default(self, router: ModelRouter) -> None:
        router.set_route("general", "gone", "m2")
        provider, model = router.resolve("summarize")
        assert (provider.id, model.id) == ("claude", "m1")

    def test_route_to_unknown_model_falls_through(self, router: ModelRouter) -> None:
        router.set_route("classify", "local", "m1")
        provider, model = router.resolve("classify")
        assert (provider.id, model.id) == ("claude", "m1")

    def test_empty_registry_raises_non_retryable(self) -> None:
        router = ModelRouter(ProviderRegistry())
        with pytest.raises(ProviderUnavailableError) as exc_info:
            router.resolve("classify")
        assert exc_info.value.retryable is False
        assert exc_info.value.provider == "router"
        assert "No AI provider available for routing" in str(exc_info.value)

    def test_default_provider_without_models_raises(self, registry: ProviderRegistry) -> None:
        registry.register(MockProvider("empty", models=[]))
        with pytest.raises(ProviderUnavailableError):
            ModelRouter(registry).resolve("x")


class TestCompleteWithFallback:
    @pytest.mark.asyncio
    async def test_retryable_error_advances_to_next_candidate(
        self, router: ModelRouter, claude: MockProvider
    ) -> None:
        claude.simulate_error(RateLimitError("slow down", provider="claude"), on_call=1)
        router.set_fallback_chain(
            FallbackChain("classify", [RouteTarget("claude", "m1"), RouteTarget("claude", "m2")])
        )

        response = await router.complete_with_fallback("classify", REQUEST)

        assert response.model == "m2"
        assert response.content == "from claude"
        assert claude.call_count == 2

    @pytest.mark.asyncio
    async def test_candidate_model_is_substituted(
        self, router: ModelRouter, local: MockProvider
    ) -> None:
        router.set_fallback_chain(FallbackChain("draft", [RouteTarget("local", "m2")]))
        await router.complete_with_fallback("draft", REQUEST)
        (sent,) = local.requests
        assert isinstance(sent, CompletionRequest)
        assert sent.model == "m2"
        assert sent.messages == REQUEST.messages

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(
        self, router: ModelRouter, claude: MockProvider, local: MockProvider
    ) -> None:
        claude.simulate_error(AuthenticationError("bad key", provider="claude"))
        router.set_fallback_chain(
            FallbackChain("classify", [RouteTarget("claude", "m1"), RouteTarget("local", "m2")])
        )
        with pytest.raises(AuthenticationError):
            await router.complete_with_fallback("classify", REQUEST)
        assert local.call_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_chain_raises_last_error(
        self, router: ModelRouter, claude: MockProvider, local: MockProvider
    ) -> None:
        claude.simulate_error(RateLimitError("first", provider="claude"))
        last = NetworkError("second", provider="local")
        local.simulate_error(last)
        router.set_fallback_chain(
            FallbackChain("classify", [RouteTarget("claude", "m1"), RouteTarget("local", "m2")])
        )
        with pytest.raises(NetworkError) as exc_info:
            await router.complete_with_fallback("classify", REQUEST)
        assert exc_info.value is last

    @pytest.mark.asyncio
    async def test_unregistered_candidates_are_skipped(
        self, router: ModelRouter, local: MockProvider
    ) -> None:
        router.set_fallback_chain(
            FallbackChain("classify", [RouteTarget("ghost", "m1"), RouteTarget("local", "m2")])
        )
        response = await router.complete_with_fallback("classify", REQUEST)
        assert response.content == "from local"

    @pytest.mark.asyncio
    async def test_no_chain_makes_single_attempt_via_resolve(
        self, router: ModelRouter, local: MockProvider
    ) -> None:
        router.set_route("summarize", "local", "m2")
        response = await router.complete_with_fallback("summarize", REQUEST)
        assert response.model == "m2"
        assert local.call_count == 1

    @pytest.mark.asyncio
    async def test_no_chain_error_is_not_retried(
        self, router: ModelRouter, claude: MockProvider
    ) -> None:
        claude.simulate_error(RateLimitError("slow", provider="claude"))
        with pytest.raises(RateLimitError):
            await router.complete_with_fallback("anything", REQUEST)
        assert claude.call_count == 1

    @pytest.mark.asyncio
    async def test_all_candidates_unregistered_uses_resolve(
        self, router: ModelRouter, claude: MockProvider
    ) -> None:
        router.set_fallback_chain(FallbackChain("classify", [RouteTarget("ghost", "m1")]))
        response = await router.complete_with_fallback("classify", REQUEST)
        assert response.model == "m1"
        assert claude.call_count == 1


class TestStreamWithFallback:
    @staticmethod
    async def _collect(router: ModelRouter, task_type: str) -> list[StreamChunk]:
        return [chunk async for chunk in router.stream_with_fallback(task_type, REQUEST)]

    @pytest.mark.asyncio
    async def test_streams_from_resolved_provider(self, router: ModelRouter) -> None:
        chunks = await self._collect(router, "chat")
        text = "".join(c.content or "" for c in chunks if c.type == "text")
        assert text == "from claude"
        assert chunks[-1].type == "done"
        assert chunks[-1].model == "m1"

    @pytest.mark.asyncio
    async def test_retries_before_first_chunk(
        self, router: ModelRouter, claude: MockProvider
    ) -> None:
        claude.simulate_error(RateLimitError("slow", provider="claude"))
        router.set_fallback_chain(
            FallbackChain("chat", [RouteTarget("claude", "m1"), RouteTarget("local", "m2")])
        )
        chunks = await self._collect(router, "chat")
        text = "".join(c.content or "" for c in chunks if c.type == "text")
        assert text == "from local"

    @pytest.mark.asyncio
    async def test_no_retry_after_first_chunk(
        self, router: ModelRouter, claude: MockProvider, local: MockProvider
    ) -> None:
        claude.simulate_error(RateLimitError("mid-stream", provider="claude"), after_chunks=1)
        router.set_fallback_chain(
            FallbackChain("chat", [RouteTarget("claude", "m1"), RouteTarget("local", "m2")])
        )
        received: list[StreamChunk] = []
        with pytest.raises(RateLimitError):
            async for chunk in router.stream_with_fallback("chat", REQUEST):
                received.append(chunk)
        assert [c.content for c in received] == ["from"]
        assert local.call_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_chain_is_logged_before_resolved_stream(
        self,
        router: ModelRouter,
        local: MockProvider,
        caplog: pytest.LogCaptureFixture,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(logging.getLogger("aicore"), "propagate", True)
        local.simulate_error(NetworkError("offline", provider="local"))
        router.set_fallback_chain(
            FallbackChain("chat", [RouteTarget("ghost", "m1"), RouteTarget("local", "m2")])
        )

        with caplog.at_level(logging.DEBUG, logger="aicore.providers.router"):
            chunks = await self._collect(router, "chat")

        text = "".join(c.content or "" for c in chunks if c.type == "text")
        assert text == "from claude"
        messages = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert (logging.DEBUG, "Skipping unregistered provider ghost") in messages
        assert any(
            level == logging.ERROR and msg.startswith("Fallback chain exhausted for chat")
            for level, msg in messages
        )
