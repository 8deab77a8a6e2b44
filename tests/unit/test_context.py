"""Unit tests for context packing and history trimming."""

from __future__ import annotations

import pytest

from aicore.core.context import (
    ContextBudget,
    ContextManager,
    ContextSource,
    trim_messages,
)
from aicore.core.tokens import TRUNCATION_MARKER, estimate_tokens, truncate_to_tokens
from aicore.providers import Message, Model


def _model(window: int) -> Model:
    return Model("m", "M", window, 0, 0)


def _msg(tokens: int, role: str = "user") -> Message:
    return Message(role=role, content="x" * (tokens * 4))  # type: ignore[arg-type]


class TestTokens:
    @pytest.mark.parametrize(
        "text,expected",
        [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
    )
    def test_estimate(self, text: str, expected: int) -> None:
        assert estimate_tokens(text) == expected

    def test_truncate_appends_marker(self) -> None:
        out = truncate_to_tokens("abcdefghij", 1)
        assert out == f"abcd\n\n{TRUNCATION_MARKER}"

    def test_truncate_with_no_budget_keeps_only_marker(self) -> None:
        assert truncate_to_tokens("abcdef", 0) == f"\n\n{TRUNCATION_MARKER}"
        assert truncate_to_tokens("abcdef", -5) == f"\n\n{TRUNCATION_MARKER}"


class TestBudget:
    def test_defaults(self) -> None:
        budget = ContextManager().get_budget()
        assert budget == ContextBudget(100_000, 4096)

    def test_partial_update_merges(self) -> None:
        manager = ContextManager()
        manager.set_budget(max_context_tokens=50_000)
        manager.set_budget(reserved_output_tokens=1000)
        assert manager.get_budget() == ContextBudget(50_000, 1000)

    def test_budget_for_model_caps_by_window(self) -> None:
        manager = ContextManager()
        budget = manager.budget_for_model(_model(8000), desired_output_tokens=2000)
        assert budget == ContextBudget(6000, 2000)
        assert manager.get_budget() == ContextBudget(100_000, 4096)

    def test_budget_for_model_uses_configured_reserve(self) -> None:
        budget = ContextManager().budget_for_model(_model(200_000))
        assert budget == ContextBudget(100_000, 4096)


class TestSystemContext:
    def test_add_replaces_same_key_and_moves_to_end(self) -> None:
        manager = ContextManager()
        manager.add_system_context(ContextSource("a", "one"))
        manager.add_system_context(ContextSource("b", "two"))
        manager.add_system_context(ContextSource("a", "three"))
        assert manager.get_system_context_keys() == ["b", "a"]

    def test_remove(self) -> None:
        manager = ContextManager()
        manager.add_system_context(ContextSource("a", "one"))
        manager.remove_system_context("a")
        manager.remove_system_context("missing")
        assert manager.get_system_context_keys() == []

    def test_priority_greedy_packing(self) -> None:
        # effective = 10_000, system cap = 4000
        manager = ContextManager(ContextBudget(10_000, 0))
        manager.add_system_context(ContextSource("low", "LOW", priority=50, token_estimate=2000))
        manager.add_system_context(ContextSource("high", "HIGH", priority=100, token_estimate=3000))

        built = manager.build([_msg(1)], _model(100_000))

        assert built.system_prompt == "HIGH"
        assert built.source_keys == ("high",)

    def test_skipped_source_does_not_stop_scan(self) -> None:
        manager = ContextManager(ContextBudget(10_000, 0))
        sources = [
            ContextSource("big", "BIG", priority=10, token_estimate=5000),
            ContextSource("small", "SMALL", priority=5, token_estimate=100),
        ]
        built = manager.build([_msg(1)], _model(100_000), extra_sources=sources)
        assert built.system_prompt == "SMALL"

    def test_sources_joined_in_priority_order(self) -> None:
        manager = ContextManager()
        manager.add_system_context(ContextSource("a", "A", priority=1))
        built = manager.build(
            [_msg(1)],
            _model(100_000),
            extra_sources=[ContextSource("b", "B", priority=2), ContextSource("c", "C", priority=1)],
        )
        assert built.system_prompt == "B\n\nA\n\nC"

    def test_effective_budget_uses_model_window(self) -> None:
        # window 1000 - reserve 0 -> cap 400
        manager = ContextManager(ContextBudget(100_000, 0))
        manager.add_system_context(ContextSource("s", "S", token_estimate=401))
        built = manager.build([_msg(1)], _model(1000))
        assert built.system_prompt == ""


class TestBuildMessages:
    def test_fitting_history_returned_unchanged(self) -> None:
        messages = [_msg(10), _msg(10, "assistant"), _msg(10)]
        built = ContextManager().build(messages, _model(100_000))
        assert built.messages is messages
        assert built.estimated_tokens == 30

    def test_oversized_history_is_trimmed(self) -> None:
        manager = ContextManager(ContextBudget(100, 0))
        messages = [_msg(50), _msg(30, "assistant"), _msg(40)]
        built = manager.build(messages, _model(100_000))
        assert list(built.messages) == messages[1:]

    def test_estimated_tokens_include_system(self) -> None:
        manager = ContextManager(ContextBudget(1000, 0))
        manager.add_system_context(ContextSource("s", "x" * 400))
        built = manager.build([_msg(20)], _model(100_000))
        assert built.estimated_tokens == 120


class TestTrimMessages:
    def test_empty(self) -> None:
        assert trim_messages([], 100) == []

    def test_final_message_always_kept(self) -> None:
        messages = [_msg(10), _msg(10)]
        assert trim_messages(messages, 10) == [messages[-1]]

    def test_scan_stops_at_first_misfit(self) -> None:
        # newest-first: 5 fits, 50 does not, so 1 is dropped even though it fits
        messages = [_msg(1), _msg(50), _msg(5), _msg(10)]
        assert trim_messages(messages, 20) == [messages[2], messages[3]]

    def test_oversized_final_message_truncated_alone(self) -> None:
        last = Message(role="user", content="y" * 100)
        result = trim_messages([_msg(1), last], 10)
        assert len(result) == 1
        assert result[0].role == "user"
        assert result[0].content == "y" * 40 + f"\n\n{TRUNCATION_MARKER}"

    def test_final_message_exactly_at_budget_not_truncated(self) -> None:
        last = _msg(10)
        assert trim_messages([last], 10) == [last]

    def test_non_positive_budget_truncates_to_marker(self) -> None:
        result = trim_messages([_msg(3)], 0)
        assert result[0].content == f"\n\n{TRUNCATION_MARKER}"
