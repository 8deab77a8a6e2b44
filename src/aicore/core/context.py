"""Context assembly under a token budget.

This module provides:
- ContextSource: a keyed, priority-ranked chunk of text for the system prompt
- ContextBudget: the configured context size and reserved output tokens
- ContextManager: packs system context and trims conversation history so a
  single completion request fits the model's context window

Packing rules:
- System context may use at most 40% of the effective budget. Sources are
  visited highest priority first and each one is kept only if it still fits;
  a source that does not fit is skipped and scanning continues.
- Conversation history always keeps the final message. Older messages are
  kept newest-first until the first one that does not fit.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace

from aicore.core.console import get_logger
from aicore.core.tokens import estimate_tokens, truncate_to_tokens
from aicore.providers import Message, Model

logger = get_logger(__name__)

DEFAULT_MAX_CONTEXT_TOKENS = 100_000
DEFAULT_RESERVED_OUTPUT_TOKENS = 4096
SYSTEM_CONTEXT_SHARE = 0.4


@dataclass(frozen=True, slots=True)
class ContextSource:
    """A named chunk of text eligible for the system prompt.

    Attributes:
        key: Deduplication key (e.g. "inbox:abc123", "profile")
        content: Text to inject
        priority: Higher is more likely to be kept
        token_estimate: Exact or caller-known token count; estimated if None
    """

    key: str
    content: str
    priority: int = 0
    token_estimate: int | None = None

    @property
    def tokens(self) -> int:
        if self.token_estimate is not None:
            return self.token_estimate
        return estimate_tokens(self.content)


@dataclass(frozen=True, slots=True)
class ContextBudget:
    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    reserved_output_tokens: int = DEFAULT_RESERVED_OUTPUT_TOKENS


@dataclass(frozen=True, slots=True)
class BuiltContext:
    system_prompt: str
    messages: Sequence[Message]
    estimated_tokens: int
    source_keys: tuple[str, ...] = ()


class ContextManager:
    """Fit persistent system context and conversation history into a budget."""

    def __init__(self, budget: ContextBudget | None = None) -> None:
        self._budget = budget or ContextBudget()
        self._system_sources: list[ContextSource] = []
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Budget
    # -------------------------------------------------------------------------

    def set_budget(
        self,
        *,
        max_context_tokens: int | None = None,
        reserved_output_tokens: int | None = None,
    ) -> None:
        """Merge a partial budget update; omitted fields are left unchanged."""
        with self._lock:
            budget = self._budget
            if max_context_tokens is not None:
                budget = replace(budget, max_context_tokens=max_context_tokens)
            if reserved_output_tokens is not None:
                budget = replace(budget, reserved_output_tokens=reserved_output_tokens)
            self._budget = budget

    def get_budget(self) -> ContextBudget:
        with self._lock:
            return self._budget

    # -------------------------------------------------------------------------
    # System-level context
    # -------------------------------------------------------------------------

    def add_system_context(self, source: ContextSource) -> None:
        """Add a persistent source; re-adding a key moves it to the end."""
        with self._lock:
            self._system_sources = [s for s in self._system_sources if s.key != source.key]
            self._system_sources.append(source)

    def remove_system_context(self, key: str) -> None:
        with self._lock:
            self._system_sources = [s for s in self._system_sources if s.key != key]

    def get_system_context_keys(self) -> list[str]:
        with self._lock:
            return [s.key for s in self._system_sources]

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(
        self,
        messages: Sequence[Message],
        model: Model,
        extra_sources: Sequence[ContextSource] | None = None,
    ) -> BuiltContext:
        """Assemble the system prompt and trimmed history for one request."""
        with self._lock:
            budget = self._budget
            persistent = list(self._system_sources)

        effective = min(
            budget.max_context_tokens,
            model.context_window - budget.reserved_output_tokens,
        )

        # sorted() is stable: equal priorities keep persistent-then-extra order
        candidates = sorted(
            [*persistent, *(extra_sources or ())],
            key=lambda s: s.priority,
            reverse=True,
        )

        system_cap = effective * SYSTEM_CONTEXT_SHARE
        system_tokens = 0
        included: list[ContextSource] = []
        for source in candidates:
            tokens = source.tokens
            if system_tokens + tokens <= system_cap:
                included.append(source)
                system_tokens += tokens
            else:
                logger.debug("Skipping context source %s (%d tokens)", source.key, tokens)

        system_prompt = "\n\n".join(s.content for s in included)

        remaining = effective - system_tokens
        message_tokens = sum(estimate_tokens(m.content) for m in messages)
        kept: Sequence[Message] = messages
        if message_tokens > remaining:
            kept = trim_messages(messages, remaining)
            logger.debug(
                "Trimmed conversation from %d to %d messages (%d token budget)",
                len(messages),
                len(kept),
                remaining,
            )

        return BuiltContext(
            system_prompt=system_prompt,
            messages=kept,
            estimated_tokens=system_tokens + sum(estimate_tokens(m.content) for m in kept),
            source_keys=tuple(s.key for s in included),
        )

    def budget_for_model(
        self,
        model: Model,
        desired_output_tokens: int | None = None,
    ) -> ContextBudget:
        """Budget capped by the model's window; does not change configuration."""
        with self._lock:
            budget = self._budget
        reserved = (
            desired_output_tokens
            if desired_output_tokens is not None
            else budget.reserved_output_tokens
        )
        return ContextBudget(
            max_context_tokens=min(budget.max_context_tokens, model.context_window - reserved),
            reserved_output_tokens=reserved,
        )


def trim_messages(messages: Sequence[Message], budget_tokens: int) -> list[Message]:
    """Trim history to a token budget, always keeping the final message.

    If the final message alone exceeds the budget it is truncated and every
    other message is dropped. Otherwise older messages are kept newest-first
    until the first one that does not fit; everything older is dropped.
    """
    if not messages:
        return []

    last = messages[-1]
    last_tokens = estimate_tokens(last.content)

    if last_tokens > budget_tokens:
        return [replace(last, content=truncate_to_tokens(last.content, budget_tokens))]

    remaining = budget_tokens - last_tokens
    kept: list[Message] = []
    for message in reversed(messages[:-1]):
        tokens = estimate_tokens(message.content)
        if tokens > remaining:
            break
        kept.append(message)
        remaining -= tokens

    kept.reverse()
    kept.append(last)
    return kept


__all__ = [
    "DEFAULT_MAX_CONTEXT_TOKENS",
    "DEFAULT_RESERVED_OUTPUT_TOKENS",
    "SYSTEM_CONTEXT_SHARE",
    "BuiltContext",
    "ContextBudget",
    "ContextManager",
    "ContextSource",
    "trim_messages",
]
