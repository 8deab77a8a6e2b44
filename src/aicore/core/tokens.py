"""Token estimation heuristics.

Real token counts come from provider usage reports; these estimates are only
used for budgeting prompts before a request is sent.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "[content truncated]"


def estimate_tokens(text: str) -> int:
    """Estimate tokens as ceil(len(text) / 4); the empty string costs 0."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def tokens_to_characters(tokens: int) -> int:
    """Coarse conversion from tokens to characters (upper bound)."""
    if tokens <= 0:
        return 0
    return tokens * CHARS_PER_TOKEN


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text to the character equivalent of max_tokens and append the marker."""
    return f"{text[: tokens_to_characters(max_tokens)]}\n\n{TRUNCATION_MARKER}"


__all__ = [
    "CHARS_PER_TOKEN",
    "TRUNCATION_MARKER",
    "estimate_tokens",
    "tokens_to_characters",
    "truncate_to_tokens",
]
