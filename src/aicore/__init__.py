"""aicore - AI operations core for developer productivity tooling.

This package decides which AI backend and model answers a request, composes
multi-step AI pipelines over batches of items, enforces spend limits, and fits
prompts and conversation history into a model's context window.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
