from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
for entry in (SRC, ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from aicore.providers.registry import ProviderRegistry  # noqa: E402
from tests.mocks.ledger import InMemoryUsageLedger  # noqa: E402
from tests.mocks.mock_provider import MockProvider  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "aicore.toml"
    monkeypatch.setenv("AICORE_CONFIG", str(cfg_path))
    for key in list(os.environ):
        if key.startswith("AICORE_") and key != "AICORE_CONFIG":
            monkeypatch.delenv(key, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import aicore.core.console as core_console
    import aicore.main as aicore_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(aicore_main, "console", test_console)
    return test_console


@pytest.fixture
def ledger() -> InMemoryUsageLedger:
    return InMemoryUsageLedger()


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider("mock")
