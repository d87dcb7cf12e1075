"""
Pytest configuration for the mcphost test suite.

Coroutine tests are marked with ``@pytest.mark.anyio`` and run on the
asyncio backend only, since the engine and MCP client rely on asyncio
primitives.
"""

import logging
import os

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep real credentials and .env files out of the tests."""
    for name in (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "GOOGLE_API_KEY",
        "GEMINI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("MCPHOST_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    logging.getLogger("mcphost").setLevel(logging.DEBUG)
