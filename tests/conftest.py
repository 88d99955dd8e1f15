"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and shared model
names. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

OPENAI_MODEL = "gpt-4o-mini"
OLLAMA_MODEL = "deepseek-coder"
OPENAI_ENDPOINT = "https://api.openai.com/v1"
OLLAMA_ENDPOINT = "http://127.0.0.1:11434"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_backend_env(request, monkeypatch):
    """Ensure a clean backend environment for each test.

    Clears OPENAI_*, OPENROUTER_* and LOCAL_MODEL_* so a developer's shell
    never leaks credentials or endpoints into assertions.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "OPENROUTER_", "LOCAL_MODEL_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("CLIENT_VERSION", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Shared Values
# =============================================================================


@pytest.fixture
def openai_model() -> str:
    """Return the model pinned by OpenAI-compatible test configs."""
    return OPENAI_MODEL


@pytest.fixture
def ollama_model() -> str:
    """Return the model pinned by Ollama test configs."""
    return OLLAMA_MODEL
