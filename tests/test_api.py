"""Public API surface tests: factory dispatch and the exported names."""

from __future__ import annotations

import httpx
import pytest

import switchboard
from switchboard import (
    BackendKind,
    Config,
    ContentGenerator,
    create_content_generator,
)
from switchboard.providers import OllamaProvider, OpenAICompatibleProvider

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_factory_builds_openai_compatible_adapter() -> None:
    generator = create_content_generator(Config(api_key="sk-test"))
    try:
        assert isinstance(generator, OpenAICompatibleProvider)
        assert isinstance(generator, ContentGenerator)
        assert generator.capabilities.native_tools is True
    finally:
        await generator.aclose()


@pytest.mark.asyncio
async def test_factory_builds_ollama_adapter(ollama_model: str) -> None:
    generator = create_content_generator(Config(backend=BackendKind.OLLAMA, model=ollama_model))
    try:
        assert isinstance(generator, OllamaProvider)
        assert generator.config.default_model == ollama_model
        assert isinstance(generator, ContentGenerator)
        assert generator.capabilities.native_tools is False
    finally:
        await generator.aclose()


@pytest.mark.asyncio
async def test_factory_falls_back_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_MODEL_PROVIDER", "ollama")
    monkeypatch.setenv("LOCAL_MODEL_ENDPOINT", "http://gpu-box:11434/")
    monkeypatch.setenv("LOCAL_MODEL_MODEL", "qwen2.5-coder:7b")

    generator = create_content_generator()
    try:
        assert isinstance(generator, OllamaProvider)
        assert generator.chat_endpoint == "http://gpu-box:11434/api/chat"
        assert generator.config.default_model == "qwen2.5-coder:7b"
    finally:
        await generator.aclose()


@pytest.mark.asyncio
async def test_shared_client_is_left_open_for_the_caller() -> None:
    async with httpx.AsyncClient() as client:
        generator = create_content_generator(Config(), http_client=client)
        await generator.aclose()

        assert client.is_closed is False


@pytest.mark.asyncio
async def test_owned_client_is_closed_by_aclose() -> None:
    generator = create_content_generator(Config())
    assert isinstance(generator, OpenAICompatibleProvider)

    await generator.aclose()

    assert generator._client.is_closed is True


def test_all_exports_resolve() -> None:
    for name in switchboard.__all__:
        assert hasattr(switchboard, name), name


def test_version_is_a_string() -> None:
    assert isinstance(switchboard.__version__, str)
    assert switchboard.__version__
