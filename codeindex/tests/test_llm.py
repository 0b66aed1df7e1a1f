from __future__ import annotations

import json

import httpx
import pytest

from codeindex.rag.llm import (
    LLMError,
    OllamaTextGenerator,
    OpenAITextGenerator,
    build_text_generator,
)


def factory_kwargs(**overrides) -> dict:
    kwargs = {
        "api_key_openai": None,
        "openai_base_url": "https://api.openai.com/v1/",
        "openai_model": None,
        "ollama_base_url": "http://localhost:11434/",
        "ollama_model": "llama3.1",
        "temperature": 0.0,
        "max_tokens": 64,
        "timeout": 5,
    }
    kwargs.update(overrides)
    return kwargs


@pytest.mark.anyio
async def test_ollama_generator_posts_chat_request() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "  Parses config.  "}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        generator = OllamaTextGenerator(
            base_url="http://test",
            model="llama3.1",
            temperature=0.2,
            max_tokens=32,
            timeout=5,
            client=client,
        )
        result = await generator.generate("Describe this", system_prompt="Be brief")

    assert result == "Parses config."
    assert seen[0].url.path == "/api/chat"
    body = json.loads(seen[0].content)
    assert body["stream"] is False
    assert body["options"] == {"temperature": 0.2, "num_predict": 32}
    assert body["messages"] == [
        {"role": "system", "content": "Be brief"},
        {"role": "user", "content": "Describe this"},
    ]


@pytest.mark.anyio
async def test_openai_generator_sends_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Summary"}}]})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        generator = OpenAITextGenerator(
            api_key="sk-test",
            base_url="http://test/v1",
            model="gpt-4o-mini",
            temperature=0.0,
            max_tokens=16,
            timeout=5,
            client=client,
        )
        result = await generator.generate("Describe this", temperature=0.5)

    assert result == "Summary"
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["temperature"] == 0.5
    assert body["messages"] == [{"role": "user", "content": "Describe this"}]


@pytest.mark.anyio
async def test_generator_wraps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "overloaded"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        generator = OllamaTextGenerator(
            base_url="http://test",
            model="llama3.1",
            temperature=0.0,
            max_tokens=32,
            timeout=5,
            client=client,
        )
        with pytest.raises(LLMError):
            await generator.generate("Describe this")


@pytest.mark.anyio
async def test_generator_rejects_malformed_payloads() -> None:
    responses = iter(
        [
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, json={"choices": [{"message": {"content": None}}]}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        generator = OpenAITextGenerator(
            api_key="sk-test",
            base_url="http://test/v1",
            model="gpt-4o-mini",
            temperature=0.0,
            max_tokens=16,
            timeout=5,
            client=client,
        )
        for _ in range(3):
            with pytest.raises(LLMError):
                await generator.generate("Describe this")


def test_build_text_generator_selects_provider() -> None:
    generator = build_text_generator(
        "OpenAI",
        **factory_kwargs(api_key_openai="sk-test", openai_model="gpt-4o-mini"),
    )
    assert isinstance(generator, OpenAITextGenerator)
    assert generator.base_url == "https://api.openai.com/v1"

    fallback = build_text_generator("mystery", **factory_kwargs())
    assert isinstance(fallback, OllamaTextGenerator)
    assert fallback.base_url == "http://localhost:11434"


def test_build_text_generator_requires_openai_credentials() -> None:
    with pytest.raises(LLMError, match="OPENAI_API_KEY"):
        build_text_generator("openai", **factory_kwargs(openai_model="gpt-4o-mini"))
    with pytest.raises(LLMError, match="OPENAI_CHAT_MODEL"):
        build_text_generator("openai", **factory_kwargs(api_key_openai="sk-test"))
