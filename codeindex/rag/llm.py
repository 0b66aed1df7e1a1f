from __future__ import annotations

"""Text generation clients used for chunk enrichment."""

from dataclasses import dataclass, field
import logging
from typing import Protocol

import httpx


class LLMError(RuntimeError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Protocol for single-turn text generation."""

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        raise NotImplementedError


def _messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


async def _post_json(
    url: str,
    payload: dict,
    timeout: float,
    client: httpx.AsyncClient | None = None,
    headers: dict[str, str] | None = None,
) -> dict:
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        raise LLMError(str(exc)) from exc
    except ValueError as exc:
        raise LLMError("LLM response is not valid JSON") from exc
    finally:
        if owns_client and client is not None:
            await client.aclose()
    if not isinstance(data, dict):
        raise LLMError("Invalid LLM response")
    return data


@dataclass(frozen=True)
class OllamaTextGenerator:
    """Text generator backed by the Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    client: httpx.AsyncClient | None = field(default=None, compare=False, repr=False)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a completion using Ollama."""
        payload = {
            "model": self.model,
            "messages": _messages(prompt, system_prompt),
            "stream": False,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
                "num_predict": self.max_tokens,
            },
        }
        data = await _post_json(f"{self.base_url}/api/chat", payload, self.timeout, self.client)
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content.strip()


@dataclass(frozen=True)
class OpenAITextGenerator:
    """Text generator backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    client: httpx.AsyncClient | None = field(default=None, compare=False, repr=False)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a completion using OpenAI chat completions."""
        payload = {
            "model": self.model,
            "messages": _messages(prompt, system_prompt),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = await _post_json(
            f"{self.base_url}/chat/completions",
            payload,
            self.timeout,
            self.client,
            headers=headers,
        )
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content.strip()


def build_text_generator(
    provider: str,
    *,
    api_key_openai: str | None,
    openai_base_url: str,
    openai_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> OllamaTextGenerator | OpenAITextGenerator:
    """Factory for text generators based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"openai"}:
        if not api_key_openai:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise LLMError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAITextGenerator(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized not in {"", "ollama"}:
        logger.warning("llm_provider_unknown", extra={"provider": provider, "fallback": "ollama"})
    return OllamaTextGenerator(
        base_url=ollama_base_url.rstrip("/"),
        model=ollama_model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )
