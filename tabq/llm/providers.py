"""
Remote classification providers.

Each provider takes one prompt and returns the raw reply text. The pipeline
owns parsing and fallback; providers only translate transport problems into
the engine's error taxonomy:

- missing credentials/config -> ProviderUnavailable
- network failure, timeout, HTTP error, unexpected body -> ProviderRequestFailed
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Protocol

import requests

from tabq.config import LLM_MAX_TOKENS, LLM_TIMEOUT_SECONDS
from tabq.errors import ProviderRequestFailed, ProviderUnavailable
from tabq.infrastructure import settings
from tabq.llm.gemini import GeminiInitializationError, get_gemini_model
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter, time_block
from tabq.storage.models import RemoteConfig

logger = get_logger(__name__)

SYSTEM_MESSAGE = "You are a helpful assistant that categorizes browser tabs."
TEMPERATURE = 0.3


class RemoteProvider(Protocol):
    name: str

    async def complete(self, prompt: str) -> str: ...


class HTTPProvider(ABC):
    """Base for providers reached with a JSON POST over HTTPS."""

    name = "http"

    def __init__(
        self,
        api_key: str,
        model: str,
        endpoint: str,
        session: requests.Session | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.timeout = timeout

    @abstractmethod
    def _headers(self) -> dict[str, str]: ...

    @abstractmethod
    def _payload(self, prompt: str) -> dict[str, Any]: ...

    @abstractmethod
    def _extract_text(self, body: dict[str, Any]) -> str: ...

    def _post(self, prompt: str) -> str:
        """
        Blocking request/response round trip.

        Side Effects:
            - Makes an HTTPS call to the provider
            - Increments provider.<name>.* telemetry counters
        """
        try:
            with time_block(f"provider.{self.name}.latency"):
                response = self.session.post(
                    self.endpoint,
                    headers=self._headers(),
                    json=self._payload(prompt),
                    timeout=self.timeout,
                )
        except requests.exceptions.Timeout as e:
            counter(f"provider.{self.name}.timeout")
            raise ProviderRequestFailed(f"{self.name} request timed out") from e
        except requests.exceptions.RequestException as e:
            counter(f"provider.{self.name}.network_error")
            raise ProviderRequestFailed(f"{self.name} request failed: {e}") from e

        if response.status_code != 200:
            counter(f"provider.{self.name}.http_error")
            logger.warning("%s returned HTTP %d", self.name, response.status_code)
            if response.status_code in (401, 403):
                raise ProviderRequestFailed(f"{self.name} rejected the API key")
            raise ProviderRequestFailed(f"{self.name} returned HTTP {response.status_code}")

        try:
            text = self._extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            counter(f"provider.{self.name}.bad_body")
            raise ProviderRequestFailed(f"{self.name} returned an unexpected body") from e

        counter(f"provider.{self.name}.success")
        return text

    async def complete(self, prompt: str) -> str:
        return await asyncio.to_thread(self._post, prompt)


class ClaudeProvider(HTTPProvider):
    name = "claude"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": LLM_MAX_TOKENS,
            "temperature": TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }

    def _extract_text(self, body: dict[str, Any]) -> str:
        return "".join(block["text"] for block in body["content"] if block.get("type") == "text")


class ChatCompletionsProvider(HTTPProvider):
    """OpenAI-compatible chat completions (OpenAI, DeepSeek, Grok)."""

    def __init__(self, name: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.name = name

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            "temperature": TEMPERATURE,
            "max_tokens": LLM_MAX_TOKENS,
        }

    def _extract_text(self, body: dict[str, Any]) -> str:
        return body["choices"][0]["message"]["content"]


class GeminiProvider:
    """Gemini through the Vertex AI SDK."""

    name = "gemini"

    def __init__(self, model: str) -> None:
        self.model = model

    def _generate(self, prompt: str) -> str:
        try:
            model = get_gemini_model(self.model)
        except GeminiInitializationError as e:
            raise ProviderUnavailable(str(e)) from e

        try:
            with time_block("provider.gemini.latency"):
                response = model.generate_content(prompt)
            text = response.text
        except Exception as e:
            counter("provider.gemini.error")
            raise ProviderRequestFailed(f"gemini request failed: {e}") from e

        counter("provider.gemini.success")
        return text

    async def complete(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate, prompt)


_API_KEYS = {
    "claude": lambda: settings.ANTHROPIC_API_KEY,
    "openai": lambda: settings.OPENAI_API_KEY,
    "deepseek": lambda: settings.DEEPSEEK_API_KEY,
    "grok": lambda: settings.XAI_API_KEY,
}


def get_provider(config: RemoteConfig, session: requests.Session | None = None) -> RemoteProvider:
    """
    Build the provider named by a RemoteConfig.

    Raises:
        ProviderUnavailable: If the provider has no API key or project configured
    """
    name = config.provider
    model = config.model or settings.PROVIDER_MODELS[name]

    if name == "gemini":
        if not settings.GOOGLE_CLOUD_PROJECT:
            raise ProviderUnavailable("gemini requires GOOGLE_CLOUD_PROJECT")
        return GeminiProvider(model)

    api_key = config.api_key or _API_KEYS[name]()
    if not api_key:
        counter(f"provider.{name}.unavailable")
        raise ProviderUnavailable(f"no API key configured for {name}")

    endpoint = settings.PROVIDER_ENDPOINTS[name]
    if name == "claude":
        return ClaudeProvider(api_key, model, endpoint, session=session)
    return ChatCompletionsProvider(name, api_key, model, endpoint, session=session)
