"""
Multi-provider LLM adapters with a uniform async call contract.

Supports:
- Ollama (local models over the /api/generate HTTP endpoint)
- OpenAI (gpt-4o-mini, gpt-4o, etc.)
- Anthropic Claude (claude-3-5-sonnet, claude-3-haiku, etc.)

Each adapter is probed once at startup. A provider whose probe fails is
simply not live; invoke() on it raises ProviderUnavailableError. Adapters
never retry - fallback to the next provider happens in the extractor.

Usage:
    adapters = create_adapters(settings)
    for adapter in adapters:
        await adapter.initialize()
    text = await adapters[0].invoke(prompt, system=SYSTEM_PROMPT)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import requests
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..config import AISettings, ClaudeSettings, OllamaSettings, OpenAISettings

logger = logging.getLogger(__name__)


class ProviderName(str, Enum):
    """Supported LLM providers, in discovery order."""
    OLLAMA = "ollama"
    OPENAI = "openai"
    CLAUDE = "claude"


# =============================================================================
# Errors
# =============================================================================

class ProviderError(Exception):
    """Base class for provider failures."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderUnavailableError(ProviderError):
    """The provider has no live client (never initialized or probe failed)."""


class ProviderCallError(ProviderError):
    """A call to a live provider failed or returned no text."""


# =============================================================================
# Base Adapter
# =============================================================================

class ProviderAdapter(ABC):
    """
    Uniform call contract over one text-generation backend.

    Subclasses implement _create_client, _probe and _generate. The client
    handle is owned by the adapter and never shared.

    Args:
        probe_timeout: Seconds allowed for the liveness probe
        invoke_timeout: Seconds allowed per invoke() (None = no limit beyond
            what the transport enforces)
    """

    name: ProviderName

    def __init__(self, probe_timeout: float = 5.0, invoke_timeout: Optional[float] = None):
        self.probe_timeout = probe_timeout
        self.invoke_timeout = invoke_timeout
        self._client: Any = None
        self.live = False

    @property
    def provider(self) -> str:
        return self.name.value

    async def initialize(self) -> bool:
        """
        Create the client and run a liveness probe under a timeout.

        Any failure (including the timeout) leaves the adapter not live.
        Never raises.

        Returns:
            True if the provider is live
        """
        try:
            self._client = self._create_client()
            await asyncio.wait_for(self._probe(), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.provider} liveness probe timed out after {self.probe_timeout}s")
            await self.aclose()
            return False
        except Exception as e:
            logger.warning(f"{self.provider} initialization failed: {e}")
            await self.aclose()
            return False

        self.live = True
        logger.info(f"{self.provider} provider initialized")
        return True

    async def invoke(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.1,
    ) -> str:
        """
        Single round-trip to the model. No retries.

        Raises:
            ProviderUnavailableError: If the adapter is not live
            ProviderCallError: If the call fails, times out or returns no text
        """
        if not self.live or self._client is None:
            raise ProviderUnavailableError(self.provider, "client not initialized")

        call = self._generate(prompt, system, max_tokens, temperature)
        try:
            if self.invoke_timeout is not None:
                text = await asyncio.wait_for(call, timeout=self.invoke_timeout)
            else:
                text = await call
        except asyncio.TimeoutError as e:
            raise ProviderCallError(self.provider, f"call timed out after {self.invoke_timeout}s") from e
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderCallError(self.provider, str(e)) from e

        if not text or not text.strip():
            raise ProviderCallError(self.provider, "empty response")
        return text

    async def check_connection(self) -> bool:
        """Re-run the liveness probe on a live adapter. Never raises."""
        if not self.live or self._client is None:
            return False
        try:
            await asyncio.wait_for(self._probe(), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.provider} connection test timed out")
            return False
        except Exception as e:
            logger.warning(f"{self.provider} connection test failed: {e}")
            return False
        return True

    async def aclose(self) -> None:
        """Release the client. The adapter is no longer live afterwards."""
        client, self._client = self._client, None
        self.live = False
        if client is None:
            return
        try:
            await self._close_client(client)
        except Exception as e:
            logger.debug(f"{self.provider} client close failed: {e}")

    @abstractmethod
    def _create_client(self) -> Any:
        ...

    @abstractmethod
    async def _probe(self) -> None:
        """Lightweight round-trip; raise on failure."""

    @abstractmethod
    async def _generate(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: float,
    ) -> str:
        ...

    async def _close_client(self, client: Any) -> None:
        return None


# =============================================================================
# Ollama
# =============================================================================

class OllamaAdapter(ProviderAdapter):
    """Local Ollama server, called over HTTP with requests in a worker thread."""

    name = ProviderName.OLLAMA

    def __init__(self, settings: OllamaSettings, invoke_timeout: Optional[float] = None):
        super().__init__(settings.probe_timeout, invoke_timeout)
        self.settings = settings

    @property
    def generate_url(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/api/generate"

    def _create_client(self) -> requests.Session:
        return requests.Session()

    async def _probe(self) -> None:
        await asyncio.to_thread(self._post_generate, "Hello", None, 1, 0.0, self.probe_timeout)

    async def _generate(self, prompt, system, max_tokens, temperature) -> str:
        return await asyncio.to_thread(
            self._post_generate, prompt, system, max_tokens, temperature, self.settings.request_timeout,
        )

    def _post_generate(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str:
        payload = {
            "model": self.settings.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if system:
            payload["system"] = system

        response = self._client.post(self.generate_url, json=payload, timeout=timeout)
        response.raise_for_status()
        return response.json().get("response", "")

    async def _close_client(self, client: requests.Session) -> None:
        client.close()


# =============================================================================
# OpenAI
# =============================================================================

class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completions."""

    name = ProviderName.OPENAI

    def __init__(self, settings: OpenAISettings, invoke_timeout: Optional[float] = None):
        super().__init__(settings.probe_timeout, invoke_timeout)
        self.settings = settings

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.settings.api_key, base_url=self.settings.base_url)

    async def _probe(self) -> None:
        await self._client.models.retrieve(self.settings.model)

    async def _generate(self, prompt, system, max_tokens, temperature) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self._client.chat.completions.create(
            model=self.settings.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def _close_client(self, client: AsyncOpenAI) -> None:
        await client.close()


# =============================================================================
# Anthropic Claude
# =============================================================================

class ClaudeAdapter(ProviderAdapter):
    """Anthropic messages API."""

    name = ProviderName.CLAUDE

    def __init__(self, settings: ClaudeSettings, invoke_timeout: Optional[float] = None):
        super().__init__(settings.probe_timeout, invoke_timeout)
        self.settings = settings

    def _create_client(self) -> AsyncAnthropic:
        return AsyncAnthropic(api_key=self.settings.api_key)

    async def _probe(self) -> None:
        await self._client.messages.create(
            model=self.settings.model,
            max_tokens=1,
            messages=[{"role": "user", "content": "Hello"}],
        )

    async def _generate(self, prompt, system, max_tokens, temperature) -> str:
        kwargs = {
            "model": self.settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)
        # Only text blocks carry the answer
        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")

    async def _close_client(self, client: AsyncAnthropic) -> None:
        await client.close()


# =============================================================================
# Factory
# =============================================================================

def create_adapters(settings: AISettings) -> list[ProviderAdapter]:
    """
    Build an adapter for every enabled provider, in discovery order.

    Hosted providers without an API key are skipped.
    """
    invoke_timeout = settings.extraction.invoke_timeout
    adapters: list[ProviderAdapter] = []

    if settings.ollama.is_enabled:
        adapters.append(OllamaAdapter(settings.ollama, invoke_timeout))
    if settings.openai.is_enabled:
        adapters.append(OpenAIAdapter(settings.openai, invoke_timeout))
    if settings.claude.is_enabled:
        adapters.append(ClaudeAdapter(settings.claude, invoke_timeout))

    logger.debug(f"Configured providers: {[a.provider for a in adapters]}")
    return adapters
