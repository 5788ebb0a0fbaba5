"""
Registry of live providers.

Registration order is written only while adapters are initialized at startup.
Liveness itself is read from each attached adapter on every query, so an
adapter that has been closed drops out of the candidate list.
"""

import asyncio
import logging
from typing import Optional, Union

from .llm_provider import ProviderAdapter, ProviderName

logger = logging.getLogger(__name__)


def _name(name: Union[str, ProviderName]) -> str:
    return name.value if isinstance(name, ProviderName) else str(name).lower()


class ProviderRegistry:
    """
    Tracks live providers and orders them for fallback.

    Args:
        preferred_provider: Name tried first whenever it is live
        adapters: Configured adapters, live or not, in discovery order
    """

    def __init__(
        self,
        preferred_provider: Union[str, ProviderName] = ProviderName.OLLAMA,
        adapters: Optional[list[ProviderAdapter]] = None,
    ):
        self.preferred_provider = _name(preferred_provider)
        self._adapters: dict[str, ProviderAdapter] = {}
        self._live: list[str] = []
        for adapter in adapters or []:
            self.add_adapter(adapter)

    def add_adapter(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider] = adapter

    def adapter(self, name: Union[str, ProviderName]) -> Optional[ProviderAdapter]:
        return self._adapters.get(_name(name))

    @property
    def adapters(self) -> list[ProviderAdapter]:
        return list(self._adapters.values())

    def register_live(self, name: Union[str, ProviderName]) -> None:
        """Mark a provider live. Registering twice has no effect."""
        name = _name(name)
        if name not in self._live:
            self._live.append(name)
            logger.debug(f"Registered live provider: {name}")

    def _is_live(self, name: str) -> bool:
        adapter = self._adapters.get(name)
        return adapter is None or adapter.live

    @property
    def live_providers(self) -> list[str]:
        """Registered providers whose adapter (if attached) is currently live."""
        return [name for name in self._live if self._is_live(name)]

    def ordered_candidates(self) -> list[str]:
        """Preferred provider first (if live), then the rest in registration order."""
        live = self.live_providers
        if self.preferred_provider in live:
            return [self.preferred_provider] + [n for n in live if n != self.preferred_provider]
        return live

    def is_enabled(self) -> bool:
        return bool(self.live_providers)

    async def initialize_all(self) -> list[str]:
        """
        Probe every adapter concurrently and register the live ones.

        Registration follows discovery order, not probe completion order.

        Returns:
            Live provider names
        """
        adapters = self.adapters
        results = await asyncio.gather(*(adapter.initialize() for adapter in adapters))
        for adapter, live in zip(adapters, results):
            if live:
                self.register_live(adapter.provider)

        live = self.live_providers
        if live:
            logger.info(f"Available AI providers: {', '.join(live)}")
        else:
            logger.warning("No AI providers available - extraction will return default records")
        return live

    async def aclose(self) -> None:
        for adapter in self.adapters:
            await adapter.aclose()
        self._live.clear()
