"""
Tests for provider adapters and the provider registry.

Adapters are exercised through in-memory subclasses and mocked SDK clients;
no network calls are made.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from taxextract.config import AISettings, ClaudeSettings, OllamaSettings, OpenAISettings
from taxextract.extract.llm_provider import (
    ClaudeAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderCallError,
    ProviderName,
    ProviderUnavailableError,
    create_adapters,
)
from taxextract.extract.registry import ProviderRegistry


class FakeAdapter(ProviderAdapter):
    """Adapter with scripted probe and generate behavior."""

    def __init__(
        self,
        name: str,
        response: str = "{}",
        error: Exception = None,
        probe_error: Exception = None,
        probe_delay: float = 0.0,
        generate_delay: float = 0.0,
        probe_timeout: float = 1.0,
        invoke_timeout: float = None,
    ):
        super().__init__(probe_timeout, invoke_timeout)
        self.name = ProviderName(name)
        self.response = response
        self.error = error
        self.probe_error = probe_error
        self.probe_delay = probe_delay
        self.generate_delay = generate_delay
        self.calls = []
        self.closed = False

    def _create_client(self):
        return object()

    async def _probe(self):
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if self.probe_error:
            raise self.probe_error

    async def _generate(self, prompt, system, max_tokens, temperature):
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens, "temperature": temperature})
        if self.generate_delay:
            await asyncio.sleep(self.generate_delay)
        if self.error:
            raise self.error
        return self.response

    async def _close_client(self, client):
        self.closed = True


def run(coro):
    return asyncio.run(coro)


class TestAdapterLifecycle:
    """Tests for initialize()/invoke() semantics shared by all adapters."""

    def test_initialize_success(self):
        """A passing probe makes the adapter live."""
        adapter = FakeAdapter("ollama")
        assert run(adapter.initialize()) is True
        assert adapter.live is True

    def test_initialize_probe_error(self):
        """A failing probe is swallowed and leaves the adapter down."""
        adapter = FakeAdapter("openai", probe_error=ConnectionError("refused"))
        assert run(adapter.initialize()) is False
        assert adapter.live is False
        assert adapter.closed is True

    def test_initialize_probe_timeout(self):
        """A slow probe times out without raising."""
        adapter = FakeAdapter("ollama", probe_delay=1.0, probe_timeout=0.01)
        assert run(adapter.initialize()) is False
        assert adapter.live is False

    def test_invoke_without_initialize(self):
        """Invoking a non-live adapter raises ProviderUnavailableError."""
        adapter = FakeAdapter("claude")
        with pytest.raises(ProviderUnavailableError) as exc_info:
            run(adapter.invoke("prompt"))
        assert exc_info.value.provider == "claude"

    def test_invoke_failure_is_wrapped(self):
        """SDK errors become ProviderCallError with the cause attached."""
        adapter = FakeAdapter("openai", error=RuntimeError("500 server error"))
        run(adapter.initialize())
        with pytest.raises(ProviderCallError) as exc_info:
            run(adapter.invoke("prompt"))
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_invoke_empty_response(self):
        """Blank text counts as a failed call."""
        adapter = FakeAdapter("ollama", response="   ")
        run(adapter.initialize())
        with pytest.raises(ProviderCallError):
            run(adapter.invoke("prompt"))

    def test_invoke_timeout(self):
        """A call slower than invoke_timeout fails like any other error."""
        adapter = FakeAdapter("ollama", generate_delay=1.0, invoke_timeout=0.01)
        run(adapter.initialize())
        with pytest.raises(ProviderCallError):
            run(adapter.invoke("prompt"))

    def test_invoke_passes_parameters(self):
        """System prompt and generation parameters reach the backend."""
        adapter = FakeAdapter("ollama", response="ok")
        run(adapter.initialize())
        assert run(adapter.invoke("p", system="s", max_tokens=10, temperature=0.5)) == "ok"
        assert adapter.calls == [{"prompt": "p", "system": "s", "max_tokens": 10, "temperature": 0.5}]

    def test_check_connection(self):
        """Connection checks report liveness without raising."""
        live = FakeAdapter("ollama")
        run(live.initialize())
        down = FakeAdapter("openai")
        assert run(live.check_connection()) is True
        assert run(down.check_connection()) is False

    def test_aclose(self):
        """Closing releases the client."""
        adapter = FakeAdapter("ollama")
        run(adapter.initialize())
        run(adapter.aclose())
        assert adapter.live is False
        assert adapter.closed is True


class TestConcreteAdapters:
    """Tests for the Ollama, OpenAI and Claude request/response handling."""

    def test_ollama_post_generate(self):
        """Ollama posts a non-streaming generate request."""
        adapter = OllamaAdapter(OllamaSettings(base_url="http://ollama:11434/", model="llama3"))
        response = MagicMock()
        response.json.return_value = {"response": '{"totalIncome": 1}'}
        adapter._client = MagicMock()
        adapter._client.post.return_value = response

        text = adapter._post_generate("prompt", "system", 100, 0.1, 30.0)

        assert text == '{"totalIncome": 1}'
        url = adapter._client.post.call_args.args[0]
        kwargs = adapter._client.post.call_args.kwargs
        assert url == "http://ollama:11434/api/generate"
        assert kwargs["json"]["model"] == "llama3"
        assert kwargs["json"]["stream"] is False
        assert kwargs["json"]["system"] == "system"
        assert kwargs["json"]["options"] == {"temperature": 0.1, "num_predict": 100}
        assert kwargs["timeout"] == 30.0
        response.raise_for_status.assert_called_once()

    def test_openai_generate(self):
        """OpenAI sends system and user messages and returns the content."""
        adapter = OpenAIAdapter(OpenAISettings(api_key="sk-test", model="gpt-4o-mini"))
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="hello"))]
        ))
        adapter._client = client

        text = run(adapter._generate("prompt", "system", 2000, 0.1))

        assert text == "hello"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "prompt"},
        ]
        assert kwargs["max_tokens"] == 2000

    def test_openai_no_choices(self):
        """A response without choices yields empty text."""
        adapter = OpenAIAdapter(OpenAISettings(api_key="sk-test"))
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        adapter._client = client
        assert run(adapter._generate("prompt", None, 10, 0.1)) == ""

    def test_claude_joins_text_blocks(self):
        """Only text blocks are joined into the answer."""
        adapter = ClaudeAdapter(ClaudeSettings(api_key="key"))
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[
            SimpleNamespace(type="text", text='{"a": '),
            SimpleNamespace(type="tool_use", id="x"),
            SimpleNamespace(type="text", text="1}"),
        ]))
        adapter._client = client

        text = run(adapter._generate("prompt", "system", 4000, 0.3))

        assert text == '{"a": 1}'
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["max_tokens"] == 4000

    def test_claude_empty_content_fails_invoke(self):
        """A Claude response with no text blocks is a failed call."""
        adapter = ClaudeAdapter(ClaudeSettings(api_key="key"))
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[]))
        adapter._client = client
        adapter.live = True
        with pytest.raises(ProviderCallError):
            run(adapter.invoke("prompt"))


class TestCreateAdapters:
    """Tests for create_adapters()."""

    def test_defaults_only_ollama(self):
        """Hosted providers without keys are not created."""
        adapters = create_adapters(AISettings())
        assert [a.provider for a in adapters] == ["ollama"]

    def test_all_providers_in_discovery_order(self):
        """Ollama, OpenAI, Claude."""
        settings = AISettings(openai={"api_key": "sk"}, claude={"api_key": "ck"})
        adapters = create_adapters(settings)
        assert [a.provider for a in adapters] == ["ollama", "openai", "claude"]

    def test_explicitly_disabled(self):
        """enabled=False wins over a present key."""
        settings = AISettings(ollama={"enabled": False}, openai={"api_key": "sk", "enabled": False})
        assert create_adapters(settings) == []

    def test_invoke_timeout_propagated(self):
        """The per-call timeout reaches every adapter."""
        settings = AISettings(extraction={"invoke_timeout": 12.5})
        assert create_adapters(settings)[0].invoke_timeout == 12.5


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_register_live_idempotent(self):
        """Registering twice does not duplicate."""
        registry = ProviderRegistry("ollama")
        registry.register_live("openai")
        registry.register_live("openai")
        assert registry.live_providers == ["openai"]

    def test_preferred_first(self):
        """The preferred provider leads when live."""
        registry = ProviderRegistry("claude")
        for name in ("ollama", "openai", "claude"):
            registry.register_live(name)
        assert registry.ordered_candidates() == ["claude", "ollama", "openai"]

    def test_preferred_not_live(self):
        """Without the preferred provider, registration order is kept."""
        registry = ProviderRegistry("claude")
        registry.register_live("openai")
        registry.register_live("ollama")
        assert registry.ordered_candidates() == ["openai", "ollama"]

    def test_is_enabled(self):
        """Enabled iff at least one provider is live."""
        registry = ProviderRegistry()
        assert registry.is_enabled() is False
        registry.register_live(ProviderName.OLLAMA)
        assert registry.is_enabled() is True

    def test_initialize_all_registers_in_discovery_order(self):
        """Live adapters register in discovery order, not completion order."""
        slow = FakeAdapter("ollama", probe_delay=0.05)
        fast = FakeAdapter("openai")
        broken = FakeAdapter("claude", probe_error=RuntimeError("bad key"))
        registry = ProviderRegistry("claude", [slow, fast, broken])

        live = run(registry.initialize_all())

        assert live == ["ollama", "openai"]
        assert registry.ordered_candidates() == ["ollama", "openai"]
        assert registry.adapter("openai") is fast
        assert registry.adapter(ProviderName.CLAUDE) is broken

    def test_closed_adapter_leaves_candidates(self):
        """Liveness is read from the adapters, so a closed one is no longer offered."""
        ollama = FakeAdapter("ollama")
        openai = FakeAdapter("openai")
        registry = ProviderRegistry("ollama", [ollama, openai])
        run(registry.initialize_all())

        run(ollama.aclose())

        assert ollama.live is False
        assert registry.live_providers == ["openai"]
        assert registry.ordered_candidates() == ["openai"]
        assert registry.is_enabled() is True

    def test_registered_without_adapter_stays_live(self):
        """Names registered without an adapter are taken as live."""
        registry = ProviderRegistry("openai", [FakeAdapter("ollama")])
        registry.register_live("openai")
        registry.register_live("ollama")
        assert registry.ordered_candidates() == ["openai"]
