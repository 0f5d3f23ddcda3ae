"""Tests for the provider chain and completion wrapper."""

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from conftest import FakeProvider, make_config
from services.llm import (
    AllProvidersFailed,
    AnthropicProvider,
    Completion,
    GeminiProvider,
    LLMProvider,
    OllamaProvider,
    ProviderError,
    _status_code,
    build_providers,
    complete_with_failover,
)


class ScriptedProvider(LLMProvider):
    name = "scripted"

    def __init__(self, responses=None, error=None):
        super().__init__("scripted-model", timeout=5)
        self.responses = responses or []
        self.error = error

    def build_chat_model(self, max_tokens, temperature):
        if self.error is not None:
            raise self.error
        return FakeListChatModel(responses=self.responses)


class RateLimitError(Exception):
    status_code = 429


class TestProviderErrors:
    """Tests for classifying provider failures."""

    def test_status_from_attribute(self):
        assert _status_code(RateLimitError("slow down")) == 429

    def test_status_from_message(self):
        assert _status_code(Exception("429 RESOURCE_EXHAUSTED")) == 429
        assert _status_code(Exception("Quota exceeded for model")) == 429

    def test_unknown_status(self):
        assert _status_code(Exception("connection reset")) is None

    def test_rate_limited_flag(self):
        assert ProviderError("gemini", "quota", 429).rate_limited
        assert not ProviderError("gemini", "boom", 500).rate_limited
        assert not ProviderError("gemini", "boom").rate_limited


class TestLLMProvider:
    """Tests for a single completion through a LangChain chat model."""

    async def test_complete_returns_text(self):
        completion = await ScriptedProvider(["  hello  "]).complete("system", "user", 100, 0.3)
        assert completion.text == "hello"
        assert completion.latency_ms >= 0

    async def test_empty_response_is_an_error(self):
        with pytest.raises(ProviderError, match="Empty response"):
            await ScriptedProvider(["   "]).complete(None, "user", 100, 0.3)

    async def test_sdk_error_keeps_status(self):
        with pytest.raises(ProviderError) as excinfo:
            await ScriptedProvider(error=RateLimitError("slow down")).complete(None, "user", 100, 0.3)
        assert excinfo.value.rate_limited
        assert excinfo.value.provider == "scripted"


class TestBuildProviders:
    """Tests for assembling the provider chain from configuration."""

    def test_order_follows_configured_credentials(self):
        config = make_config(
            GEMINI_API_KEY="g-key",
            ANTHROPIC_API_KEY="a-key",
            OLLAMA_BASE_URL="http://localhost:11434/v1",
        )
        providers = build_providers(config)

        assert [type(p) for p in providers] == [GeminiProvider, AnthropicProvider, OllamaProvider]
        assert providers[2].base_url == "http://localhost:11434"

    def test_missing_credentials_are_skipped(self):
        providers = build_providers(make_config(ANTHROPIC_API_KEY="a-key"))
        assert [p.name for p in providers] == ["anthropic"]

    def test_no_credentials(self):
        assert build_providers(make_config()) == []


class TestCompleteWithFailover:
    """Tests for iterating the provider chain."""

    async def test_first_success_wins(self):
        primary = FakeProvider("gemini", ["ok"])
        fallback = FakeProvider("anthropic", ["unused"])

        completion, usages = await complete_with_failover([primary, fallback], None, "q", 100, 0.3)

        assert isinstance(completion, Completion)
        assert completion.text == "ok"
        assert len(usages) == 1
        assert not usages[0].was_fallback
        assert fallback.calls == []

    async def test_exhausted_chain_raises_with_every_attempt(self):
        providers = [
            FakeProvider("gemini", [ProviderError("gemini", "quota", 429)]),
            FakeProvider("anthropic", [ProviderError("anthropic", "boom", 500)]),
        ]

        with pytest.raises(AllProvidersFailed) as excinfo:
            await complete_with_failover(providers, None, "q", 100, 0.3)

        usages = excinfo.value.usages
        assert [u.status for u in usages] == ["rate_limited", "error"]
        assert [u.was_fallback for u in usages] == [False, True]
        assert usages[1].error == "boom"

    async def test_parse_failure_moves_to_next_provider(self):
        def parse(text):
            if text != "good":
                raise ValueError("bad shape")
            return text.upper()

        providers = [FakeProvider("gemini", ["bad"]), FakeProvider("anthropic", ["good"])]
        result, usages = await complete_with_failover(providers, None, "q", 100, 0.3, parse=parse)

        assert result == "GOOD"
        assert usages[0].status == "error"
        assert "bad shape" in usages[0].error
        assert usages[0].input_tokens == 100
        assert usages[1].status == "success"

    async def test_empty_chain(self):
        with pytest.raises(AllProvidersFailed):
            await complete_with_failover([], None, "q", 100, 0.3)
