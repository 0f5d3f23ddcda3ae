"""
LLM providers behind one completion interface, tried in order until one succeeds.

Each provider wraps a LangChain chat model: Gemini (primary), Anthropic, and
optionally a local Ollama server as last resort.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Sequence, Tuple

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama

from core.entities import AIUsageEntry
from services.config import Config

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("429", "rate limit", "rate_limit", "resource_exhausted", "quota")


class ProviderError(Exception):
    """
    A failed completion. status_code carries the upstream HTTP status when known.
    """

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: Optional[int]
    output_tokens: Optional[int]
    latency_ms: int

    @property
    def total_tokens(self) -> Optional[int]:
        if self.input_tokens is None or self.output_tokens is None:
            return None
        return self.input_tokens + self.output_tokens


class AllProvidersFailed(Exception):
    """Every provider in the chain failed; usages holds one entry per attempt."""

    def __init__(self, message: str, usages: List[AIUsageEntry]):
        super().__init__(message)
        self.usages = usages


def _status_code(error: Exception) -> Optional[int]:
    """Best-effort extraction of an HTTP status from SDK exceptions."""
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value

    text = str(error).lower()
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return 429
    return None


def _message_text(content) -> str:
    """AIMessage.content may be a string or a list of content blocks."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LLMProvider(ABC):
    name: str

    def __init__(self, model: str, timeout: float = 120.0):
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def build_chat_model(self, max_tokens: int, temperature: float) -> BaseChatModel:
        raise NotImplementedError

    async def complete(
        self,
        system_prompt: Optional[str],
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """
        Run one chat completion.

        Raises:
            ProviderError: On any failure, including an empty response
        """
        messages = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_prompt))

        start = time.time()
        try:
            chat = self.build_chat_model(max_tokens, temperature)
            response = await asyncio.wait_for(chat.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderError(self.name, f"Request timed out after {self.timeout}s")
        except Exception as e:
            raise ProviderError(self.name, str(e) or type(e).__name__, _status_code(e)) from e
        latency_ms = int((time.time() - start) * 1000)

        text = _message_text(response.content).strip()
        if not text:
            raise ProviderError(self.name, "Empty response")

        usage = getattr(response, "usage_metadata", None) or {}
        return Completion(
            text=text,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            latency_ms=latency_ms,
        )


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, api_key: str, model: str, timeout: float = 120.0):
        super().__init__(model, timeout)
        self.api_key = api_key

    def build_chat_model(self, max_tokens: int, temperature: float) -> BaseChatModel:
        return ChatGoogleGenerativeAI(
            model=self.model,
            google_api_key=self.api_key,
            max_output_tokens=max_tokens,
            temperature=temperature,
            max_retries=0,
        )


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(self, api_key: str, model: str, timeout: float = 120.0):
        super().__init__(model, timeout)
        self.api_key = api_key

    def build_chat_model(self, max_tokens: int, temperature: float) -> BaseChatModel:
        return ChatAnthropic(
            model=self.model,
            api_key=self.api_key,
            max_tokens=max_tokens,
            temperature=temperature,
            max_retries=0,
        )


class OllamaProvider(LLMProvider):
    name = "ollama"

    def __init__(self, base_url: str, model: str, timeout: float = 300.0):
        super().__init__(model, timeout)
        # ChatOllama uses Ollama's native API, not the OpenAI-compatible /v1 endpoint
        base_url = base_url.rstrip("/")
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        self.base_url = base_url

    def build_chat_model(self, max_tokens: int, temperature: float) -> BaseChatModel:
        return ChatOllama(
            base_url=self.base_url,
            model=self.model,
            temperature=temperature,
            num_predict=max_tokens,
            num_ctx=8192,
        )


def build_providers(config: Config) -> List[LLMProvider]:
    """Ordered provider chain from the configured credentials."""
    providers: List[LLMProvider] = []
    if config.GEMINI_API_KEY:
        providers.append(GeminiProvider(config.GEMINI_API_KEY, config.GEMINI_MODEL))
    if config.ANTHROPIC_API_KEY:
        providers.append(AnthropicProvider(config.ANTHROPIC_API_KEY, config.ANTHROPIC_MODEL))
    if config.OLLAMA_BASE_URL:
        providers.append(OllamaProvider(config.OLLAMA_BASE_URL, config.OLLAMA_MODEL))

    if not providers:
        logger.warning("No LLM provider configured")
    return providers


def usage_for_success(provider: LLMProvider, completion: Completion, was_fallback: bool) -> AIUsageEntry:
    return AIUsageEntry(
        model=provider.model,
        provider=provider.name,
        status="success",
        input_tokens=completion.input_tokens,
        output_tokens=completion.output_tokens,
        total_tokens=completion.total_tokens,
        latency_ms=completion.latency_ms,
        was_fallback=was_fallback,
    )


def usage_for_failure(provider: LLMProvider, error: ProviderError, was_fallback: bool) -> AIUsageEntry:
    return AIUsageEntry(
        model=provider.model,
        provider=provider.name,
        status="rate_limited" if error.rate_limited else "error",
        was_fallback=was_fallback,
        error=error.message[:500],
    )


async def complete_with_failover(
    providers: Sequence[LLMProvider],
    system_prompt: Optional[str],
    user_prompt: str,
    max_tokens: int,
    temperature: float,
    parse: Optional[Callable[[str], Any]] = None,
) -> Tuple[Any, List[AIUsageEntry]]:
    """
    Try each provider in order until one completes.

    Args:
        parse: Optional converter applied to the completion text. A ValueError
            from it fails that attempt and moves on to the next provider.

    Returns:
        The parsed result (or the Completion when parse is None) and one usage
        entry per attempt

    Raises:
        AllProvidersFailed: When no provider is configured or every attempt fails
    """
    usages: List[AIUsageEntry] = []
    if not providers:
        raise AllProvidersFailed("No AI provider configured", usages)

    last_error = None
    for attempt, provider in enumerate(providers):
        was_fallback = attempt > 0
        try:
            completion = await provider.complete(system_prompt, user_prompt, max_tokens, temperature)
        except ProviderError as e:
            usages.append(usage_for_failure(provider, e, was_fallback))
            logger.warning(f"Provider {provider.name} failed: {e.message}")
            last_error = e
            continue

        usage = usage_for_success(provider, completion, was_fallback)
        if parse is None:
            usages.append(usage)
            return completion, usages

        try:
            result = parse(completion.text)
        except ValueError as e:
            usages.append(replace(usage, status="error", error=f"Unusable response: {e}"[:500]))
            logger.warning(f"Provider {provider.name} returned an unusable response: {e}")
            last_error = e
            continue

        usages.append(usage)
        return result, usages

    raise AllProvidersFailed(f"All providers failed, last error: {last_error}", usages)
