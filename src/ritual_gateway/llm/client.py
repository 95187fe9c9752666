"""
Provider-agnostic async LLM client with prompt caching, retries, and streaming.

Supports Anthropic (Claude) and OpenAI (GPT / o-series).

Features:
  - Multi-turn chat: system instructions + alternating user/assistant messages
  - Automatic prompt caching of the system block (Anthropic cache_control,
    OpenAI prefix caching) -- agent instructions are stable per agent
  - Retry with exponential backoff on transient failures
  - Timeout enforcement
  - Token usage reported per call
  - Streaming text deltas

Usage:
    client = create_client()  # Auto-detects provider from env
    response = await client.complete(
        system="You are a weather specialist...",
        messages=[{"role": "user", "content": "Weather in Paris?"}],
        model="gpt-4o",
    )
    print(response.content)

    async for delta in client.stream(system=..., messages=...):
        print(delta, end="")

Failures after the retry budget raise LLMCallError -- never a placeholder string.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from ..security.prompt_guard import sanitize_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120
DEFAULT_MAX_RETRIES = 2
DEFAULT_MAX_PROMPT_LENGTH = 200_000
DEFAULT_MAX_TOKENS = 4096
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}
MODEL_PREFIXES = {
    "anthropic": ("claude",),
    "openai": ("gpt", "o1", "o3", "o4", "chatgpt"),
}
API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class LLMCallError(Exception):
    """Raised when a provider call fails permanently (after retries)."""


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class TokenUsage:
    """Token usage tracking for a single LLM call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        self.total_tokens = self.input_tokens + self.output_tokens


@dataclass
class LLMResponse:
    """Response from a single LLM call."""

    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""
    latency_ms: float = 0.0


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """
    Provider-agnostic chat client.

    The SDK for the chosen provider is imported lazily; if it is missing the
    client still constructs (so the gateway can serve registry endpoints)
    and every call raises LLMCallError.
    """

    def __init__(
        self,
        provider: str = "openai",
        model: str | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
    ):
        self._provider = provider.lower()
        if self._provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {self._provider}")
        self._model = model or DEFAULT_MODELS[self._provider]
        self._api_key = api_key or self._load_api_key()
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_prompt_length = max_prompt_length
        self._client: Any = None

        self._init_client()
        logger.info(
            f"[LLM] Initialized {self._provider} client "
            f"(model={self._model}, timeout={self._timeout}s)"
        )

    def _load_api_key(self) -> str:
        env_var = API_KEY_ENV[self._provider]
        key = os.environ.get(env_var, "")
        if not key:
            logger.warning(f"[LLM] {env_var} not set -- calls will fail")
        return key

    def _init_client(self) -> None:
        """Initialize the provider-specific SDK client."""
        try:
            if self._provider == "anthropic":
                import anthropic

                self._client = anthropic.AsyncAnthropic(
                    api_key=self._api_key, timeout=self._timeout
                )
            else:
                import openai

                self._client = openai.AsyncOpenAI(
                    api_key=self._api_key, timeout=self._timeout
                )
        except ImportError:
            logger.error(f"[LLM] {self._provider} SDK not installed.")
            self._client = None

    def resolve_model(self, requested: str | None) -> str:
        """Use the requested model if it belongs to this provider, else the default."""
        if requested and requested.lower().startswith(MODEL_PREFIXES[self._provider]):
            return requested
        if requested:
            logger.debug(
                f"[LLM] Model '{requested}' not served by {self._provider}; "
                f"using {self._model}"
            )
        return self._model

    def _sanitize_messages(self, messages: list[dict]) -> list[dict]:
        per_message = self._max_prompt_length // max(len(messages), 1)
        return [
            {
                "role": m["role"],
                "content": sanitize_for_prompt(m["content"], max_length=per_message),
            }
            for m in messages
        ]

    async def complete(
        self,
        system: str,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.5,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        role: str = "assistant",
    ) -> LLMResponse:
        """
        Make a chat call with automatic retries.

        Args:
            system: Agent instructions (cached by the provider).
            messages: [{"role": "user"|"assistant", "content": str}, ...]
            model: Requested model; falls back to the client default.
            temperature: Sampling temperature.
            max_tokens: Maximum output tokens.
            role: Semantic hint for logging only (e.g. "synthesizer").

        Raises:
            LLMCallError: on non-retryable failure or retry exhaustion.
        """
        if self._client is None:
            raise LLMCallError(f"{self._provider} client not initialized")

        model_name = self.resolve_model(model)
        messages = self._sanitize_messages(messages)
        start = time.time()
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._call_provider(
                    system, messages, model_name, temperature, max_tokens
                )
                response.latency_ms = (time.time() - start) * 1000
                logger.debug(
                    f"[LLM] {self._provider}/{role}: "
                    f"{response.usage.input_tokens}in "
                    f"({response.usage.cached_input_tokens} cached) + "
                    f"{response.usage.output_tokens}out "
                    f"({response.latency_ms:.0f}ms)"
                )
                return response
            except Exception as e:
                last_error = e
                if self._is_retryable(e) and attempt < self._max_retries:
                    delay = min(RETRY_BASE_DELAY * (2**attempt), RETRY_MAX_DELAY)
                    logger.warning(
                        f"[LLM] Retryable error (attempt {attempt + 1}): "
                        f"{type(e).__name__}. Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    break

        logger.error(
            f"[LLM] Call failed after {attempt + 1} attempt(s): "
            f"{type(last_error).__name__}"
        )
        raise LLMCallError(f"{type(last_error).__name__}: {last_error}") from last_error

    async def stream(
        self,
        system: str,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.5,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> AsyncIterator[str]:
        """Yield text deltas as the provider produces them. No retries mid-stream."""
        if self._client is None:
            raise LLMCallError(f"{self._provider} client not initialized")

        model_name = self.resolve_model(model)
        messages = self._sanitize_messages(messages)
        try:
            if self._provider == "anthropic":
                async with self._client.messages.stream(
                    model=model_name,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=self._anthropic_system(system),
                    messages=messages,
                ) as stream:
                    async for text in stream.text_stream:
                        yield text
            else:
                response = await self._client.chat.completions.create(
                    model=model_name,
                    messages=[{"role": "system", "content": system}, *messages],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    stream=True,
                )
                async for chunk in response:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
        except LLMCallError:
            raise
        except Exception as e:
            logger.error(f"[LLM] Stream failed: {type(e).__name__}")
            raise LLMCallError(f"{type(e).__name__}: {e}") from e

    async def _call_provider(
        self,
        system: str,
        messages: list[dict],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        if self._provider == "anthropic":
            return await self._call_anthropic(system, messages, model, temperature, max_tokens)
        return await self._call_openai(system, messages, model, temperature, max_tokens)

    @staticmethod
    def _anthropic_system(system: str) -> list[dict]:
        if not system:
            return []
        return [{
            "type": "text",
            "text": system,
            "cache_control": {"type": "ephemeral"},
        }]

    async def _call_anthropic(
        self, system: str, messages: list[dict], model: str,
        temperature: float, max_tokens: int,
    ) -> LLMResponse:
        """Anthropic Claude with explicit prompt caching (cache_control)."""
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=self._anthropic_system(system),
            messages=messages,
        )
        usage_data = response.usage
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            content=text,
            usage=TokenUsage(
                input_tokens=getattr(usage_data, "input_tokens", 0),
                output_tokens=getattr(usage_data, "output_tokens", 0),
                cached_input_tokens=getattr(usage_data, "cache_read_input_tokens", 0) or 0,
            ),
            model=model,
            provider="anthropic",
        )

    async def _call_openai(
        self, system: str, messages: list[dict], model: str,
        temperature: float, max_tokens: int,
    ) -> LLMResponse:
        """OpenAI with automatic prefix caching."""
        response = await self._client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": system}, *messages],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        usage_data = response.usage
        details = getattr(usage_data, "prompt_tokens_details", None)
        return LLMResponse(
            content=response.choices[0].message.content or "",
            usage=TokenUsage(
                input_tokens=usage_data.prompt_tokens if usage_data else 0,
                output_tokens=usage_data.completion_tokens if usage_data else 0,
                cached_input_tokens=getattr(details, "cached_tokens", 0) if details else 0,
            ),
            model=model,
            provider="openai",
        )

    def _is_retryable(self, error: Exception) -> bool:
        """Check if an error is transient and worth retrying."""
        return type(error).__name__ in {
            "RateLimitError",
            "APITimeoutError",
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "Timeout",
            "ConnectError",
        }

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> str:
        return self._model


# =============================================================================
# FACTORY
# =============================================================================


def create_client(
    provider: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    **kwargs,
) -> LLMClient:
    """
    Create an LLM client, auto-detecting provider from environment if not specified.

    Detection order:
      1. Explicit provider argument
      2. OPENAI_API_KEY set -> openai (built-in agents default to gpt-4o)
      3. ANTHROPIC_API_KEY set -> anthropic
      4. Default: openai
    """
    if provider is None:
        if os.environ.get("OPENAI_API_KEY"):
            provider = "openai"
        elif os.environ.get("ANTHROPIC_API_KEY"):
            provider = "anthropic"
        else:
            provider = "openai"
            logger.warning("[LLM] No API key found. Defaulting to openai.")

    return LLMClient(provider=provider, model=model, api_key=api_key, **kwargs)
