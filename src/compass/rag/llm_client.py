"""LiteLLM provider helpers: credential resolution, retry policy, completions.

Every embedding and classification call in the engine routes through this
module. LiteLLM's built-in retry is disabled (num_retries=0) at each call
site; retries are governed by one ``RetryPolicy`` so the retryable classes
and the backoff schedule are decided in a single place.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


class MissingCredentialError(EnvironmentError):
    """The provider credential for a model is not configured."""

    def __init__(self, provider: str, env_var: str) -> None:
        self.provider = provider
        self.env_var = env_var
        super().__init__(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string.

    Bare ``claude-*`` names are Anthropic; any other bare name is OpenAI.
    """
    if "/" in model:
        return model.split("/")[0].lower()
    if model.lower().startswith("claude"):
        return "anthropic"
    return "openai"


def resolve_api_key(model: str, explicit: str | None = None) -> str | None:
    """Return the credential to use for *model*.

    An explicitly supplied key wins; otherwise the provider's environment
    variable is read once, here. Providers that need no key return None.

    Raises:
        MissingCredentialError: If the provider needs a key and none is set.
    """
    if explicit:
        return explicit
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")
    if env_var is None:
        return None
    key = os.getenv(env_var)
    if not key:
        raise MissingCredentialError(provider, env_var)
    return key


# ------------------------------------------------------------------
# Retry policy
# ------------------------------------------------------------------


def is_rate_limited(exc: BaseException) -> bool:
    """True for provider rate-limit responses (HTTP 429)."""
    if isinstance(exc, litellm.RateLimitError):
        return True
    return getattr(exc, "status_code", None) == 429


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attempt *n* (0-based) that fails with a retryable error sleeps
    ``base_delay * 2**n`` seconds (1s, 2s, 4s with the defaults) before the
    next attempt. Non-retryable errors, and the error of the last allowed
    attempt, propagate unchanged.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: First backoff delay in seconds.
        retryable: Predicate deciding whether an exception is worth retrying.
        sleep: Awaitable sleep, swapped out in tests.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    retryable: Callable[[BaseException], bool] = is_rate_limited
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2**attempt)

    async def call(self, fn: Callable[[], Awaitable[T]], *, label: str = "provider call") -> T:
        """Await ``fn()`` under this policy and return its result."""
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if attempt >= self.max_retries or not self.retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s rate limited, retrying in %.1fs (attempt %d/%d)",
                    label,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                await self.sleep(delay)
                attempt += 1


# ------------------------------------------------------------------
# Single-shot completion
# ------------------------------------------------------------------


async def acomplete(
    model: str,
    messages: list[dict],
    *,
    api_key: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.0,
    retry: RetryPolicy | None = None,
) -> str:
    """Call litellm.acompletion() and return the first choice's content.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        api_key: Credential resolved by the caller (see resolve_api_key).
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature (0 = deterministic).
        retry: Policy for rate-limit retries; default is a single attempt.

    Returns:
        The text content of the first choice ("" if the provider sent none).

    Raises:
        litellm.exceptions.APIError: On upstream failure (after retries).
    """
    policy = retry or RetryPolicy(max_retries=0)

    async def _call():
        return await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            api_key=api_key,
            num_retries=0,
        )

    response = await policy.call(_call, label=f"completion ({model})")
    return response.choices[0].message.content or ""
