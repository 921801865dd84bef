"""Tests for LiteLLM provider helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from compass.rag.llm_client import (
    MissingCredentialError,
    RetryPolicy,
    acomplete,
    is_rate_limited,
    provider_of,
    resolve_api_key,
)


# ------------------------------------------------------------------
# Credentials
# ------------------------------------------------------------------


@pytest.mark.parametrize("model,provider", [
    ("openai/text-embedding-3-small", "openai"),
    ("anthropic/claude-sonnet-4-20250514", "anthropic"),
    ("claude-sonnet-4-20250514", "anthropic"),
    ("gpt-4o-mini", "openai"),
    ("ollama/llama3", "ollama"),
])
def test_provider_of(model, provider):
    assert provider_of(model) == provider


def test_resolve_api_key_reads_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    assert resolve_api_key("claude-sonnet-4-20250514") == "sk-ant"


def test_resolve_api_key_missing_raises(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MissingCredentialError) as info:
        resolve_api_key("openai/gpt-4o")
    assert info.value.env_var == "OPENAI_API_KEY"
    assert isinstance(info.value, EnvironmentError)


def test_resolve_api_key_explicit_wins(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert resolve_api_key("openai/gpt-4o", "sk-explicit") == "sk-explicit"


def test_resolve_api_key_local_provider_needs_none():
    assert resolve_api_key("ollama/llama3") is None


# ------------------------------------------------------------------
# RetryPolicy
# ------------------------------------------------------------------


def test_delay_schedule_doubles():
    policy = RetryPolicy(base_delay=1.0)
    assert [policy.delay_for(n) for n in range(3)] == [1.0, 2.0, 4.0]


def test_is_rate_limited_by_status_code():
    err = Exception("slow down")
    err.status_code = 429
    assert is_rate_limited(err)
    assert not is_rate_limited(ValueError("nope"))


@pytest.mark.asyncio
async def test_retry_policy_custom_predicate():
    sleeps: list[float] = []

    async def _sleep(d: float) -> None:
        sleeps.append(d)

    calls = {"n": 0}

    async def _flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise TimeoutError("transient")
        return "ok"

    policy = RetryPolicy(
        max_retries=5,
        base_delay=0.5,
        retryable=lambda exc: isinstance(exc, TimeoutError),
        sleep=_sleep,
    )
    assert await policy.call(_flaky) == "ok"
    assert sleeps == [0.5, 1.0]


# ------------------------------------------------------------------
# acomplete()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_acomplete_returns_content():
    response = MagicMock()
    response.choices[0].message.content = "Hello, world!"
    mock = AsyncMock(return_value=response)

    with patch("compass.rag.llm_client.litellm.acompletion", mock):
        result = await acomplete("openai/gpt-4o", [{"role": "user", "content": "Hi"}], api_key="k")

    assert result == "Hello, world!"
    kwargs = mock.call_args.kwargs
    assert kwargs["api_key"] == "k"
    assert kwargs["num_retries"] == 0


@pytest.mark.asyncio
async def test_acomplete_none_content_is_empty_string():
    response = MagicMock()
    response.choices[0].message.content = None

    with patch("compass.rag.llm_client.litellm.acompletion", AsyncMock(return_value=response)):
        result = await acomplete("openai/gpt-4o", [{"role": "user", "content": "Hi"}])

    assert result == ""


@pytest.mark.asyncio
async def test_acomplete_does_not_retry_by_default():
    err = Exception("rate limited")
    err.status_code = 429
    mock = AsyncMock(side_effect=err)

    with patch("compass.rag.llm_client.litellm.acompletion", mock):
        with pytest.raises(Exception, match="rate limited"):
            await acomplete("openai/gpt-4o", [{"role": "user", "content": "Hi"}])

    assert mock.call_count == 1
