"""Streaming answer generation over the Anthropic Messages SSE API.

The provider stream is parsed line by line into a closed set of provider
events, which are re-emitted to the caller as ``DeltaEvent`` / ``DoneEvent``
/ ``ErrorEvent``. Every stream ends with exactly one ``done`` or one
``error``; the HTTP response is closed on every exit path, including a
consumer that stops iterating early.

State machine, one per ``StreamEmitter.stream()`` call so a shared emitter
serves concurrent requests:
  IDLE → SENT        request dispatched
  SENT → STREAMING   first provider event parsed
  STREAMING → DONE   end of stream
  any → ERROR        transport error, non-2xx, empty body, provider error
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Union

import httpx

from compass.config import GenerationCfg
from compass.rag.llm_client import resolve_api_key

logger = logging.getLogger(__name__)

_ERROR_BODY_LIMIT = 500


class StreamState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


# ------------------------------------------------------------------
# Provider events
# ------------------------------------------------------------------


@dataclass
class MessageStart:
    input_tokens: int = 0


@dataclass
class TextDelta:
    text: str


@dataclass
class UsageDelta:
    output_tokens: int = 0


@dataclass
class MessageStop:
    pass


@dataclass
class ProviderError:
    message: str


@dataclass
class Ignored:
    pass


ProviderEvent = Union[MessageStart, TextDelta, UsageDelta, MessageStop, ProviderError, Ignored]


def parse_provider_event(line: str) -> ProviderEvent | None:
    """Parse one SSE line. Returns None for lines that carry no data."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return Ignored()

    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream event: %r", payload[:120])
        return Ignored()
    if not isinstance(obj, dict):
        return Ignored()

    kind = obj.get("type")
    if kind == "message_start":
        usage = (obj.get("message") or {}).get("usage") or {}
        return MessageStart(input_tokens=int(usage.get("input_tokens") or 0))
    if kind == "content_block_delta":
        delta = obj.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return TextDelta(text=delta["text"])
        return Ignored()
    if kind == "message_delta":
        usage = obj.get("usage") or {}
        if "output_tokens" in usage:
            return UsageDelta(output_tokens=int(usage.get("output_tokens") or 0))
        return Ignored()
    if kind == "message_stop":
        return MessageStop()
    if kind == "error":
        error = obj.get("error") or {}
        return ProviderError(message=str(error.get("message") or "unknown provider error"))
    return Ignored()


# ------------------------------------------------------------------
# Caller-facing events
# ------------------------------------------------------------------


class _Event:
    type = ""

    def to_dict(self) -> dict:
        raise NotImplementedError

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass
class ContextEvent(_Event):
    sources: list = field(default_factory=list)
    type = "context"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "sources": [s.to_dict() if hasattr(s, "to_dict") else s for s in self.sources],
        }


@dataclass
class DeltaEvent(_Event):
    text: str
    type = "delta"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass
class DoneEvent(_Event):
    usage: dict[str, int] = field(default_factory=dict)
    type = "done"

    def to_dict(self) -> dict:
        return {"type": self.type, "usage": dict(self.usage)}


@dataclass
class ErrorEvent(_Event):
    message: str
    type = "error"

    def to_dict(self) -> dict:
        return {"type": self.type, "message": self.message}


ChatEvent = Union[ContextEvent, DeltaEvent, DoneEvent, ErrorEvent]


# ------------------------------------------------------------------
# Emitter
# ------------------------------------------------------------------


class StreamEmitter:
    """Send one streaming generation request and relay its events.

    Args:
        config: Generation model and endpoint settings.
        api_key: Explicit Anthropic key; defaults to ``ANTHROPIC_API_KEY``.
        client: Shared ``httpx.AsyncClient``. When omitted, a client is
            created per stream and closed with it.

    Raises:
        MissingCredentialError: If no Anthropic key is available.
    """

    def __init__(
        self,
        config: GenerationCfg | None = None,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or GenerationCfg()
        # The endpoint is Anthropic-native; a LiteLLM-style prefix is dropped.
        self._model = self._config.model.split("/")[-1]
        self._api_key = resolve_api_key("anthropic/" + self._model, api_key)
        self._client = client

    def _request_body(self, system_prompt: str, messages: list[dict]) -> dict:
        return {
            "model": self._model,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
            "system": system_prompt,
            "messages": messages,
            "stream": True,
        }

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key or "",
            "anthropic-version": self._config.api_version,
            "content-type": "application/json",
        }

    async def stream(
        self, system_prompt: str, messages: list[dict]
    ) -> AsyncIterator[DeltaEvent | DoneEvent | ErrorEvent]:
        """Yield deltas as they arrive, then one ``DoneEvent`` or ``ErrorEvent``."""
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout))
        usage = {"input_tokens": 0, "output_tokens": 0}
        state = StreamState.SENT
        try:
            async with client.stream(
                "POST",
                self._config.api_url,
                headers=self._headers(),
                json=self._request_body(system_prompt, messages),
            ) as response:
                if response.status_code >= 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    state = StreamState.ERROR
                    logger.error("Generation API returned %d", response.status_code)
                    yield ErrorEvent(
                        f"Generation API error {response.status_code}: "
                        f"{body[:_ERROR_BODY_LIMIT]}"
                    )
                    return

                async for line in response.aiter_lines():
                    event = parse_provider_event(line)
                    if event is None:
                        continue
                    if state is StreamState.SENT and not isinstance(event, Ignored):
                        state = StreamState.STREAMING

                    if isinstance(event, TextDelta):
                        yield DeltaEvent(event.text)
                    elif isinstance(event, MessageStart):
                        usage["input_tokens"] = event.input_tokens
                    elif isinstance(event, UsageDelta):
                        usage["output_tokens"] = event.output_tokens
                    elif isinstance(event, ProviderError):
                        state = StreamState.ERROR
                        logger.error("Generation stream error: %s", event.message)
                        yield ErrorEvent(f"Generation stream error: {event.message}")
                        return
            state = StreamState.DONE if state is StreamState.STREAMING else StreamState.ERROR
        except httpx.HTTPError as exc:
            state = StreamState.ERROR
            logger.error("Generation request failed: %s", exc)
            yield ErrorEvent(f"Generation request failed: {exc}")
            return
        finally:
            if owns_client:
                await client.aclose()
            logger.debug("Generation stream closed in state %s", state.value)

        if state is not StreamState.DONE:
            yield ErrorEvent("Generation API returned an empty response")
            return
        yield DoneEvent(usage=usage)
