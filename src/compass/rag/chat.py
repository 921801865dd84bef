"""Question answering: classify → fetch / search → assemble → stream.

``ChatService.stream_answer`` yields caller-facing events in this order:
one ``ContextEvent`` (deduplicated sources), any number of ``DeltaEvent``,
then exactly one ``DoneEvent`` or ``ErrorEvent``.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

from compass.config import RetrievalCfg
from compass.db.models import SimilarityResult, SourceType
from compass.rag.assembler import assemble, dedupe_sources
from compass.rag.classifier import Classification, IntentClassifier
from compass.rag.fetchers import FetcherRegistry, StructuredResult
from compass.rag.search import KnowledgeSearch
from compass.rag.streaming import ChatEvent, ContextEvent, ErrorEvent, StreamEmitter

logger = logging.getLogger(__name__)

MAX_HISTORY = 20
_ROLES = ("user", "assistant")


@dataclass
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def validate_history(history: Iterable[ChatMessage | dict] | None) -> list[ChatMessage]:
    """Normalise prior turns; raise ValueError on a malformed history."""
    messages: list[ChatMessage] = []
    for item in history or []:
        if isinstance(item, dict):
            item = ChatMessage(role=item.get("role", ""), content=item.get("content", ""))
        elif not isinstance(item, ChatMessage):
            raise ValueError(f"History entries must be messages, got {type(item).__name__}")
        if item.role not in _ROLES:
            raise ValueError(
                f"Invalid history role {item.role!r}; expected one of {', '.join(_ROLES)}"
            )
        if not isinstance(item.content, str):
            raise ValueError("History message content must be a string")
        messages.append(item)
    if len(messages) > MAX_HISTORY:
        raise ValueError(f"History has {len(messages)} messages; at most {MAX_HISTORY} allowed")
    return messages


class ChatService:
    """Answer questions about a tenant's knowledge base as a stream of events.

    Args:
        classifier: Routes each question to structured and/or semantic retrieval.
        fetchers: Structured fetchers bound to the knowledge store.
        search: Similarity search over the knowledge store.
        emitter: Streaming generation client.
        config: Match count and threshold used for chat retrieval.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        fetchers: FetcherRegistry,
        search: KnowledgeSearch,
        emitter: StreamEmitter,
        config: RetrievalCfg | None = None,
    ) -> None:
        self._classifier = classifier
        self._fetchers = fetchers
        self._search = search
        self._emitter = emitter
        self._config = config or RetrievalCfg()

    def stream_answer(
        self,
        question: str,
        tenant_id: str | None,
        history: Iterable[ChatMessage | dict] | None = None,
        source_types: Iterable[SourceType | str] | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Return the event stream for *question*.

        Raises:
            ValueError: Immediately, for an empty question, a malformed
                history or an unknown source type.
        """
        if not question or not question.strip():
            raise ValueError("question must not be empty")
        messages = validate_history(history)
        types = [SourceType.parse(t) for t in source_types] if source_types else None
        return self._run(question, tenant_id, messages, types)

    async def _run(
        self,
        question: str,
        tenant_id: str | None,
        history: list[ChatMessage],
        source_types: list[SourceType] | None,
    ) -> AsyncIterator[ChatEvent]:
        try:
            classification = await self._classifier.classify(question)
            structured = await self._fetch_structured(classification, tenant_id, source_types)

            rag: list[SimilarityResult] = []
            if classification.wants_semantic or not structured:
                try:
                    rag = await self._search.search(
                        question,
                        tenant_id,
                        match_count=self._config.chat_match_count,
                        match_threshold=self._config.chat_match_threshold,
                        source_types=source_types,
                    )
                except Exception as exc:
                    logger.error("Knowledge search failed: %s", exc)
                    yield ErrorEvent(f"Knowledge search failed: {exc}")
                    return

            logger.info(
                "Answering with %s intent: %d structured blocks, %d matches",
                classification.intent.value,
                len(structured),
                len(rag),
            )
            yield ContextEvent(sources=dedupe_sources(rag))

            system_prompt = assemble(structured, rag)
            messages = [m.to_dict() for m in history]
            messages.append({"role": "user", "content": question})
            async with aclosing(self._emitter.stream(system_prompt, messages)) as events:
                async for event in events:
                    yield event
        except Exception as exc:
            logger.exception("Chat request failed")
            yield ErrorEvent(f"Chat request failed: {exc}")

    async def _fetch_structured(
        self,
        classification: Classification,
        tenant_id: str | None,
        source_types: list[SourceType] | None,
    ) -> list[StructuredResult]:
        if not classification.wants_structured:
            return []
        results = await self._fetchers.fetch_many(
            classification.structured_labels, tenant_id, scope_hint=source_types
        )
        if not results:
            logger.info(
                "No structured data for %s; using similarity search",
                classification.structured_labels,
            )
        return results
