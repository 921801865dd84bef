"""Structured fetchers: named, independent lookups used for structured intent.

Each label maps to one async fetch function that reads the knowledge store's
per-source catalogue and renders a text block for the prompt. Fetchers are
isolated: one that raises is logged and skipped, the rest still run.

A fetcher declares the source types it reads; given a ``scope_hint`` that
shares none of them, it is skipped without touching the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from compass.db.models import SourceRecord, SourceType
from compass.db.store import VectorStore

logger = logging.getLogger(__name__)

_LIST_LIMIT = 25

FetchFn = Callable[[VectorStore, "str | None"], Awaitable["str | None"]]


@dataclass
class StructuredResult:
    label: str
    text: str


@dataclass
class _Fetcher:
    fn: FetchFn
    source_types: frozenset[str]


class FetcherRegistry:
    """Label → fetcher mapping bound to one vector store.

    Args:
        store: Store whose catalogue the fetchers read.
        include_builtin: Register the standard labels (default True).
    """

    def __init__(self, store: VectorStore, *, include_builtin: bool = True) -> None:
        self._store = store
        self._fetchers: dict[str, _Fetcher] = {}
        if include_builtin:
            for label, (fn, types) in _BUILTIN.items():
                self.register(label, fn, types)

    @property
    def labels(self) -> list[str]:
        return list(self._fetchers)

    def register(
        self, label: str, fn: FetchFn, source_types: Iterable[SourceType | str]
    ) -> None:
        """Add or replace the fetcher for *label*."""
        self._fetchers[label] = _Fetcher(
            fn=fn, source_types=frozenset(SourceType.parse(t).value for t in source_types)
        )

    async def fetch(
        self,
        label: str,
        tenant_id: str | None,
        scope_hint: Iterable[SourceType | str] | None = None,
    ) -> StructuredResult | None:
        """Run one fetcher. Returns None for unknown labels, out-of-scope labels,
        empty data, or a failing fetcher (logged)."""
        fetcher = self._fetchers.get(label)
        if fetcher is None:
            logger.debug("No fetcher registered for label %r", label)
            return None

        if scope_hint is not None:
            scope = {SourceType.parse(t).value for t in scope_hint}
            if scope and not (scope & fetcher.source_types):
                logger.debug("Skipping %s: out of scope %s", label, sorted(scope))
                return None

        try:
            text = await fetcher.fn(self._store, tenant_id)
        except Exception:
            logger.exception("Structured fetcher %r failed; skipping", label)
            return None

        if not text or not text.strip():
            return None
        return StructuredResult(label=label, text=text)

    async def fetch_many(
        self,
        labels: Iterable[str],
        tenant_id: str | None,
        scope_hint: Iterable[SourceType | str] | None = None,
    ) -> list[StructuredResult]:
        """Run several fetchers concurrently; results keep the order of *labels*."""
        hint = list(scope_hint) if scope_hint is not None else None
        results = await asyncio.gather(
            *(self.fetch(label, tenant_id, hint) for label in dict.fromkeys(labels))
        )
        return [r for r in results if r is not None]


# ------------------------------------------------------------------
# Built-in fetchers
# ------------------------------------------------------------------


def _meta(record: SourceRecord, key: str, default: str = "unspecified") -> str:
    value = record.metadata.get(key)
    if value is None or str(value).strip() == "":
        return default
    return str(value)


def _counts_block(heading: str, counts: Counter, total: int) -> str:
    lines = [f"## {heading}", f"Total: {total}"]
    for name, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"- {name}: {n}")
    return "\n".join(lines)


async def content_by_category(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id, [SourceType.CONTENT.value])
    if not records:
        return None
    counts = Counter(_meta(r, "category") for r in records)
    return _counts_block("Content assets by category", counts, len(records))


async def content_by_status(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id, [SourceType.CONTENT.value])
    if not records:
        return None
    counts = Counter(_meta(r, "status") for r in records)
    return _counts_block("Content assets by status", counts, len(records))


async def meetings_list(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id, [SourceType.MEETING.value])
    if not records:
        return None
    records.sort(key=lambda r: _meta(r, "date", r.created_at or ""), reverse=True)
    lines = [f"## Meetings ({len(records)} total, most recent first)"]
    for r in records[:_LIST_LIMIT]:
        lines.append(f"- {_meta(r, 'date', r.created_at or 'undated')}: {r.title or '(untitled)'}")
    return "\n".join(lines)


async def deliverables_list(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id, [SourceType.DELIVERABLE.value])
    if not records:
        return None
    lines = [f"## Deliverables ({len(records)} total)"]
    for r in records[:_LIST_LIMIT]:
        lines.append(f"- {r.title or '(untitled)'} [status: {_meta(r, 'status')}]")
    return "\n".join(lines)


async def notes_list(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id, [SourceType.NOTE.value])
    if not records:
        return None
    lines = [f"## Notes ({len(records)} total, most recent first)"]
    for r in records[:_LIST_LIMIT]:
        lines.append(f"- {r.created_at or 'undated'}: {r.title or '(untitled)'}")
    return "\n".join(lines)


async def knowledge_overview(store: VectorStore, tenant_id: str | None) -> str | None:
    records = await store.list_sources(tenant_id)
    if not records:
        return None
    counts = Counter(r.source_type for r in records)
    return _counts_block("Knowledge base overview (documents by type)", counts, len(records))


_BUILTIN: dict[str, tuple[FetchFn, tuple[SourceType, ...]]] = {
    "content_by_category": (content_by_category, (SourceType.CONTENT,)),
    "content_by_status": (content_by_status, (SourceType.CONTENT,)),
    "meetings_list": (meetings_list, (SourceType.MEETING,)),
    "deliverables_list": (deliverables_list, (SourceType.DELIVERABLE,)),
    "notes_list": (notes_list, (SourceType.NOTE,)),
    "knowledge_overview": (knowledge_overview, tuple(SourceType)),
}
