"""Tests for structured fetchers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from compass.db.models import KnowledgeChunk, SourceType
from compass.rag.fetchers import FetcherRegistry


async def _add(store, source_id, source_type, title, metadata=None, tenant="acme"):
    await store.bulk_insert(
        [
            KnowledgeChunk(
                tenant_id=tenant,
                source_type=source_type,
                source_id=source_id,
                title=title,
                content=f"{title} body",
                chunk_index=0,
                embedding=[1.0, 0.0, 0.0],
                metadata=metadata or {},
            )
        ]
    )


@pytest_asyncio.fixture
async def seeded(store):
    await _add(store, "c1", SourceType.CONTENT, "Launch blog", {"category": "blog", "status": "published"})
    await _add(store, "c2", SourceType.CONTENT, "Case study", {"category": "case_study", "status": "draft"})
    await _add(store, "c3", SourceType.CONTENT, "Holiday blog", {"category": "blog", "status": "draft"})
    await _add(store, "m1", SourceType.MEETING, "Kickoff", {"date": "2024-04-02"})
    await _add(store, "m2", SourceType.MEETING, "Quarterly review", {"date": "2024-06-10"})
    await _add(store, "d1", SourceType.DELIVERABLE, "Brand guide", {"status": "in_review"})
    await _add(store, "n1", SourceType.NOTE, "Call notes")
    await _add(store, "x1", SourceType.NOTE, "Other tenant note", tenant="globex")
    return store


# ---------------------------------------------------------------------------
# Built-in fetchers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_content_by_category_counts(seeded):
    result = await FetcherRegistry(seeded).fetch("content_by_category", "acme")
    assert "Total: 3" in result.text
    assert "- blog: 2" in result.text
    assert "- case_study: 1" in result.text


@pytest.mark.asyncio
async def test_content_by_status_counts(seeded):
    result = await FetcherRegistry(seeded).fetch("content_by_status", "acme")
    assert "- draft: 2" in result.text
    assert "- published: 1" in result.text


@pytest.mark.asyncio
async def test_meetings_list_most_recent_first(seeded):
    result = await FetcherRegistry(seeded).fetch("meetings_list", "acme")
    assert result.text.index("Quarterly review") < result.text.index("Kickoff")
    assert "2024-06-10" in result.text


@pytest.mark.asyncio
async def test_deliverables_list_shows_status(seeded):
    result = await FetcherRegistry(seeded).fetch("deliverables_list", "acme")
    assert "Brand guide [status: in_review]" in result.text


@pytest.mark.asyncio
async def test_notes_list_is_tenant_scoped(seeded):
    result = await FetcherRegistry(seeded).fetch("notes_list", "acme")
    assert "Call notes" in result.text
    assert "Other tenant note" not in result.text


@pytest.mark.asyncio
async def test_knowledge_overview_counts_by_type(seeded):
    result = await FetcherRegistry(seeded).fetch("knowledge_overview", "acme")
    assert "Total: 7" in result.text
    assert "- content: 3" in result.text
    assert "- meeting: 2" in result.text


@pytest.mark.asyncio
async def test_empty_store_yields_none(store):
    registry = FetcherRegistry(store)
    for label in registry.labels:
        assert await registry.fetch(label, "acme") is None


# ---------------------------------------------------------------------------
# Registry behaviour
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_label_yields_none(store):
    assert await FetcherRegistry(store).fetch("revenue_by_month", "acme") is None


@pytest.mark.asyncio
async def test_scope_hint_skips_out_of_scope_fetcher():
    store = AsyncMock()
    registry = FetcherRegistry(store)

    result = await registry.fetch("meetings_list", "acme", scope_hint=["content"])

    assert result is None
    store.list_sources.assert_not_called()


@pytest.mark.asyncio
async def test_scope_hint_keeps_in_scope_fetcher(seeded):
    result = await FetcherRegistry(seeded).fetch("meetings_list", "acme", scope_hint=["meeting"])
    assert result is not None


@pytest.mark.asyncio
async def test_failing_fetcher_is_isolated(seeded, caplog):
    registry = FetcherRegistry(seeded)

    async def _boom(store, tenant_id):
        raise RuntimeError("catalogue unavailable")

    registry.register("notes_list", _boom, [SourceType.NOTE])

    results = await registry.fetch_many(["notes_list", "meetings_list"], "acme")

    assert [r.label for r in results] == ["meetings_list"]
    assert "catalogue unavailable" in caplog.text


@pytest.mark.asyncio
async def test_fetch_many_keeps_label_order_and_dedupes(seeded):
    results = await FetcherRegistry(seeded).fetch_many(
        ["notes_list", "content_by_status", "notes_list"], "acme"
    )
    assert [r.label for r in results] == ["notes_list", "content_by_status"]


def test_builtin_registry_can_be_disabled(store):
    assert FetcherRegistry(store, include_builtin=False).labels == []
