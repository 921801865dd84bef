"""Domain models for the Compass knowledge store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SourceType(str, Enum):
    """Kind of document a chunk was cut from."""

    NOTE = "note"
    MEETING = "meeting"
    DELIVERABLE = "deliverable"
    CONTENT = "content"
    PROCESS = "process"
    COMPETITIVE_INTEL = "competitive_intel"

    @classmethod
    def parse(cls, value: str | SourceType) -> SourceType:
        """Return the member for *value*, raising ValueError with the valid choices."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown source type {value!r} (expected one of: {choices})") from None


@dataclass
class TextChunk:
    """Chunker output: a retrievable slice before it has been embedded."""

    content: str
    chunk_index: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class KnowledgeChunk:
    """A persisted, embedded chunk (one row of the knowledge table)."""

    tenant_id: str | None
    source_type: SourceType
    source_id: str
    title: str
    content: str
    chunk_index: int
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    chunk_id: int | None = None  # set after insert
    created_at: str | None = None


@dataclass
class SimilarityResult:
    """One row returned by the nearest-neighbour query."""

    chunk_id: int
    tenant_id: str | None
    source_type: str
    source_id: str
    title: str
    content: str
    chunk_index: int
    metadata: dict[str, Any]
    similarity: float


@dataclass
class SourceRecord:
    """Per-source catalogue entry: the first chunk's metadata plus a chunk count."""

    source_id: str
    source_type: str
    tenant_id: str | None
    title: str
    metadata: dict[str, Any]
    chunk_count: int
    created_at: str | None = None
