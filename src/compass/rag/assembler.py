"""Context assembler: turn retrieval output into the generation system prompt.

Template selection:
  1. Structured blocks and search matches → hybrid (blocks first, then excerpts).
  2. Structured blocks only → structured.
  3. Search matches only → retrieval (numbered, titled excerpts).
  4. Nothing → fallback (tell the user nothing was found).

``dedupe_sources`` builds the caller-facing source list: one entry per
document, carrying its best similarity.
"""

from __future__ import annotations

from dataclasses import dataclass

from compass.db.models import SimilarityResult
from compass.rag.fetchers import StructuredResult

_PERSONA = "You are a knowledgeable content analyst for a marketing agency."

HYBRID_TEMPLATE = (
    f"{_PERSONA} You have two kinds of context about the client: structured data "
    "from their records and excerpts from their knowledge base.\n\n"
    "STRUCTURED DATA:\n{structured}\n\n"
    "KNOWLEDGE BASE EXCERPTS:\n{excerpts}\n\n"
    "Use both kinds of context to answer. Prefer the structured data for counts, "
    "lists and statuses, and the excerpts for details. Name the source when you "
    "rely on an excerpt. If the context is not enough to answer, say so clearly."
)

STRUCTURED_TEMPLATE = (
    f"{_PERSONA} You have the following structured data from the client's records.\n\n"
    "STRUCTURED DATA:\n{structured}\n\n"
    "Answer using ONLY this data. Surface patterns, totals and notable statistics "
    "where they help. If the data does not answer the question, say so clearly."
)

RETRIEVAL_TEMPLATE = (
    f"{_PERSONA} You have access to the following content from the client's "
    "content library. Use ONLY this context to answer questions. If the context "
    "doesn't contain enough information to answer, say so clearly.\n\n"
    "CONTEXT:\n{excerpts}\n\n"
    "Name the source you draw from. Keep your responses concise and actionable. "
    "If the user asks about topics, themes, or patterns, synthesize across "
    "multiple pieces of content."
)

FALLBACK_TEMPLATE = (
    f"{_PERSONA} The user is asking about their content library, but no relevant "
    "content was found in the knowledge base. Let them know you couldn't find "
    "matching content and suggest they try rephrasing their question or check "
    "that content has been ingested."
)


@dataclass
class ContextSource:
    title: str
    source_type: str
    source_id: str
    similarity: float

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "similarity": self.similarity,
        }


def format_excerpts(rag_results: list[SimilarityResult]) -> str:
    blocks = [
        f'[{i}] Title: "{r.title}"\nSource: {r.source_type}\n---\n{r.content}'
        for i, r in enumerate(rag_results, start=1)
    ]
    return "\n\n".join(blocks)


def format_structured(structured_results: list[StructuredResult]) -> str:
    return "\n\n".join(s.text.strip() for s in structured_results)


def assemble(
    structured_results: list[StructuredResult] | None,
    rag_results: list[SimilarityResult] | None,
) -> str:
    """Build the system prompt for the available context.

    Args:
        structured_results: Non-empty fetcher outputs, in label order.
        rag_results: Similarity matches, highest first.

    Returns:
        The system prompt text.
    """
    structured = [s for s in structured_results or [] if s.text.strip()]
    rag = list(rag_results or [])

    if structured and rag:
        return HYBRID_TEMPLATE.format(
            structured=format_structured(structured), excerpts=format_excerpts(rag)
        )
    if structured:
        return STRUCTURED_TEMPLATE.format(structured=format_structured(structured))
    if rag:
        return RETRIEVAL_TEMPLATE.format(excerpts=format_excerpts(rag))
    return FALLBACK_TEMPLATE


def dedupe_sources(rag_results: list[SimilarityResult] | None) -> list[ContextSource]:
    """One source per ``source_id`` with its best similarity, best first."""
    best: dict[str, SimilarityResult] = {}
    for r in rag_results or []:
        current = best.get(r.source_id)
        if current is None or r.similarity > current.similarity:
            best[r.source_id] = r

    ranked = sorted(best.values(), key=lambda r: r.similarity, reverse=True)
    return [
        ContextSource(
            title=r.title,
            source_type=r.source_type,
            source_id=r.source_id,
            similarity=r.similarity,
        )
        for r in ranked
    ]
