"""Paragraph/sentence chunker with sentence overlap and a hard size ceiling.

Strategy:
  1. Whole text within ``max_tokens`` → one chunk.
  2. Split on blank lines; a single oversized block is re-split on line breaks.
  3. Pack paragraphs up to ``max_tokens``. Each new chunk starts with the last
     ``overlap_sentences`` sentences of the previous one.
  4. Paragraphs larger than ``max_tokens`` are packed sentence by sentence
     with the same overlap rule.
  5. Anything still above ``hard_token_cap`` is force-split by word count
     (then by characters, for a single giant "word"), without overlap.

Markdown headings and short all-caps lines set ``metadata["section"]`` for
every chunk flushed after them.

Token counts are estimated as ceil(chars / 3): pessimistic on purpose, since
the embedding provider rejects inputs over its token ceiling.
"""

from __future__ import annotations

import math
import re

from compass.config import ChunkingCfg
from compass.db.models import TextChunk

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_MD_HEADING_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_CAPS_HEADING_MAX_LEN = 80


def estimate_tokens(text: str) -> int:
    """Pessimistic token estimate: 3 characters ≈ 1 token."""
    return math.ceil(len(text) / 3)


def split_sentences(text: str) -> list[str]:
    """Split on ``.``, ``!`` or ``?`` followed by whitespace.

    Abbreviations and decimals followed by a space are treated as boundaries.
    """
    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]


def detect_heading(paragraph: str) -> str | None:
    """Return the heading text if *paragraph* carries one, else None."""
    md = _MD_HEADING_RE.search(paragraph)
    if md:
        return md.group(1).strip()

    lines = paragraph.split("\n")
    line = lines[0].strip()
    if (
        len(lines) == 1
        and len(line) < _CAPS_HEADING_MAX_LEN
        and line == line.upper()
        and re.search(r"[A-Z]", line)
    ):
        return line
    return None


class TextChunker:
    """Split free-form text into bounded, overlapping ``TextChunk``s.

    Deterministic: the same text and options always give the same chunks.

    Args:
        options: Limits (max_tokens, overlap_sentences, hard_token_cap,
            force_split_words). Defaults to ``ChunkingCfg()``.
    """

    def __init__(self, options: ChunkingCfg | None = None) -> None:
        opts = options or ChunkingCfg()
        if opts.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if opts.overlap_sentences < 0:
            raise ValueError("overlap_sentences must be >= 0")
        if opts.hard_token_cap < opts.max_tokens:
            raise ValueError("hard_token_cap must be >= max_tokens")
        if opts.force_split_words < 1:
            raise ValueError("force_split_words must be >= 1")
        self.options = opts

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into sequentially indexed chunks (empty input → [])."""
        if not text or not text.strip():
            return []

        max_tokens = self.options.max_tokens
        if estimate_tokens(text.strip()) <= max_tokens:
            builder = _ChunkBuilder(self.options)
            builder.flush(text)
            return builder.chunks

        paragraphs = split_paragraphs(text)
        if len(paragraphs) == 1 and estimate_tokens(paragraphs[0]) > max_tokens:
            paragraphs = [line.strip() for line in paragraphs[0].split("\n") if line.strip()]

        builder = _ChunkBuilder(self.options)
        seed = ""
        parts: list[str] = []

        for paragraph in paragraphs:
            heading = detect_heading(paragraph)

            if estimate_tokens(paragraph) > max_tokens:
                if parts:
                    builder.flush(_compose(seed, parts))
                    seed, parts = builder.overlap_text(), []
                if heading:
                    builder.heading = heading
                seed, parts = self._pack_sentences(paragraph, seed, builder)
                continue

            if parts and estimate_tokens(_compose(seed, [*parts, paragraph])) > max_tokens:
                builder.flush(_compose(seed, parts))
                seed, parts = builder.overlap_text(), []
            if heading:
                builder.heading = heading
            parts.append(paragraph)

        if parts:
            builder.flush(_compose(seed, parts))

        return builder.chunks

    def _pack_sentences(
        self, paragraph: str, seed: str, builder: _ChunkBuilder
    ) -> tuple[str, list[str]]:
        """Pack an oversized paragraph by sentence; return the unflushed tail."""
        max_tokens = self.options.max_tokens
        lead = seed
        fresh: list[str] = []

        for sentence in split_sentences(paragraph):
            candidate = " ".join(s for s in (lead, *fresh, sentence) if s)
            if fresh and estimate_tokens(candidate) > max_tokens:
                builder.flush(" ".join(s for s in (lead, *fresh) if s))
                lead = builder.overlap_text()
                fresh = [sentence]
            else:
                fresh.append(sentence)

        if not fresh:
            return lead, []
        return lead, [" ".join(fresh)]


def chunk_text(text: str, options: ChunkingCfg | None = None) -> list[TextChunk]:
    """Module-level shortcut for ``TextChunker(options).chunk(text)``."""
    return TextChunker(options).chunk(text)


# ------------------------------------------------------------------
# Internals
# ------------------------------------------------------------------


def _compose(seed: str, parts: list[str]) -> str:
    return "\n\n".join([seed, *parts] if seed else parts)


class _ChunkBuilder:
    """Collects flushed chunks, the active heading and the pending overlap."""

    def __init__(self, options: ChunkingCfg) -> None:
        self.options = options
        self.chunks: list[TextChunk] = []
        self.heading: str | None = None
        self._overlap: list[str] = []

    def overlap_text(self) -> str:
        return " ".join(self._overlap)

    def flush(self, content: str) -> None:
        content = content.strip()
        if not content:
            return

        if estimate_tokens(content) > self.options.hard_token_cap:
            for piece in self._force_split(content):
                self._append(piece)
            self._overlap = []
            return

        self._append(content)
        n = self.options.overlap_sentences
        self._overlap = split_sentences(content)[-n:] if n else []

    def _append(self, content: str) -> None:
        metadata = {"section": self.heading} if self.heading else {}
        self.chunks.append(
            TextChunk(content=content, chunk_index=len(self.chunks), metadata=metadata)
        )

    def _force_split(self, content: str) -> list[str]:
        """Cut *content* into word-count pieces, each within the hard cap."""
        cap = self.options.hard_token_cap
        step = self.options.force_split_words
        words = content.split()
        pieces: list[str] = []
        for start in range(0, len(words), step):
            piece = " ".join(words[start : start + step])
            if estimate_tokens(piece) <= cap:
                pieces.append(piece)
                continue
            window = cap * 3
            pieces.extend(
                s for s in (piece[i : i + window].strip() for i in range(0, len(piece), window)) if s
            )
        return pieces
