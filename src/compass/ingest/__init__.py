"""Compass ingest pipeline: chunker, embedding client, ingestion and backfill."""

from compass.ingest.chunker import TextChunker, chunk_text
from compass.ingest.embeddings import EmbeddingClient, EmbeddingError
from compass.ingest.pipeline import IngestionPipeline
from compass.ingest.queue import IngestionQueue, IngestReport, SourceDocument, backfill

__all__ = [
    "TextChunker",
    "chunk_text",
    "EmbeddingClient",
    "EmbeddingError",
    "IngestionPipeline",
    "IngestionQueue",
    "IngestReport",
    "SourceDocument",
    "backfill",
]
