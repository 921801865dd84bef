"""Bounded background ingestion.

``IngestionQueue`` runs ingestion jobs on a fixed number of asyncio workers.
Every submitted job gets a future carrying its chunk count or its exception,
and every outcome is tallied in an ``IngestReport``, so a failed background
ingest is always observable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from compass.db.models import SourceType
from compass.ingest.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class SourceDocument:
    """One document to ingest (the arguments of ``IngestionPipeline.ingest``)."""

    tenant_id: str | None
    source_type: SourceType | str
    source_id: str
    title: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IngestReport:
    processed: int = 0
    skipped_no_content: int = 0
    skipped_existing: int = 0
    failed: int = 0
    chunks_created: int = 0
    errors: list[str] = field(default_factory=list)


class IngestionQueue:
    """Fixed-size asyncio worker pool for ingestion jobs.

    Use as an async context manager; leaving the block waits for every
    submitted job and stops the workers.

    Example:
        async with IngestionQueue(pipeline, workers=4) as queue:
            fut = queue.submit(doc)
        print(queue.report.chunks_created, fut.result())
    """

    def __init__(self, pipeline: IngestionPipeline, workers: int = 4) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._pipeline = pipeline
        self._n_workers = workers
        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self.report = IngestReport()

    async def __aenter__(self) -> IngestionQueue:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingest-worker-{i}")
            for i in range(self._n_workers)
        ]

    def submit(self, doc: SourceDocument) -> asyncio.Future[int]:
        """Queue *doc*; the returned future resolves to its chunk count."""
        if not self._workers:
            raise RuntimeError("IngestionQueue is not running; use 'async with' or start()")
        future: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((doc, future))
        return future

    async def join(self) -> IngestReport:
        """Wait until every submitted job has finished."""
        await self._queue.join()
        return self.report

    async def close(self) -> IngestReport:
        """Finish outstanding jobs, then stop the workers."""
        if not self._workers:
            return self.report
        await self._queue.join()
        for _ in self._workers:
            self._queue.put_nowait(_STOP)
        await asyncio.gather(*self._workers)
        self._workers = []
        return self.report

    async def _worker(self, worker_id: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                doc, future = item
                await self._run(doc, future)
            finally:
                self._queue.task_done()

    async def _run(self, doc: SourceDocument, future: asyncio.Future[int]) -> None:
        if not doc.content or not doc.content.strip():
            self.report.skipped_no_content += 1
            if not future.done():
                future.set_result(0)
            return
        try:
            n = await self._pipeline.ingest(
                doc.tenant_id,
                doc.source_type,
                doc.source_id,
                doc.title,
                doc.content,
                doc.metadata,
            )
        except Exception as exc:
            self.report.failed += 1
            self.report.errors.append(f"{doc.source_type} {doc.source_id}: {exc}")
            logger.error("Ingestion failed for %s (%s): %s", doc.source_id, doc.title, exc)
            if not future.done():
                future.set_exception(exc)
            return
        self.report.processed += 1
        self.report.chunks_created += n
        if not future.done():
            future.set_result(n)


async def backfill(
    pipeline: IngestionPipeline,
    documents: Iterable[SourceDocument],
    *,
    workers: int = 4,
    existing_source_ids: set[str] | None = None,
) -> IngestReport:
    """Ingest *documents* through a worker pool and return the tally.

    Documents whose ``source_id`` is in *existing_source_ids* are skipped
    (already embedded). Failures are recorded, never raised.
    """
    existing = existing_source_ids or set()
    async with IngestionQueue(pipeline, workers=workers) as queue:
        for doc in documents:
            if doc.source_id in existing:
                queue.report.skipped_existing += 1
                continue
            # Outcomes land in queue.report; the futures are not awaited here.
            queue.submit(doc).add_done_callback(_consume_exception)
    return queue.report


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
