"""Bounded-concurrency, resumable driver of chunk-level extraction.

Worker tasks pull chunks from a queue and call the extractor. They never
touch shared results: every finished call is posted as a ChunkOutcome to a
single aggregator coroutine, which owns the collected triples, the
per-chunk bookkeeping and the checkpoint writer.

A chunk that overflows the model context is split at its midpoint and both
halves are queued again. The halves keep the original chunk's key, so the
original chunk (its "family") only counts as done, and is only
checkpointed, once every leaf of the split tree has succeeded.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from concept_graph.errors import (
    CheckpointError,
    ContextOverflowError,
    ExtractionError,
    TransientExtractionError,
)
from concept_graph.graph.chunker import Chunk, split_at_midpoint
from concept_graph.graph.relation import RelationTriple, entity_names
from concept_graph.llm.base import RelationExtractor

from .checkpoint import CheckpointStore

logger = logging.getLogger(__name__)

OVERFLOW_EXHAUSTED = "overflow retries exhausted"


class ChunkState(str, Enum):
    """Lifecycle of a chunk inside one run."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    OVERFLOW_RETRY = "overflow_retry"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ChunkError:
    """A chunk that did not produce results."""

    chunk_key: str
    kind: str
    message: str


@dataclass
class ChunkOutcome:
    """Message from a worker to the aggregator."""

    chunk: Chunk
    state: ChunkState
    triples: list[RelationTriple] = field(default_factory=list)
    error: Optional[ChunkError] = None
    children: tuple[Chunk, ...] = ()


@dataclass
class RunReport:
    """Per-run counts, one per original chunk."""

    total: int = 0
    succeeded: int = 0
    recovered: int = 0
    skipped: int = 0
    failed: int = 0
    resumed: int = 0
    cancelled: int = 0
    errors: list[ChunkError] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def completed(self) -> int:
        """Chunks resolved in this run, whatever their result."""
        return self.succeeded + self.skipped + self.failed + self.cancelled

    def summary(self) -> str:
        parts = [f"{self.succeeded}/{self.total} chunks succeeded"]
        if self.recovered:
            parts[0] += f" ({self.recovered} after splitting)"
        parts.append(f"{self.skipped} skipped after overflow retries")
        parts.append(f"{self.failed} failed")
        if self.resumed:
            parts.append(f"{self.resumed} already done")
        if self.cancelled:
            parts.append(f"{self.cancelled} cancelled")
        return ", ".join(parts)


@dataclass
class ExtractionRun:
    """Everything a run extracted, ready for the graph builder."""

    triples: list[RelationTriple] = field(default_factory=list)
    chunk_entities: dict[str, list[str]] = field(default_factory=dict)
    report: RunReport = field(default_factory=RunReport)


@dataclass
class _Family:
    """Bookkeeping for one original chunk and its split descendants."""

    chunk: Chunk
    outstanding: int = 1
    split: bool = False
    cancelled: bool = False
    error: Optional[ChunkError] = None
    leaves: list[tuple[Chunk, list[RelationTriple]]] = field(default_factory=list)


class ExtractionOrchestrator:
    """Drive chunk extractions to completion with bounded parallelism.

    Args:
        extractor: Provider variant implementing RelationExtractor.
        concurrency: Number of worker tasks, i.e. concurrent LLM calls.
        checkpoint: Progress store. None disables resume.
        domain_context: Optional domain description for the prompt.
        max_split_depth: Midpoint splits allowed per chunk on overflow.
        call_timeout: Seconds before one extract call is abandoned.
        transient_attempts: Attempts per chunk for transient failures.
        retry_backoff: Multiplier of the exponential wait between attempts.
        on_result: Called as on_result(chunk, triples) for every leaf of a
            family that completed successfully.
        on_progress: Called with the running report whenever a chunk is resolved.
    """

    def __init__(
        self,
        extractor: RelationExtractor,
        *,
        concurrency: int = 4,
        checkpoint: Optional[CheckpointStore] = None,
        domain_context: Optional[str] = None,
        max_split_depth: int = 3,
        call_timeout: float = 120.0,
        transient_attempts: int = 2,
        retry_backoff: float = 1.0,
        on_result: Optional[Callable[[Chunk, list[RelationTriple]], None]] = None,
        on_progress: Optional[Callable[[RunReport], None]] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.extractor = extractor
        self.concurrency = concurrency
        self.checkpoint = checkpoint
        self.domain_context = domain_context
        self.max_split_depth = max_split_depth
        self.call_timeout = call_timeout
        self.transient_attempts = max(1, transient_attempts)
        self.retry_backoff = retry_backoff
        self.on_result = on_result
        self.on_progress = on_progress
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Stop dispatching new chunks of the current run. Safe to call from any thread or a signal handler."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested; finishing in-flight chunks")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self, chunks: Iterable[Chunk]) -> ExtractionRun:
        """Synchronous entry point around run_async()."""
        return asyncio.run(self.run_async(chunks))

    async def run_async(self, chunks: Iterable[Chunk]) -> ExtractionRun:
        """Extract relations from all chunks not already in the checkpoint.

        Raises:
            ConfigError: Provider settings are invalid (from preflight).
            ProviderUnavailableError: Provider cannot be reached (from preflight).
        """
        chunks = list(chunks)
        keys = [chunk.key for chunk in chunks]
        if len(set(keys)) != len(keys):
            raise ValueError("Chunks must have unique keys (source path and sequence index)")

        # cancel() applies to the run in progress only
        self._cancel_event.clear()
        await self.extractor.preflight()

        started = time.monotonic()
        result = ExtractionRun(report=RunReport(total=len(chunks)))

        processed: set[str] = set()
        if self.checkpoint is not None:
            processed = self.checkpoint.load().processed

        work = [chunk for chunk in chunks if chunk.key not in processed]
        result.report.resumed = len(chunks) - len(work)
        if result.report.resumed:
            logger.info("Resuming: skipping %d already-processed chunks", result.report.resumed)

        if work:
            queue: asyncio.Queue = asyncio.Queue()
            outcomes: asyncio.Queue = asyncio.Queue()
            for chunk in work:
                queue.put_nowait(chunk)

            workers = [
                asyncio.create_task(self._worker(queue, outcomes))
                for _ in range(min(self.concurrency, len(work)))
            ]
            try:
                await self._aggregate(work, queue, outcomes, result)
            finally:
                for _ in workers:
                    queue.put_nowait(None)
                await asyncio.gather(*workers)

        result.report.elapsed_seconds = time.monotonic() - started
        logger.info("Extraction finished: %s", result.report.summary())
        return result

    async def _worker(self, queue: asyncio.Queue, outcomes: asyncio.Queue) -> None:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            if self.cancelled:
                outcome = ChunkOutcome(chunk=chunk, state=ChunkState.CANCELLED)
            else:
                outcome = await self._process(chunk)
            outcomes.put_nowait(outcome)

    async def _process(self, chunk: Chunk) -> ChunkOutcome:
        """Run one chunk through IN_FLIGHT to a terminal or retry state."""
        try:
            triples = await self._extract_with_retry(chunk)
        except ContextOverflowError as e:
            if chunk.depth >= self.max_split_depth or len(chunk.text) < 2:
                logger.warning("Context overflow for chunk %s at split depth %d; skipping", chunk.id, chunk.depth)
                error = ChunkError(chunk.key, e.kind, f"{OVERFLOW_EXHAUSTED}: {e}")
                return ChunkOutcome(chunk=chunk, state=ChunkState.FAILED, error=error)
            logger.info("Context overflow for chunk %s, splitting (depth %d)", chunk.id, chunk.depth + 1)
            return ChunkOutcome(
                chunk=chunk,
                state=ChunkState.OVERFLOW_RETRY,
                children=split_at_midpoint(chunk),
            )
        except ExtractionError as e:
            logger.warning("Extraction failed for chunk %s (%s): %s", chunk.id, e.kind, e)
            error = ChunkError(chunk.key, e.kind, str(e))
            return ChunkOutcome(chunk=chunk, state=ChunkState.FAILED, error=error)
        except Exception as e:
            logger.exception("Unexpected error extracting chunk %s", chunk.id)
            error = ChunkError(chunk.key, "error", f"{type(e).__name__}: {e}")
            return ChunkOutcome(chunk=chunk, state=ChunkState.FAILED, error=error)

        triples = [triple.with_chunk(chunk.id) for triple in triples]
        return ChunkOutcome(chunk=chunk, state=ChunkState.SUCCEEDED, triples=triples)

    async def _extract_with_retry(self, chunk: Chunk) -> list[RelationTriple]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.transient_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=30),
            retry=retry_if_exception_type(TransientExtractionError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._extract_once(chunk)
        return []

    async def _extract_once(self, chunk: Chunk) -> list[RelationTriple]:
        try:
            return await asyncio.wait_for(
                self.extractor.extract(chunk.text, self.domain_context),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientExtractionError(
                f"Extraction of chunk {chunk.id} timed out after {self.call_timeout}s"
            ) from e

    async def _aggregate(
        self,
        work: list[Chunk],
        queue: asyncio.Queue,
        outcomes: asyncio.Queue,
        result: ExtractionRun,
    ) -> None:
        """Single writer: apply worker outcomes until every family is resolved."""
        families = {chunk.key: _Family(chunk=chunk) for chunk in work}
        open_families = len(families)

        while open_families:
            outcome: ChunkOutcome = await outcomes.get()
            family = families[outcome.chunk.key]
            family.outstanding -= 1

            if outcome.state is ChunkState.SUCCEEDED:
                family.leaves.append((outcome.chunk, outcome.triples))
            elif outcome.state is ChunkState.OVERFLOW_RETRY:
                family.split = True
                for child in outcome.children:
                    family.outstanding += 1
                    queue.put_nowait(child)
            elif outcome.state is ChunkState.CANCELLED:
                family.cancelled = True
            elif family.error is None:
                family.error = outcome.error

            if family.outstanding == 0:
                open_families -= 1
                self._resolve(family, result)
                if self.on_progress is not None:
                    self.on_progress(result.report)

    def _resolve(self, family: _Family, result: ExtractionRun) -> None:
        report = result.report

        if family.error is not None:
            # Partial results of a failed family are dropped so a resume does not count them twice
            report.errors.append(family.error)
            if family.error.kind == ContextOverflowError.kind:
                report.skipped += 1
            else:
                report.failed += 1
            return

        if family.cancelled:
            report.cancelled += 1
            return

        for chunk, triples in sorted(family.leaves, key=lambda leaf: leaf[0].id):
            result.triples.extend(triples)
            result.chunk_entities[chunk.id] = entity_names(triples)
            if self.on_result is not None:
                self.on_result(chunk, triples)

        report.succeeded += 1
        if family.split:
            report.recovered += 1

        if self.checkpoint is not None:
            try:
                self.checkpoint.append([family.chunk.key])
            except CheckpointError as e:
                logger.warning("Progress for %s not saved: %s", family.chunk.key, e)
