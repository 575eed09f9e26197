"""Resumable, bounded-concurrency extraction over document chunks."""

from .checkpoint import Checkpoint, CheckpointStore
from .orchestrator import (
    ChunkError,
    ChunkOutcome,
    ChunkState,
    ExtractionOrchestrator,
    ExtractionRun,
    RunReport,
)
from .selection import document_priority, select_documents, should_skip

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "ChunkError",
    "ChunkOutcome",
    "ChunkState",
    "ExtractionOrchestrator",
    "ExtractionRun",
    "RunReport",
    "document_priority",
    "select_documents",
    "should_skip",
]
