"""Append-only progress checkpoint for resumable extraction runs.

The file is JSON Lines. The first line is a header identifying the format,
each following line records one fully processed chunk key:

    {"format": "conceptgraph-progress", "version": 1, "scope": {"input": "/docs", ...}}
    {"key": "docs/intro.md#0", "timestamp": "2026-01-01T00:00:00+00:00"}

The optional scope names the run the progress belongs to. Loading with a
different scope starts fresh.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from concept_graph.errors import CheckpointError

logger = logging.getLogger(__name__)

CHECKPOINT_FORMAT = "conceptgraph-progress"
CHECKPOINT_VERSION = 1


@dataclass
class Checkpoint:
    """Set of chunk keys already extracted by earlier runs."""

    processed: set[str] = field(default_factory=set)

    def __contains__(self, key: str) -> bool:
        return key in self.processed

    def __len__(self) -> int:
        return len(self.processed)


class CheckpointStore:
    """Reads and appends the progress checkpoint file."""

    def __init__(self, path: Path | str, scope: Optional[dict[str, str]] = None):
        """Initialize the store.

        Args:
            path: Checkpoint file.
            scope: Identity of the run the progress belongs to (input, output,
                tenant). A file recorded under another scope is not resumed.
        """
        self.path = Path(path)
        self.scope = dict(scope) if scope else None
        self._known: set[str] = set()
        self._stale = False

    def load(self) -> Checkpoint:
        """Load processed keys.

        A missing file yields an empty checkpoint. A corrupt file is reported
        with a warning and treated as empty, so the run starts fresh.
        """
        self._known = set()
        self._stale = False
        if not self.path.exists():
            return Checkpoint()

        try:
            keys = self._read()
        except CheckpointError as e:
            logger.warning("Ignoring checkpoint %s: %s. Starting fresh.", self.path, e)
            self._stale = True
            return Checkpoint()

        self._known = set(keys)
        logger.info("Loaded checkpoint with %d processed chunks from %s", len(keys), self.path)
        return Checkpoint(processed=set(keys))

    def _read(self) -> set[str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointError(f"cannot read file: {e}") from e

        if not raw:
            return set()

        lines = raw.split("\n")
        torn = lines[-1] if not raw.endswith("\n") else None
        complete = lines[:-1]

        if not complete:
            # Only a partial header was written
            if torn is not None:
                logger.warning("Discarding incomplete checkpoint header in %s", self.path)
            return set()

        try:
            header = json.loads(complete[0])
        except json.JSONDecodeError as e:
            raise CheckpointError(f"unreadable header: {e}") from e
        if (
            not isinstance(header, dict)
            or header.get("format") != CHECKPOINT_FORMAT
            or header.get("version") != CHECKPOINT_VERSION
        ):
            raise CheckpointError(f"unknown header {complete[0][:100]!r}")
        if (header.get("scope") or None) != self.scope:
            raise CheckpointError(f"recorded for another run {header.get('scope')!r}")

        keys: set[str] = set()
        for number, line in enumerate(complete[1:], start=2):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise CheckpointError(f"line {number} is not valid JSON") from e
            key = record.get("key") if isinstance(record, dict) else None
            if not isinstance(key, str):
                raise CheckpointError(f"line {number} has no key")
            keys.add(key)

        if torn:
            logger.warning("Discarding incomplete trailing record in checkpoint %s", self.path)
        return keys

    def append(self, keys: Iterable[str]) -> int:
        """Durably record processed keys. Keys already recorded are skipped.

        Returns:
            Number of new keys written.
        """
        new_keys = []
        for key in keys:
            if key not in self._known and key not in new_keys:
                new_keys.append(key)
        if not new_keys:
            return 0

        if self._stale:
            self.path.unlink(missing_ok=True)
            self._stale = False
        self._repair_tail()
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        timestamp = datetime.now(timezone.utc).isoformat()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                if write_header:
                    header = {"format": CHECKPOINT_FORMAT, "version": CHECKPOINT_VERSION}
                    if self.scope:
                        header["scope"] = self.scope
                    f.write(json.dumps(header) + "\n")
                for key in new_keys:
                    f.write(json.dumps({"key": key, "timestamp": timestamp}) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise CheckpointError(f"Failed to write checkpoint {self.path}: {e}") from e

        self._known.update(new_keys)
        return len(new_keys)

    def _repair_tail(self) -> None:
        """Cut a torn trailing record so new lines start on a fresh line."""
        if not self.path.exists():
            return
        raw = self.path.read_bytes()
        if not raw or raw.endswith(b"\n"):
            return
        cut = raw.rfind(b"\n") + 1
        with open(self.path, "r+b") as f:
            f.truncate(cut)

    def reset(self) -> None:
        """Delete the checkpoint so the next run starts fresh."""
        self._known = set()
        self._stale = False
        if self.path.exists():
            self.path.unlink()
            logger.info("Removed checkpoint %s", self.path)
