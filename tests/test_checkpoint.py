"""Tests for the progress checkpoint file."""

import json

from concept_graph.extraction import CheckpointStore
from concept_graph.extraction.checkpoint import CHECKPOINT_FORMAT


def header_line():
    return json.dumps({"format": CHECKPOINT_FORMAT, "version": 1}) + "\n"


def record_line(key):
    return json.dumps({"key": key, "timestamp": "2026-01-01T00:00:00+00:00"}) + "\n"


class TestCheckpointStore:
    """Tests for CheckpointStore."""

    def test_missing_file_is_empty(self, tmp_path):
        """Test loading before anything was written."""
        checkpoint = CheckpointStore(tmp_path / "progress.jsonl").load()

        assert len(checkpoint) == 0
        assert "a.md#0" not in checkpoint

    def test_append_then_load(self, tmp_path):
        """Test that appended keys survive a reload."""
        path = tmp_path / "state" / "progress.jsonl"
        store = CheckpointStore(path)
        store.load()

        assert store.append(["a.md#0", "a.md#1"]) == 2
        assert store.append(["b.md#0"]) == 1

        lines = path.read_text().splitlines()
        assert json.loads(lines[0]) == {"format": CHECKPOINT_FORMAT, "version": 1}
        assert len(lines) == 4
        assert CheckpointStore(path).load().processed == {"a.md#0", "a.md#1", "b.md#0"}

    def test_append_is_idempotent(self, tmp_path):
        """Test that known keys are not written twice."""
        path = tmp_path / "progress.jsonl"
        store = CheckpointStore(path)
        store.append(["a.md#0"])

        assert store.append(["a.md#0", "a.md#0"]) == 0
        assert len(path.read_text().splitlines()) == 2

    def test_keys_known_from_load_are_not_rewritten(self, tmp_path):
        """Test that a reloaded store skips keys already on disk."""
        path = tmp_path / "progress.jsonl"
        CheckpointStore(path).append(["a.md#0"])

        store = CheckpointStore(path)
        store.load()

        assert store.append(["a.md#0", "b.md#0"]) == 1
        assert len(path.read_text().splitlines()) == 3

    def test_unknown_header_starts_fresh(self, tmp_path):
        """Test that a file in another format is ignored and replaced."""
        path = tmp_path / "progress.jsonl"
        path.write_text(json.dumps({"format": "something-else", "version": 1}) + "\n" + record_line("old.md#0"))
        store = CheckpointStore(path)

        assert len(store.load()) == 0

        store.append(["new.md#0"])
        assert CheckpointStore(path).load().processed == {"new.md#0"}

    def test_corrupt_interior_line_starts_fresh(self, tmp_path):
        """Test that a garbled complete line invalidates the file."""
        path = tmp_path / "progress.jsonl"
        path.write_text(header_line() + record_line("a.md#0") + "{not json\n" + record_line("b.md#0"))

        assert len(CheckpointStore(path).load()) == 0

    def test_torn_last_line_is_dropped(self, tmp_path):
        """Test that an interrupted final write loses only that record."""
        path = tmp_path / "progress.jsonl"
        path.write_text(header_line() + record_line("a.md#0") + '{"key": "b.md')
        store = CheckpointStore(path)

        assert store.load().processed == {"a.md#0"}

        store.append(["c.md#0"])
        assert CheckpointStore(path).load().processed == {"a.md#0", "c.md#0"}
        assert path.read_text().endswith("\n")

    def test_torn_header_is_empty(self, tmp_path):
        """Test a file cut off inside the header."""
        path = tmp_path / "progress.jsonl"
        path.write_text('{"format": "concept')
        store = CheckpointStore(path)

        assert len(store.load()) == 0

        store.append(["a.md#0"])
        assert CheckpointStore(path).load().processed == {"a.md#0"}

    def test_scope_is_recorded_and_matched(self, tmp_path):
        """Test that progress only resumes under the scope it was written for."""
        path = tmp_path / "progress.jsonl"
        scope_a = {"input": "/corpus/a", "output": "json:/data/graph.json", "tenant": "default"}
        scope_b = {"input": "/corpus/b", "output": "json:/data/graph.json", "tenant": "default"}
        CheckpointStore(path, scope=scope_a).append(["a.md#0"])

        assert json.loads(path.read_text().splitlines()[0])["scope"] == scope_a
        assert CheckpointStore(path, scope=dict(scope_a)).load().processed == {"a.md#0"}

        other = CheckpointStore(path, scope=scope_b)
        assert len(other.load()) == 0

        other.append(["b.md#0"])
        assert CheckpointStore(path, scope=scope_b).load().processed == {"b.md#0"}
        assert len(CheckpointStore(path, scope=scope_a).load()) == 0

    def test_unscoped_store_ignores_scoped_file(self, tmp_path):
        """Test that a file written with a scope is not resumed without one."""
        path = tmp_path / "progress.jsonl"
        CheckpointStore(path, scope={"tenant": "wiki"}).append(["a.md#0"])

        assert len(CheckpointStore(path).load()) == 0

    def test_reset(self, tmp_path):
        """Test that reset removes the file and forgets keys."""
        path = tmp_path / "progress.jsonl"
        store = CheckpointStore(path)
        store.append(["a.md#0"])

        store.reset()

        assert not path.exists()
        assert store.append(["a.md#0"]) == 1
