"""Tests for the extraction orchestrator, using in-process fake extractors."""

import asyncio

import pytest

from concept_graph.errors import (
    ConfigError,
    ContextOverflowError,
    FatalExtractionError,
    MalformedResponseError,
    TransientExtractionError,
)
from concept_graph.extraction import CheckpointStore, ExtractionOrchestrator, RunReport
from concept_graph.graph import Chunk, GraphBuilder, RelationTriple


class FakeExtractor:
    """Answers one triple per chunk text, with scripted failures."""

    name = "fake"
    model = "fake-model"

    def __init__(self, overflow_above=None, failures=None, delay=0.0, hang_on=()):
        self.overflow_above = overflow_above
        # text -> list of exceptions raised on successive calls
        self.failures = {text: list(errors) for text, errors in (failures or {}).items()}
        self.delay = delay
        self.hang_on = set(hang_on)
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.preflighted = False

    async def preflight(self):
        self.preflighted = True

    async def extract(self, chunk_text, domain_context=None):
        self.calls.append(chunk_text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if chunk_text in self.hang_on:
                await asyncio.sleep(10)
            if self.delay:
                await asyncio.sleep(self.delay)
            pending = self.failures.get(chunk_text)
            if pending:
                raise pending.pop(0)
            if self.overflow_above is not None and len(chunk_text) > self.overflow_above:
                raise ContextOverflowError(f"context length exceeded ({len(chunk_text)} chars)")
            return [RelationTriple(subject=f"s:{chunk_text}", object=f"o:{chunk_text}", relation="r")]
        finally:
            self.in_flight -= 1


def make_chunks(texts, source_path="doc.md"):
    return [
        Chunk(id=f"chunk_{i}", text=text, source_path=source_path, sequence_index=i)
        for i, text in enumerate(texts)
    ]


def triple_set(triples):
    return sorted((t.subject, t.object, t.source_chunk_id) for t in triples)


class TestBasicRun:
    """Tests for plain successful runs."""

    def test_all_chunks_succeed(self):
        """Test that every chunk yields its triples tagged with the chunk id."""
        extractor = FakeExtractor()
        chunks = make_chunks(["one", "two", "three"])

        run = ExtractionOrchestrator(extractor, concurrency=2).run(chunks)

        assert extractor.preflighted
        assert run.report.total == 3
        assert run.report.succeeded == 3
        assert run.report.failed == run.report.skipped == 0
        assert triple_set(run.triples) == [
            ("s:one", "o:one", "chunk_0"),
            ("s:three", "o:three", "chunk_2"),
            ("s:two", "o:two", "chunk_1"),
        ]
        assert run.chunk_entities["chunk_1"] == ["s:two", "o:two"]

    def test_concurrency_is_bounded(self):
        """Test that no more than `concurrency` calls run at once."""
        extractor = FakeExtractor(delay=0.01)
        chunks = make_chunks([f"text {i}" for i in range(12)])

        run = ExtractionOrchestrator(extractor, concurrency=3).run(chunks)

        assert run.report.succeeded == 12
        assert extractor.max_in_flight == 3

    def test_empty_input(self):
        """Test a run without chunks."""
        run = ExtractionOrchestrator(FakeExtractor()).run([])

        assert run.report.total == 0
        assert run.triples == []

    def test_duplicate_keys_rejected(self):
        """Test that two chunks with one key are refused."""
        chunks = make_chunks(["a", "b"]) + make_chunks(["c"])

        with pytest.raises(ValueError):
            ExtractionOrchestrator(FakeExtractor()).run(chunks)

    def test_invalid_concurrency(self):
        """Test that concurrency must be positive."""
        with pytest.raises(ValueError):
            ExtractionOrchestrator(FakeExtractor(), concurrency=0)

    def test_on_result_streams_into_builder(self):
        """Test that the callback sees exactly the collected triples."""
        builder = GraphBuilder()
        seen = []

        def on_result(chunk, triples):
            seen.append(chunk.id)
            builder.add_relations(triples)

        run = ExtractionOrchestrator(FakeExtractor(), on_result=on_result).run(make_chunks(["a", "b"]))

        assert sorted(seen) == ["chunk_0", "chunk_1"]
        assert builder.edge_count == len(run.triples) == 2

    def test_preflight_failure_stops_before_scheduling(self):
        """Test that a configuration error propagates and nothing is extracted."""

        class Misconfigured(FakeExtractor):
            async def preflight(self):
                raise ConfigError("no key")

        extractor = Misconfigured()

        with pytest.raises(ConfigError):
            ExtractionOrchestrator(extractor).run(make_chunks(["a"]))
        assert extractor.calls == []


class TestOverflow:
    """Tests for split-and-retry on context overflow."""

    def test_overflow_splits_until_it_fits(self):
        """Test that a chunk four times too large is split exactly twice."""
        extractor = FakeExtractor(overflow_above=16)
        text = "abcdefghijklmnop" * 4

        run = ExtractionOrchestrator(extractor, concurrency=2).run(make_chunks([text]))

        assert run.report.succeeded == 1
        assert run.report.recovered == 1
        assert run.report.skipped == 0
        # 1 original + 2 halves + 4 quarters
        assert len(extractor.calls) == 7
        assert sorted(run.chunk_entities) == ["chunk_0.0.0", "chunk_0.0.1", "chunk_0.1.0", "chunk_0.1.1"]
        assert "".join(sorted(t.subject[2:] for t in run.triples)) == "".join(
            sorted(text[i : i + 16] for i in range(0, 64, 16))
        )

    def test_overflow_exhausted_is_skipped(self):
        """Test that a chunk still overflowing at the depth limit is skipped."""
        store_chunks = make_chunks(["x" * 64, "ok"])
        extractor = FakeExtractor(overflow_above=4)

        run = ExtractionOrchestrator(extractor, max_split_depth=3).run(store_chunks)

        assert run.report.skipped == 1
        assert run.report.succeeded == 1
        assert run.report.failed == 0
        error = run.report.errors[0]
        assert error.chunk_key == "doc.md#0"
        assert error.kind == "overflow"
        assert "overflow retries exhausted" in error.message
        # 1 + 2 + 4 + 8 calls for the oversized chunk, 1 for the small one
        assert len(extractor.calls) == 16
        assert triple_set(run.triples) == [("s:ok", "o:ok", "chunk_1")]

    def test_no_split_when_depth_is_zero(self):
        """Test that max_split_depth=0 disables splitting."""
        extractor = FakeExtractor(overflow_above=4)

        run = ExtractionOrchestrator(extractor, max_split_depth=0).run(make_chunks(["long text"]))

        assert run.report.skipped == 1
        assert len(extractor.calls) == 1

    def test_failed_leaf_discards_family(self):
        """Test that a failure in one half drops the results of the other half."""
        text = "aaaaaaaa" + "bbbbbbbb"
        extractor = FakeExtractor(
            overflow_above=8,
            failures={"bbbbbbbb": [FatalExtractionError("denied")]},
        )

        run = ExtractionOrchestrator(extractor).run(make_chunks([text]))

        assert run.report.failed == 1
        assert run.report.succeeded == 0
        assert run.triples == []
        assert run.report.errors[0].kind == "fatal"


class TestFailures:
    """Tests for non-overflow failures."""

    def test_transient_error_is_retried(self):
        """Test that a transient failure is retried and then succeeds."""
        extractor = FakeExtractor(failures={"flaky": [TransientExtractionError("503")]})

        run = ExtractionOrchestrator(extractor, transient_attempts=2, retry_backoff=0).run(make_chunks(["flaky"]))

        assert run.report.succeeded == 1
        assert extractor.calls == ["flaky", "flaky"]

    def test_transient_attempts_exhausted(self):
        """Test that a chunk failing every attempt is reported as failed."""
        extractor = FakeExtractor(
            failures={"flaky": [TransientExtractionError("503"), TransientExtractionError("503")]}
        )

        run = ExtractionOrchestrator(extractor, transient_attempts=2, retry_backoff=0).run(
            make_chunks(["flaky", "fine"])
        )

        assert run.report.failed == 1
        assert run.report.succeeded == 1
        assert run.report.errors[0].kind == "transient"
        assert extractor.calls.count("flaky") == 2

    def test_non_transient_errors_not_retried(self):
        """Test that fatal and malformed errors fail immediately."""
        extractor = FakeExtractor(
            failures={
                "bad auth": [FatalExtractionError("401")],
                "garbled": [MalformedResponseError("no json")],
            }
        )

        run = ExtractionOrchestrator(extractor, transient_attempts=3, retry_backoff=0).run(
            make_chunks(["bad auth", "garbled", "good"])
        )

        assert run.report.failed == 2
        assert run.report.succeeded == 1
        assert sorted(e.kind for e in run.report.errors) == ["fatal", "malformed"]
        assert extractor.calls.count("bad auth") == 1

    def test_hung_call_times_out(self):
        """Test that a hung call is abandoned without stalling the batch."""
        extractor = FakeExtractor(hang_on={"stuck"})

        run = ExtractionOrchestrator(extractor, concurrency=2, call_timeout=0.05, transient_attempts=1).run(
            make_chunks(["stuck", "a", "b", "c"])
        )

        assert run.report.failed == 1
        assert run.report.succeeded == 3
        assert run.report.errors[0].kind == "transient"
        assert "timed out" in run.report.errors[0].message

    def test_unexpected_exception_is_recorded(self):
        """Test that a bug in an extractor fails only its chunk."""
        extractor = FakeExtractor(failures={"boom": [RuntimeError("kaboom")]})

        run = ExtractionOrchestrator(extractor).run(make_chunks(["boom", "fine"]))

        assert run.report.failed == 1
        assert run.report.succeeded == 1
        assert "kaboom" in run.report.errors[0].message


class TestResume:
    """Tests for checkpointed, resumable runs."""

    def test_checkpoint_records_succeeded_chunks(self, tmp_path):
        """Test that only completed chunks are checkpointed."""
        store = CheckpointStore(tmp_path / "progress.jsonl")
        extractor = FakeExtractor(failures={"bad": [FatalExtractionError("401")]})

        ExtractionOrchestrator(extractor, checkpoint=store).run(make_chunks(["good", "bad"]))

        assert CheckpointStore(store.path).load().processed == {"doc.md#0"}

    def test_resume_matches_uninterrupted_run(self, tmp_path):
        """Test that an interrupted run plus a resume equals one full run."""
        texts = [f"paragraph {i}" for i in range(8)]
        chunks = make_chunks(texts)

        full = ExtractionOrchestrator(FakeExtractor(), concurrency=3).run(chunks)

        path = tmp_path / "progress.jsonl"
        first = ExtractionOrchestrator(FakeExtractor(), checkpoint=CheckpointStore(path)).run(chunks[:5])

        second_extractor = FakeExtractor()
        second = ExtractionOrchestrator(second_extractor, concurrency=3, checkpoint=CheckpointStore(path)).run(
            chunks
        )

        assert second.report.resumed == 5
        assert second.report.succeeded == 3
        assert sorted(second_extractor.calls) == sorted(texts[5:])
        assert triple_set(first.triples + second.triples) == triple_set(full.triples)

    def test_overflowed_chunk_resumes_by_original_key(self, tmp_path):
        """Test that a split chunk is checkpointed under its original key."""
        path = tmp_path / "progress.jsonl"
        chunks = make_chunks(["x" * 32])

        ExtractionOrchestrator(FakeExtractor(overflow_above=8), checkpoint=CheckpointStore(path)).run(chunks)
        extractor = FakeExtractor()
        run = ExtractionOrchestrator(extractor, checkpoint=CheckpointStore(path)).run(chunks)

        assert run.report.resumed == 1
        assert extractor.calls == []

    def test_corrupt_checkpoint_starts_fresh(self, tmp_path):
        """Test that an unreadable checkpoint does not stop the run."""
        path = tmp_path / "progress.jsonl"
        path.write_text("this is not a checkpoint\n")

        run = ExtractionOrchestrator(FakeExtractor(), checkpoint=CheckpointStore(path)).run(make_chunks(["a"]))

        assert run.report.succeeded == 1
        assert run.report.resumed == 0
        assert CheckpointStore(path).load().processed == {"doc.md#0"}


class TestCancellation:
    """Tests for external cancellation."""

    def test_cancel_stops_dispatch(self, tmp_path):
        """Test that cancelling lets the in-flight chunk finish and skips the rest."""
        path = tmp_path / "progress.jsonl"

        class CancellingExtractor(FakeExtractor):
            orchestrator = None

            async def extract(self, chunk_text, domain_context=None):
                self.orchestrator.cancel()
                return await super().extract(chunk_text, domain_context)

        extractor = CancellingExtractor()
        orchestrator = ExtractionOrchestrator(extractor, concurrency=1, checkpoint=CheckpointStore(path))
        extractor.orchestrator = orchestrator

        run = orchestrator.run(make_chunks(["a", "b", "c", "d"]))

        assert orchestrator.cancelled
        assert run.report.succeeded == 1
        assert run.report.cancelled == 3
        assert extractor.calls == ["a"]
        assert CheckpointStore(path).load().processed == {"doc.md#0"}

        resumed = ExtractionOrchestrator(FakeExtractor(), checkpoint=CheckpointStore(path)).run(
            make_chunks(["a", "b", "c", "d"])
        )
        assert resumed.report.resumed == 1
        assert resumed.report.succeeded == 3

    def test_instance_runs_again_after_cancel(self):
        """Test that a cancelled orchestrator processes the next run normally."""

        class CancelOnce(FakeExtractor):
            orchestrator = None

            async def extract(self, chunk_text, domain_context=None):
                if not self.calls:
                    self.orchestrator.cancel()
                return await super().extract(chunk_text, domain_context)

        extractor = CancelOnce()
        orchestrator = ExtractionOrchestrator(extractor, concurrency=1)
        extractor.orchestrator = orchestrator

        first = orchestrator.run(make_chunks(["a", "b", "c"]))
        second = orchestrator.run(make_chunks(["a", "b", "c"]))

        assert first.report.cancelled == 2
        assert second.report.succeeded == 3
        assert second.report.cancelled == 0
        assert not orchestrator.cancelled


class TestRunReport:
    """Tests for the run summary."""

    def test_summary(self):
        """Test the human-readable summary line."""
        report = RunReport(total=10, succeeded=7, recovered=2, skipped=1, failed=1, resumed=1)

        assert report.summary() == (
            "7/10 chunks succeeded (2 after splitting), 1 skipped after overflow retries, "
            "1 failed, 1 already done"
        )

    def test_counts_add_up(self):
        """Test that every chunk is accounted for exactly once."""
        extractor = FakeExtractor(overflow_above=4, failures={"bad": [FatalExtractionError("x")]})
        run = ExtractionOrchestrator(extractor, max_split_depth=1).run(make_chunks(["tiny", "bad", "much too long"]))

        report = run.report
        assert report.succeeded + report.skipped + report.failed + report.cancelled + report.resumed == report.total
