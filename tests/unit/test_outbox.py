"""Tests for the progress outbox."""

import threading

import pytest

from fastfacts.core.errors import InvariantViolation, PersistenceWriteFailure
from fastfacts.core.stages import FluencyStage
from fastfacts.progress.outbox import OutboxStatus, ProgressOutbox
from fastfacts.progress.ports import FactStats


class FlakyWriter:
    """Fails the first ``failures`` writes, then succeeds."""

    def __init__(self, failures=0, retryable=True):
        self.failures = failures
        self.retryable = retryable
        self.calls = 0

    def advance_stage(self, user_id, fact_id, new_status, stats=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise PersistenceWriteFailure("unavailable", retryable=self.retryable)


def make_outbox(writer, **kwargs):
    sleeps = []
    kwargs.setdefault("max_retries", 5)
    outbox = ProgressOutbox(writer, sleep=sleeps.append, **kwargs)
    return outbox, sleeps


class TestDelivery:
    def test_confirmed_on_first_try(self):
        outbox, sleeps = make_outbox(FlakyWriter())
        entry = outbox.enqueue("u1", "F1", FluencyStage.LEARNING, FactStats(3, 3, 1200))

        assert outbox.status_for("F1") is OutboxStatus.PENDING
        assert outbox.drain() == 1
        assert entry.status is OutboxStatus.CONFIRMED
        assert entry.attempts == 1
        assert sleeps == []

    def test_retries_with_exponential_backoff(self):
        writer = FlakyWriter(failures=3)
        outbox, sleeps = make_outbox(writer)
        entry = outbox.enqueue("u1", "F1", FluencyStage.LEARNING)

        outbox.drain()

        assert entry.status is OutboxStatus.CONFIRMED
        assert entry.attempts == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_gives_up_after_max_retries(self):
        failed = []
        outbox, sleeps = make_outbox(FlakyWriter(failures=99), on_failure=failed.append)
        entry = outbox.enqueue("u1", "F1", FluencyStage.LEARNING)

        assert outbox.drain() == 0
        assert entry.status is OutboxStatus.FAILED
        assert entry.attempts == 5
        assert len(sleeps) == 4
        assert failed == [entry]
        assert entry.last_error == "unavailable"

    def test_non_retryable_failure_stops_immediately(self):
        writer = FlakyWriter(failures=99, retryable=False)
        outbox, sleeps = make_outbox(writer)
        entry = outbox.enqueue("u1", "F1", FluencyStage.LEARNING)

        outbox.drain()

        assert entry.status is OutboxStatus.FAILED
        assert writer.calls == 1
        assert sleeps == []

    def test_unexpected_error_in_drain_marks_entry_failed(self):
        failed = []

        class CorruptStoreWriter:
            def advance_stage(self, user_id, fact_id, new_status, stats=None):
                raise InvariantViolation("Unknown stage 'bogus'")

        outbox, _ = make_outbox(CorruptStoreWriter(), on_failure=failed.append)
        first = outbox.enqueue("u1", "F1", FluencyStage.LEARNING)
        second = outbox.enqueue("u1", "F2", FluencyStage.LEARNING)

        assert outbox.drain() == 0
        assert first.status is OutboxStatus.FAILED
        assert second.status is OutboxStatus.FAILED
        assert first.last_error == "Unknown stage 'bogus'"
        assert failed == [first, second]
        assert outbox.pending_count == 0

    @pytest.mark.parametrize(
        "attempts,delay",
        [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (6, 30.0), (10, 30.0)],
    )
    def test_backoff_is_capped(self, attempts, delay):
        outbox, _ = make_outbox(FlakyWriter(), base_delay=1.0, max_delay=30.0)

        assert outbox.backoff_delay(attempts) == delay


class TestStatus:
    def test_status_for_unknown_fact(self):
        outbox, _ = make_outbox(FlakyWriter())

        assert outbox.status_for("F1") is None

    def test_pending_count(self):
        outbox, _ = make_outbox(FlakyWriter())
        outbox.enqueue("u1", "F1", FluencyStage.LEARNING)
        outbox.enqueue("u1", "F2", FluencyStage.LEARNING)

        assert outbox.pending_count == 2
        outbox.drain()
        assert outbox.pending_count == 0
        assert len(outbox.entries()) == 2


class TestWorker:
    def test_worker_delivers_in_background(self):
        delivered = threading.Event()

        class SignallingWriter:
            def advance_stage(self, user_id, fact_id, new_status, stats=None):
                delivered.set()

        outbox, _ = make_outbox(SignallingWriter())
        outbox.start()
        entry = outbox.enqueue("u1", "F1", FluencyStage.FLUENCY_6)

        assert delivered.wait(timeout=5)
        outbox.stop()
        assert entry.status is OutboxStatus.CONFIRMED

    def test_unexpected_error_marks_entry_failed(self):
        failed = []

        class BrokenWriter:
            def advance_stage(self, user_id, fact_id, new_status, stats=None):
                raise RuntimeError("bug")

        outbox, _ = make_outbox(BrokenWriter(), on_failure=failed.append)
        outbox.start()
        entry = outbox.enqueue("u1", "F1", FluencyStage.FLUENCY_6)
        outbox.stop()

        assert entry.status is OutboxStatus.FAILED
        assert failed == [entry]

    def test_stop_without_start_is_noop(self):
        outbox, _ = make_outbox(FlakyWriter())
        outbox.stop()

    def test_timed_out_stop_keeps_single_worker(self):
        release = threading.Event()

        class BlockingWriter:
            def advance_stage(self, user_id, fact_id, new_status, stats=None):
                release.wait(timeout=5)

        outbox, _ = make_outbox(BlockingWriter())
        outbox.start()
        worker = outbox._worker
        entry = outbox.enqueue("u1", "F1", FluencyStage.LEARNING)

        outbox.stop(timeout=0.05)
        assert outbox.is_running

        outbox.start()
        assert outbox._worker is worker

        release.set()
        worker.join(timeout=5)
        assert entry.status is OutboxStatus.CONFIRMED

        outbox.stop()
        assert not outbox.is_running
        assert outbox._worker is None
