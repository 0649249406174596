"""
Tests for DrillSession.

Covers the end-to-end drill loop: permutations, timer zones, scoring,
scheduling and edge-triggered stage advances through the outbox.
"""

import random

import pytest

from fastfacts.core.errors import InvariantViolation, PersistenceWriteFailure
from fastfacts.core.stages import FluencyStage
from fastfacts.drill.facts import Fact, Operation
from fastfacts.drill.session import DrillSession
from fastfacts.drill.timer import TimerZone
from fastfacts.progress.activity import SessionActivityRecorder
from fastfacts.progress.outbox import SAVE_FAILED_NOTICE, OutboxStatus, ProgressOutbox


class RecordingWriter:
    """ProgressWritePort that records calls and can fail on demand."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def advance_stage(self, user_id, fact_id, new_status, stats=None):
        self.calls.append((user_id, fact_id, new_status, stats))
        if self.fail:
            raise PersistenceWriteFailure("backend down")


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def outbox(writer):
    return ProgressOutbox(writer, max_retries=3, sleep=lambda s: None)


def make_session(facts, clock, stage=FluencyStage.LEARNING, **kwargs):
    return DrillSession(
        "u1", "TRACK1", stage, facts, clock=clock, rng=random.Random(5), **kwargs
    )


def answer_all_correctly(session):
    results = []
    while (item := session.advance_to_next()) is not None:
        results.append(session.submit_answer(str(item.result)))
    return results


class TestScenarios:
    def test_commutative_fact_advances_once_after_both_directions(
        self, fact_3_plus_4, clock, outbox, writer
    ):
        session = make_session([fact_3_plus_4], clock, outbox=outbox)

        results = answer_all_correctly(session)
        outbox.drain()

        assert len(results) == 6
        assert all(r.creditable for r in results)
        assert all(r.advance is None for r in results[:-1])
        assert results[-1].advance.to_stage is FluencyStage.ACCURACY_PRACTICE
        assert len(writer.calls) == 1
        user_id, fact_id, new_status, stats = writer.calls[0]
        assert (user_id, fact_id, new_status) == ("u1", "F1", FluencyStage.ACCURACY_PRACTICE)
        assert (stats.attempts, stats.correct) == (6, 6)

    @pytest.mark.parametrize("seed", range(12))
    def test_commutative_fact_advances_once_in_any_order(self, fact_3_plus_4, clock, seed):
        writer = RecordingWriter()
        outbox = ProgressOutbox(writer, sleep=lambda s: None)
        session = DrillSession(
            "u1", "TRACK1", FluencyStage.LEARNING, [fact_3_plus_4],
            clock=clock, rng=random.Random(seed), outbox=outbox,
        )
        first_to_threshold = None
        hits: dict[str, int] = {}

        while (item := session.advance_to_next()) is not None:
            result = session.submit_answer(str(item.result))
            hits[item.id] = hits.get(item.id, 0) + 1
            if first_to_threshold is None and hits[item.id] == 3:
                first_to_threshold = item.id
        outbox.drain()

        assert first_to_threshold in ("3-4-addition", "4-3-addition")
        assert result.advance is not None
        assert session.advances == [result.advance]
        assert [call[1:3] for call in writer.calls] == [("F1", FluencyStage.ACCURACY_PRACTICE)]

    def test_penalty_resets_progress(self, clock, outbox, writer):
        fact = Fact("F9", Operation.SUBTRACTION, 9, 5, 4)
        session = make_session([fact], clock, outbox=outbox)
        scores = []
        for raw in ("4", "4", "3", "4"):
            session.advance_to_next()
            scores.append(session.submit_answer(raw).new_score)

        assert scores == [1, 2, 0, 1]
        assert session.advances == []
        outbox.drain()
        assert writer.calls == []

    def test_late_answer_is_a_timeout(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()
        assert session.timer.config.duration == 6.0

        clock.advance(6.2)
        result = session.submit_answer("5")

        assert result.is_correct
        assert result.timed_out
        assert not result.creditable
        assert result.new_score == -2

    def test_timeouts_clamp_at_minimum(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        scores = []
        for _ in range(3):
            session.advance_to_next()
            clock.advance(6.2)
            scores.append(session.submit_answer("5").new_score)

        assert scores == [-2, -4, -4]

    def test_accounting_until_complete(self, clock):
        facts = [
            Fact("F1", Operation.ADDITION, 2, 5, 7),
            Fact("F2", Operation.SUBTRACTION, 8, 3, 5),
            Fact("F3", Operation.DIVISION, 6, 3, 2),
        ]
        completed = []
        session = make_session(facts, clock, on_complete=completed.append)
        assert len(session.items) == 4
        rng = random.Random(2)

        while (item := session.advance_to_next()) is not None:
            assert session.queue.accounted_for == 4
            raw = str(item.result) if rng.random() < 0.75 else "0"
            session.submit_answer(raw)
            assert session.queue.accounted_for == 4

        assert session.is_complete
        assert len(session.queue.mastered) == 4
        assert len(completed) == 1
        assert completed[0].mastered_items == 4


class TestTimer:
    def test_yellow_answer_is_not_credited(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()
        clock.advance(3.0)

        assert session.current_zone is TimerZone.YELLOW
        result = session.submit_answer("5")
        assert result.is_correct and not result.creditable
        assert result.new_score == -2

    def test_tick_expiry_scores_the_item(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()

        assert session.tick() is TimerZone.GREEN
        clock.advance(6.0)
        assert session.tick() is TimerZone.EXPIRED

        assert session.current_item is None
        assert session.scores["7-2-subtraction"] == -2
        assert session.last_result.timed_out
        assert session.submit_answer("5") is None
        assert session.tick() is None

    def test_window_shrinks_as_score_grows(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        windows = []
        for _ in range(3):
            session.advance_to_next()
            windows.append(session.timer.config.duration)
            session.submit_answer("5")

        assert windows == [6.0, 4.5, 3.0]

    def test_accuracy_practice_credits_whole_window(self, fact_7_minus_2, clock, outbox, writer):
        session = make_session(
            [fact_7_minus_2], clock, stage=FluencyStage.ACCURACY_PRACTICE, outbox=outbox
        )
        for _ in range(2):
            session.advance_to_next()
            clock.advance(11.0)
            assert session.submit_answer("5").creditable

        assert session.advances[0].to_stage is FluencyStage.FLUENCY_6
        assert session.advance_to_next() is None

    def test_fluency_stage_green_is_target_time(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock, stage=FluencyStage.FLUENCY_2)
        session.advance_to_next()
        clock.advance(2.5)

        result = session.submit_answer("5")
        assert result.zone is TimerZone.YELLOW


class TestInput:
    @pytest.mark.parametrize("raw", ["", "  ", "five", None])
    def test_bad_input_is_incorrect(self, fact_7_minus_2, clock, raw):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()

        result = session.submit_answer(raw)
        assert not result.is_correct
        assert result.answer is None
        assert result.new_score == -2

    def test_answer_without_live_item_is_ignored(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)

        assert session.submit_answer("5") is None
        session.advance_to_next()
        session.submit_answer("5")
        assert session.submit_answer("5") is None
        assert session.scores["7-2-subtraction"] == 1

    def test_skipping_an_item_scores_it_as_timeout(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()
        session.advance_to_next()

        assert session.scores["7-2-subtraction"] == -2


class TestPersistence:
    def test_failed_save_shows_notice(self, fact_7_minus_2, clock):
        outbox = ProgressOutbox(RecordingWriter(fail=True), max_retries=2, sleep=lambda s: None)
        session = make_session([fact_7_minus_2], clock, outbox=outbox)
        answer_all_correctly(session)

        assert session.save_status("F2") is OutboxStatus.PENDING
        assert session.notices == []
        outbox.drain()

        assert session.save_status("F2") is OutboxStatus.FAILED
        assert session.notices == [SAVE_FAILED_NOTICE]
        assert session.is_complete

    def test_confirmed_save(self, fact_7_minus_2, clock, outbox):
        session = make_session([fact_7_minus_2], clock, outbox=outbox)
        answer_all_correctly(session)
        outbox.drain()

        assert session.save_status("F2") is OutboxStatus.CONFIRMED
        assert session.save_status("unknown") is None

    def test_start_seeds_eligible_facts(self, store, fact_3_plus_4, fact_7_minus_2):
        store.seed_facts("u1", "TRACK1", ["F1", "F2"])
        store.advance_stage("u1", "F2", FluencyStage.ACCURACY_PRACTICE)
        f3 = Fact("F3", Operation.MULTIPLICATION, 2, 3, 6)
        outbox = ProgressOutbox(store, sleep=lambda s: None)

        session = DrillSession.start(
            store,
            "u1",
            "TRACK1",
            FluencyStage.LEARNING,
            [fact_3_plus_4, fact_7_minus_2, f3],
            activity=SessionActivityRecorder(store),
            outbox=outbox,
            rng=random.Random(1),
        )

        assert set(session.facts) == {"F1", "F3"}
        events = store.get_stage_events("u1")
        assert len(events) == 1
        assert events[0]["facts_by_stage"] == {"learning": ["F1", "F3"]}

        answer_all_correctly(session)
        outbox.drain()

        status = store.get_current_status("u1", "TRACK1")
        assert status["F1"] is FluencyStage.LEARNING
        assert status["F2"] is FluencyStage.ACCURACY_PRACTICE
        assert status["F3"] is FluencyStage.LEARNING


class TestLifecycle:
    def test_close_discards_scores(self, fact_7_minus_2, clock):
        session = make_session([fact_7_minus_2], clock)
        session.advance_to_next()
        session.submit_answer("5")
        session.close()

        assert dict(session.scores) == {}
        assert session.current_item is None
        with pytest.raises(InvariantViolation):
            session.advance_to_next()

    def test_non_drillable_stage_raises(self, fact_7_minus_2, clock):
        with pytest.raises(InvariantViolation):
            make_session([fact_7_minus_2], clock, stage=FluencyStage.MASTERED)

    def test_duplicate_fact_ids_raise(self, fact_7_minus_2, clock):
        with pytest.raises(InvariantViolation):
            make_session([fact_7_minus_2, fact_7_minus_2], clock)

    def test_summary_stats(self, fact_3_plus_4, clock):
        session = make_session([fact_3_plus_4], clock)
        answer_all_correctly(session)
        summary = session.summary()

        assert summary.items == 2
        assert summary.mastered_items == 2
        assert summary.stats["total_attempts"] == 6
        assert summary.stats["accuracy_percent"] == 100
        assert session.telemetry.tallies["F1"].attempts == 3
        assert session.telemetry.tallies["F1i"].attempts == 3
