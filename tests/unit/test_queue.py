"""Tests for the session queue scheduler."""

import random

import pytest

from fastfacts.core.errors import InvariantViolation
from fastfacts.drill.facts import Fact, Operation, generate_permutations
from fastfacts.drill.queue import SessionQueue


@pytest.fixture
def items(fact_3_plus_4, fact_7_minus_2):
    # 2 + 1 + 1 = 4 items
    return generate_permutations(
        [fact_3_plus_4, fact_7_minus_2, Fact("F3", Operation.DIVISION, 8, 2, 4)]
    )


def make_queue(items, scores, seed=7):
    return SessionQueue(items, lambda i: scores.get(i, 0), threshold=3, rng=random.Random(seed))


class TestScheduling:
    def test_missed_items_rejoin_pending_without_loss(self, items):
        queue = make_queue(items, {})
        for _ in range(3 * len(items)):
            item = queue.next_item()
            queue.record_result(item, creditable=False, reached_threshold=False)

            assert queue.pending[-1] is item
            assert queue.accounted_for == len(items)
            assert sorted(i.id for i in queue.pending) == sorted(i.id for i in items)

    def test_missed_item_returns_to_pending(self, items):
        queue = make_queue(items, {})
        item = queue.next_item()
        queue.record_result(item, creditable=False, reached_threshold=False)

        assert item in queue.pending
        assert item.id not in queue.mastered

    def test_mastered_item_leaves_rotation(self, items):
        queue = make_queue(items, {})
        item = queue.next_item()
        queue.record_result(item, creditable=True, reached_threshold=True)

        assert item.id in queue.mastered
        assert item not in queue.pending

    def test_same_seed_same_order(self, items):
        def order(seed):
            queue = make_queue(items, {}, seed=seed)
            ids = []
            for _ in range(len(items)):
                item = queue.next_item()
                ids.append(item.id)
                queue.record_result(item, creditable=True, reached_threshold=True)
            return ids

        assert order(3) == order(3)


class TestCompletion:
    def test_accounting_invariant_until_complete(self, items):
        """4 items: pending + mastered + displayed stays 4 until all are mastered."""
        scores: dict[str, int] = {}
        queue = make_queue(items, scores)
        rng = random.Random(11)
        steps = 0

        while (item := queue.next_item()) is not None:
            assert queue.accounted_for == 4
            creditable = rng.random() < 0.7
            score = scores.get(item.id, 0)
            scores[item.id] = min(3, score + 1) if creditable else max(-4, score - 2)
            queue.record_result(item, creditable, scores[item.id] >= 3)
            assert queue.accounted_for == 4
            steps += 1
            assert steps < 1000

        assert queue.complete
        assert len(queue.mastered) == 4
        assert queue.pending == []

    def test_next_item_after_complete_returns_none(self, fact_7_minus_2):
        queue = make_queue(generate_permutations([fact_7_minus_2]), {})
        item = queue.next_item()
        queue.record_result(item, creditable=True, reached_threshold=True)

        assert queue.next_item() is None
        assert queue.next_item() is None

    def test_empty_session_completes_immediately(self):
        queue = make_queue([], {})

        assert queue.next_item() is None
        assert queue.complete


class TestInvariants:
    def test_one_item_displayed_at_a_time(self, items):
        queue = make_queue(items, {})
        queue.next_item()

        with pytest.raises(InvariantViolation):
            queue.next_item()

    def test_recording_other_item_raises(self, items):
        queue = make_queue(items, {})
        shown = queue.next_item()
        other = next(item for item in items if item.id != shown.id)

        with pytest.raises(InvariantViolation):
            queue.record_result(other, creditable=True, reached_threshold=False)

    def test_duplicate_item_ids_raise(self, fact_3_plus_4):
        # 4+3 expands to the same two items as 3+4
        duplicate = Fact("F5", Operation.ADDITION, 4, 3, 7)

        with pytest.raises(InvariantViolation):
            SessionQueue(generate_permutations([fact_3_plus_4, duplicate]), lambda i: 0, 3)
