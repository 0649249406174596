"""
Session Queue Scheduler.

Chooses the next practice item. Items not yet attempted this round are
drawn uniformly at random; a missed item goes back into the pool so it
resurfaces later in the same session. When the pool runs dry the
unmastered items form the next round, and once nothing is left below
threshold the session is complete.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence

from loguru import logger

from fastfacts.core.errors import InvariantViolation

from .facts import PracticeItem


class SessionQueue:
    """
    Pending pool plus mastered set for one session.

    Args:
        items: Every practice item of the session
        score_of: Current score for an item id
        threshold: Score at which an item counts as mastered
        rng: Random source (seed it for reproducible drills)
    """

    def __init__(
        self,
        items: Sequence[PracticeItem],
        score_of: Callable[[str], int],
        threshold: int,
        rng: random.Random | None = None,
    ):
        self.items: dict[str, PracticeItem] = {item.id: item for item in items}
        if len(self.items) != len(items):
            raise InvariantViolation("Practice item ids must be unique within a session")
        self._score_of = score_of
        self.threshold = threshold
        self._rng = rng or random.Random()
        self.pending: list[PracticeItem] = list(items)
        self.mastered: set[str] = set()
        self.current: PracticeItem | None = None
        self.complete = False
        self.rounds = 1

    def __len__(self) -> int:
        return len(self.items)

    def next_item(self) -> PracticeItem | None:
        """
        Draw the next item to present.

        Returns:
            A practice item, or None once the session is complete
        """
        if self.complete:
            return None
        if self.current is not None:
            raise InvariantViolation(f"Item {self.current.id!r} is still being displayed")

        if not self.pending:
            unmastered = [
                item
                for item_id, item in self.items.items()
                if item_id not in self.mastered and self._score_of(item_id) < self.threshold
            ]
            if not unmastered:
                self.complete = True
                logger.info("Session complete: {} items mastered", len(self.mastered))
                return None
            self.pending = unmastered
            self.rounds += 1
            logger.debug("Round {}: {} unmastered items", self.rounds, len(unmastered))

        index = self._rng.randrange(len(self.pending))
        self.current = self.pending.pop(index)
        return self.current

    def record_result(self, item: PracticeItem, creditable: bool, reached_threshold: bool) -> None:
        """
        File the displayed item after an answer.

        A creditable answer that brings the item to threshold masters it;
        anything else sends it back to the pending pool.
        """
        if self.current is None or item.id != self.current.id:
            raise InvariantViolation(f"Item {item.id!r} is not the displayed item")
        self.current = None
        if creditable and reached_threshold:
            self.mastered.add(item.id)
        else:
            self.pending.append(item)

    @property
    def accounted_for(self) -> int:
        """pending + mastered + displayed; always equals len(self)."""
        return len(self.pending) + len(self.mastered) + (1 if self.current is not None else 0)
