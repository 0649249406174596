"""
Stage Transition Controller.

Bridges ephemeral session scores to a fact's durable fluency stage.
A stage advance is requested only on the threshold-crossing edge, and a
commutative fact waits until both of its directions are at threshold.
Requests go to the progress outbox and are not awaited.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from loguru import logger

from fastfacts.core.errors import InvariantViolation
from fastfacts.core.stages import FluencyStage

from .facts import Fact, PracticeItem, sibling_id

# Requests the advance; returns without waiting for the write.
AdvanceSink = Callable[["StageAdvance"], None]


@dataclass(frozen=True)
class StageAdvance:
    """A one-step stage advance for a fact."""

    fact_id: str
    from_stage: FluencyStage
    to_stage: FluencyStage


class StageTransitionController:
    """
    Edge-triggered stage advancement for one session.

    Args:
        items: Session practice items by id
        current_stages: Stage of each fact at session start
        score_of: Current session score for an item id (0 if unseen)
        threshold: Promotion threshold of the session's scoring config
        sink: Receives each StageAdvance (usually enqueues on the outbox)
    """

    def __init__(
        self,
        items: Mapping[str, PracticeItem],
        current_stages: Mapping[str, FluencyStage],
        score_of: Callable[[str], int],
        threshold: int,
        sink: AdvanceSink,
    ):
        self._items = dict(items)
        self._stages = dict(current_stages)
        self._score_of = score_of
        self.threshold = threshold
        self._sink = sink
        self.advanced_fact_ids: set[str] = set()
        self.advances: list[StageAdvance] = []

    def stage_of(self, fact_id: str) -> FluencyStage:
        try:
            return self._stages[fact_id]
        except KeyError:
            raise InvariantViolation(f"Fact {fact_id!r} has no stage in this session") from None

    def on_score_change(
        self,
        fact: Fact,
        item_id: str,
        new_score: int,
        old_score: int,
    ) -> StageAdvance | None:
        """
        React to one score update.

        Returns:
            The StageAdvance requested, or None if nothing fired
        """
        if not (old_score < self.threshold <= new_score):
            return None

        item = self._items.get(item_id)
        if item is None or item.fact_id != fact.fact_id:
            raise InvariantViolation(f"Item {item_id!r} does not belong to fact {fact.fact_id!r}")

        if fact.fact_id in self.advanced_fact_ids:
            logger.debug("Fact {} already advanced this session", fact.fact_id)
            return None

        other_id = sibling_id(item)
        if other_id is not None:
            # A sibling not yet presented this session scores 0
            sibling_score = self._score_of(other_id)
            if sibling_score < self.threshold:
                logger.debug(
                    "Fact {}: {} at threshold, waiting on {} (score {})",
                    fact.fact_id,
                    item_id,
                    other_id,
                    sibling_score,
                )
                return None

        current = self.stage_of(fact.fact_id)
        advance = StageAdvance(
            fact_id=fact.fact_id,
            from_stage=current,
            to_stage=current.next_stage(),
        )
        self.advanced_fact_ids.add(fact.fact_id)
        self._stages[fact.fact_id] = advance.to_stage
        self.advances.append(advance)
        logger.info(
            "Fact {} advanced {} -> {}",
            fact.fact_id,
            advance.from_stage.value,
            advance.to_stage.value,
        )
        self._sink(advance)
        return advance
