"""
Mastery Scorer.

Keeps a bounded integer score per practice item for one session and
applies an asymmetric update:

    new = clamp(old + (reward if creditable else penalty), min_score, max_score)

A correct answer is creditable only inside the zones the stage credits
(green for timed and fluency practice, the whole window for accuracy
practice). Wrong, empty, non-numeric and expired answers all take the
penalty, so one slip costs two good answers.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from fastfacts.core.errors import InvariantViolation
from fastfacts.core.stages import FluencyStage

from .timer import TimerZone


@dataclass(frozen=True)
class ScoringConfig:
    """Scoring rules for one drill stage."""

    threshold: int = 3
    reward: int = 1
    penalty: int = -2
    min_score: int = -4
    max_score: int = 3
    credit_zones: frozenset[TimerZone] = field(default_factory=lambda: frozenset({TimerZone.GREEN}))

    def __post_init__(self):
        if self.min_score > 0 or self.max_score < self.threshold:
            raise InvariantViolation(
                f"Score bounds [{self.min_score}, {self.max_score}] must contain 0 "
                f"and the threshold {self.threshold}"
            )
        if self.reward <= 0 or self.penalty >= 0:
            raise InvariantViolation("Reward must be positive and penalty negative")

    def clamp(self, score: int) -> int:
        return min(max(score, self.min_score), self.max_score)


TIMED_PRACTICE = ScoringConfig(threshold=3, penalty=-2, min_score=-4, max_score=3)
ACCURACY_PRACTICE = ScoringConfig(threshold=2, penalty=-2, min_score=-4, max_score=2)
FLUENCY_PRACTICE = ScoringConfig(threshold=3, penalty=-2, min_score=-4, max_score=3)


def scoring_config_for(stage: FluencyStage) -> ScoringConfig:
    """
    Scoring rules for a drill stage.

    Raises:
        InvariantViolation: For stages no drill runs in
    """
    if stage in (FluencyStage.NOT_STARTED, FluencyStage.LEARNING):
        return TIMED_PRACTICE
    if stage is FluencyStage.ACCURACY_PRACTICE:
        return ACCURACY_PRACTICE
    if stage.fluency_seconds is not None:
        return FLUENCY_PRACTICE
    raise InvariantViolation(f"No scoring rules for stage {stage.value}")


def parse_answer(raw: str | int | None) -> int | None:
    """
    Parse a learner's answer.

    Returns None for empty or non-numeric input, which is scored as
    incorrect rather than raised.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw).strip().replace("−", "-")
    if not text:
        return None
    try:
        return int(text, 10)
    except ValueError:
        return None


def next_score(config: ScoringConfig, old_score: int, creditable: bool) -> int:
    """Pure score update for one attempt."""
    delta = config.reward if creditable else config.penalty
    return config.clamp(old_score + delta)


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of scoring one attempt."""

    item_id: str
    old_score: int
    new_score: int
    creditable: bool
    threshold: int

    @property
    def reached_threshold(self) -> bool:
        return self.new_score >= self.threshold

    @property
    def crossed_threshold(self) -> bool:
        """Edge: below the threshold before, at or above it now."""
        return self.old_score < self.threshold <= self.new_score


class MasteryScorer:
    """
    Session score map for a fixed set of practice items.

    Scores start at 0 for every item. The scorer never talks to
    persistence; the transition controller decides what to do with a
    threshold crossing.
    """

    def __init__(self, item_ids: Iterable[str], config: ScoringConfig | None = None):
        self.config = config or TIMED_PRACTICE
        self._scores: dict[str, int] = {item_id: 0 for item_id in item_ids}

    @property
    def scores(self) -> Mapping[str, int]:
        """Read-only view of the current scores."""
        return MappingProxyType(self._scores)

    @property
    def threshold(self) -> int:
        return self.config.threshold

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._scores

    def score(self, item_id: str) -> int:
        """Current score; 0 for an item not scored in this session."""
        return self._scores.get(item_id, 0)

    def is_creditable(self, is_correct: bool, zone: TimerZone) -> bool:
        return is_correct and zone in self.config.credit_zones

    def record_attempt(self, item_id: str, is_correct: bool, zone: TimerZone) -> AttemptOutcome:
        """
        Apply one attempt to an item's score.

        Raises:
            InvariantViolation: If the item is not part of this session
        """
        if item_id not in self._scores:
            raise InvariantViolation(f"Item {item_id!r} is not part of this session")

        creditable = self.is_creditable(is_correct, zone)
        old_score = self._scores[item_id]
        new_score = next_score(self.config, old_score, creditable)
        self._scores[item_id] = new_score
        return AttemptOutcome(
            item_id=item_id,
            old_score=old_score,
            new_score=new_score,
            creditable=creditable,
            threshold=self.config.threshold,
        )

    def unmastered(self) -> list[str]:
        return [item_id for item_id, score in self._scores.items() if score < self.threshold]

    def clear(self) -> None:
        self._scores.clear()
