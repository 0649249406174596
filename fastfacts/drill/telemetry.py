"""
Session Telemetry.

Tracks attempts for a single drill session:
- Per-direction totals (attempts, correct, time spent)
- Overall accuracy, green-zone rate and timeouts
- Items the learner keeps missing
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from fastfacts.progress.ports import FactStats

from .facts import PracticeItem
from .timer import TimerZone


@dataclass
class AttemptEvent:
    """A single answered (or expired) item."""

    item_id: str
    tracking_id: str
    fact_id: str
    is_correct: bool
    creditable: bool
    zone: TimerZone
    response_ms: int
    new_score: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class DirectionTally:
    """Running totals for one direction of a fact."""

    attempts: int = 0
    correct: int = 0
    time_spent_ms: int = 0


class SessionTelemetry:
    """Attempt log and tallies for one session."""

    def __init__(self):
        self.started_at = datetime.now()
        self.events: list[AttemptEvent] = []
        self.tallies: dict[str, DirectionTally] = {}

    def record(
        self,
        item: PracticeItem,
        is_correct: bool,
        creditable: bool,
        zone: TimerZone,
        response_ms: int,
        new_score: int,
    ) -> AttemptEvent:
        event = AttemptEvent(
            item_id=item.id,
            tracking_id=item.tracking_id,
            fact_id=item.fact_id,
            is_correct=is_correct,
            creditable=creditable,
            zone=zone,
            response_ms=response_ms,
            new_score=new_score,
        )
        self.events.append(event)

        tally = self.tallies.setdefault(item.tracking_id, DirectionTally())
        tally.attempts += 1
        tally.correct += 1 if is_correct else 0
        tally.time_spent_ms += response_ms
        return event

    def fact_stats(self, fact_id: str) -> FactStats:
        """Totals across both directions of a fact."""
        attempts = correct = time_spent = 0
        for tracking_id in (fact_id, f"{fact_id}i"):
            tally = self.tallies.get(tracking_id)
            if tally is None:
                continue
            attempts += tally.attempts
            correct += tally.correct
            time_spent += tally.time_spent_ms
        return FactStats(attempts=attempts, correct=correct, time_spent_ms=time_spent)

    # =========================================================================
    # Basic Metrics
    # =========================================================================

    @property
    def total_attempts(self) -> int:
        return len(self.events)

    @property
    def correct_count(self) -> int:
        return sum(1 for e in self.events if e.is_correct)

    @property
    def overall_accuracy(self) -> float:
        if not self.events:
            return 0.0
        return self.correct_count / len(self.events)

    @property
    def green_rate(self) -> float:
        """Share of attempts that earned credit."""
        if not self.events:
            return 0.0
        return sum(1 for e in self.events if e.creditable) / len(self.events)

    @property
    def timeouts(self) -> int:
        return sum(1 for e in self.events if e.zone is TimerZone.EXPIRED)

    @property
    def average_response_ms(self) -> float:
        if not self.events:
            return 0.0
        return sum(e.response_ms for e in self.events) / len(self.events)

    @property
    def duration_minutes(self) -> float:
        return (datetime.now() - self.started_at).total_seconds() / 60

    def get_struggling_items(self, min_failures: int = 2) -> list[str]:
        """Item ids missed at least ``min_failures`` times, worst first."""
        misses = Counter(e.item_id for e in self.events if not e.creditable)
        return [item_id for item_id, count in misses.most_common() if count >= min_failures]

    def get_stats(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "correct": self.correct_count,
            "accuracy_percent": self.overall_accuracy * 100,
            "green_percent": self.green_rate * 100,
            "timeouts": self.timeouts,
            "avg_response_ms": round(self.average_response_ms),
            "duration_minutes": self.duration_minutes,
        }
