"""
Progress ports.

Interfaces the engine uses to reach the persistence collaborator. The
engine never assumes a storage engine; StateStore (SQLite) and
HttpProgressClient (remote API) are the two shipped implementations.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from fastfacts.core.stages import FluencyStage

FactsByStage = Mapping[FluencyStage, Sequence[str]]


@dataclass(frozen=True)
class FactStats:
    """Attempt totals for one fact, sent along with a stage advance."""

    attempts: int = 0
    correct: int = 0
    time_spent_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "attempts": self.attempts,
            "correct": self.correct,
            "timeSpent": self.time_spent_ms,
        }


class ProgressReadPort(Protocol):
    """Reads a learner's fluency stages at session start."""

    def get_current_status(self, user_id: str, track_id: str) -> dict[str, FluencyStage]:
        """Map of fact_id -> current stage for the track."""
        ...


class ProgressWritePort(Protocol):
    """
    Applies durable stage advances.

    Implementations must be idempotent: writing the same new_status twice
    never moves the stored status past it, and a status that is not a
    forward progression is ignored.
    """

    def advance_stage(
        self,
        user_id: str,
        fact_id: str,
        new_status: FluencyStage,
        stats: FactStats | None = None,
    ) -> None:
        """Raises PersistenceWriteFailure when the write does not complete."""
        ...


class SessionActivityPort(Protocol):
    """Best-effort recorder of coarse stage-entry events."""

    def record_stage_entry(
        self,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts_by_stage: FactsByStage | None = None,
    ) -> None:
        ...
