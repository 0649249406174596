"""
Fluency Stages.

The fixed, ordered mastery pipeline a fact moves through, from first
exposure to automatic recall. Stages only ever advance one step at a
time; regression belongs to the retention checker, not to drills.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvariantViolation


class FluencyStage(str, Enum):
    """
    Fluency stage of a single fact.

    Values match the labels stored by the progress backend.
    """

    NOT_STARTED = "notStarted"
    LEARNING = "learning"  # Timed practice with green/yellow zones
    ACCURACY_PRACTICE = "accuracyPractice"  # Untimed practice for accuracy
    FLUENCY_6 = "fluency6Practice"  # 6s per question
    FLUENCY_3 = "fluency3Practice"  # 3s per question
    FLUENCY_2 = "fluency2Practice"  # 2s per question
    FLUENCY_1_5 = "fluency1_5Practice"  # 1.5s per question
    FLUENCY_1 = "fluency1Practice"  # 1s per question
    MASTERED = "mastered"  # Reached target fluency
    AUTOMATIC = "automatic"  # Cleared the retention tests

    @classmethod
    def parse(cls, value: str | FluencyStage) -> FluencyStage:
        """
        Convert a stored label to a stage.

        Raises:
            InvariantViolation: If the label is not a known stage
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvariantViolation(f"Unknown fluency stage: {value!r}") from None

    @property
    def rank(self) -> int:
        """Position in the pipeline (0 = notStarted)."""
        return _ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is FluencyStage.AUTOMATIC

    @property
    def is_drillable(self) -> bool:
        """Whether a drill session can advance facts out of this stage."""
        return self in DRILL_STAGES

    @property
    def fluency_seconds(self) -> float | None:
        """Target response time for fluency stages."""
        return _FLUENCY_SECONDS.get(self)

    def next_stage(self) -> FluencyStage:
        """
        The stage exactly one step ahead.

        Raises:
            InvariantViolation: If called on the terminal stage
        """
        try:
            return _NEXT[self]
        except KeyError:
            raise InvariantViolation(f"{self.value} has no next stage") from None

    def is_progression_to(self, other: FluencyStage) -> bool:
        """True only if ``other`` is strictly later in the pipeline."""
        return other.rank > self.rank

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return _DISPLAY.get(self, self.value)

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        if self is FluencyStage.NOT_STARTED:
            return "dim"
        if self in (FluencyStage.LEARNING, FluencyStage.ACCURACY_PRACTICE):
            return "yellow"
        if self.fluency_seconds is not None:
            return "cyan"
        return "green"


_ORDER: tuple[FluencyStage, ...] = tuple(FluencyStage)

_NEXT: dict[FluencyStage, FluencyStage] = {
    stage: _ORDER[i + 1] for i, stage in enumerate(_ORDER[:-1])
}

_FLUENCY_SECONDS: dict[FluencyStage, float] = {
    FluencyStage.FLUENCY_6: 6.0,
    FluencyStage.FLUENCY_3: 3.0,
    FluencyStage.FLUENCY_2: 2.0,
    FluencyStage.FLUENCY_1_5: 1.5,
    FluencyStage.FLUENCY_1: 1.0,
}

_DISPLAY: dict[FluencyStage, str] = {
    FluencyStage.NOT_STARTED: "Not started",
    FluencyStage.LEARNING: "Learning",
    FluencyStage.ACCURACY_PRACTICE: "Accuracy practice",
    FluencyStage.FLUENCY_6: "Fluency 6s",
    FluencyStage.FLUENCY_3: "Fluency 3s",
    FluencyStage.FLUENCY_2: "Fluency 2s",
    FluencyStage.FLUENCY_1_5: "Fluency 1.5s",
    FluencyStage.FLUENCY_1: "Fluency 1s",
    FluencyStage.MASTERED: "Mastered",
    FluencyStage.AUTOMATIC: "Automatic",
}

# Stages a drill session can run for. notStarted facts join timed practice.
DRILL_STAGES: frozenset[FluencyStage] = frozenset(
    {
        FluencyStage.NOT_STARTED,
        FluencyStage.LEARNING,
        FluencyStage.ACCURACY_PRACTICE,
        *_FLUENCY_SECONDS,
    }
)
