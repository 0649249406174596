"""
Response Timer and Zone Classifier.

Each presented item gets a countdown. Elapsed time falls into a zone:

    GREEN   elapsed < green_until
    YELLOW  green_until <= elapsed < duration
    EXPIRED elapsed >= duration

Only GREEN answers earn credit in timed stages. The timer does not run
its own thread; it reads an injected monotonic clock whenever the
session polls it, so a drill stays single-threaded and testable.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from fastfacts.core.errors import InvariantViolation
from fastfacts.core.stages import FluencyStage

Clock = Callable[[], float]


class TimerZone(str, Enum):
    """Scoring zone of a response."""

    GREEN = "green"
    YELLOW = "yellow"
    EXPIRED = "expired"


class TimerState(str, Enum):
    RUNNING = "running"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TimerConfig:
    """Window length and green/yellow split point, in seconds."""

    duration: float
    green_until: float

    def __post_init__(self):
        if self.duration <= 0:
            raise InvariantViolation(f"Timer duration must be positive, got {self.duration}")
        if not 0 < self.green_until <= self.duration:
            raise InvariantViolation(
                f"Green zone must end inside the window: {self.green_until} / {self.duration}"
            )

    @property
    def has_yellow_zone(self) -> bool:
        return self.green_until < self.duration

    def classify(self, elapsed: float) -> TimerZone:
        if elapsed >= self.duration:
            return TimerZone.EXPIRED
        if elapsed < self.green_until:
            return TimerZone.GREEN
        return TimerZone.YELLOW


# Timed practice: the green zone is the first third of the window
TIMED_GREEN_FRACTION = 1 / 3
DEFAULT_ACCURACY_WINDOW = 12.0


def timed_practice_duration(score: int) -> float:
    """Window for timed practice, shrinking as the item's session score grows."""
    if score <= 0:
        return 6.0
    if score == 1:
        return 4.5
    return 3.0


def timer_config_for(
    stage: FluencyStage,
    score: int,
    accuracy_window: float = DEFAULT_ACCURACY_WINDOW,
) -> TimerConfig:
    """
    Timer configuration for an item in a drill of the given stage.

    Args:
        stage: Stage the drill session is running for
        score: The item's current session score
        accuracy_window: Single window used by accuracy practice

    Raises:
        InvariantViolation: For stages no drill runs in
    """
    if stage in (FluencyStage.NOT_STARTED, FluencyStage.LEARNING):
        duration = timed_practice_duration(score)
        return TimerConfig(duration=duration, green_until=duration * TIMED_GREEN_FRACTION)

    if stage is FluencyStage.ACCURACY_PRACTICE:
        return TimerConfig(duration=accuracy_window, green_until=accuracy_window)

    seconds = stage.fluency_seconds
    if seconds is not None:
        return TimerConfig(duration=seconds * 3, green_until=seconds)

    raise InvariantViolation(f"No drill timer for stage {stage.value}")


class ResponseTimer:
    """
    Countdown for the currently presented item.

    A session owns exactly one ResponseTimer and restarts it for every
    item, so two countdowns never overlap.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or time.monotonic
        self._config: TimerConfig | None = None
        self._started_at: float | None = None
        self._state: TimerState = TimerState.CANCELLED
        self._last_zone: TimerZone | None = None

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def config(self) -> TimerConfig | None:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._state is TimerState.RUNNING

    def start(self, config: TimerConfig) -> None:
        """Start a fresh countdown, cancelling any running one."""
        if self._state is TimerState.RUNNING:
            self.cancel()
        self._config = config
        self._started_at = self._clock()
        self._state = TimerState.RUNNING
        self._last_zone = TimerZone.GREEN
        logger.debug(
            "Timer started: window={}s green_until={}s", config.duration, config.green_until
        )

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def zone(self) -> TimerZone:
        """Zone for the elapsed time right now (no state change)."""
        if self._config is None:
            raise InvariantViolation("Timer was never started")
        return self._config.classify(self.elapsed())

    def tick(self) -> TimerZone | None:
        """
        Poll the timer.

        Returns the current zone while running, EXPIRED exactly once when
        the window closes, and None once the timer is no longer running.
        """
        if self._state is not TimerState.RUNNING:
            return None
        current = self.zone()
        if current is not self._last_zone:
            logger.debug("Timer zone {} -> {}", self._last_zone, current)
            self._last_zone = current
        if current is TimerZone.EXPIRED:
            self._state = TimerState.EXPIRED
        return current

    def cancel(self) -> float:
        """Stop the countdown; returns the elapsed seconds."""
        elapsed = self.elapsed()
        if self._state is TimerState.RUNNING:
            self._state = TimerState.CANCELLED
        return elapsed
