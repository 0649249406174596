"""
Session activity recorder.

Forwards coarse stage-entry events ("learner entered accuracy practice
with these facts") to a SessionActivityPort. Delivery is best effort:
duplicates are dropped, failed sends are retried a few times with
backoff, and a send that still fails is logged, never raised into the
drill.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger

from fastfacts.core.stages import FluencyStage

from .ports import FactsByStage, SessionActivityPort


class SessionActivityRecorder:
    """
    De-duplicating, retrying wrapper around a SessionActivityPort.

    Two filters apply to an entry for the same stage as the previous one:

    - without facts_by_stage, it is a duplicate while the last *accepted*
      send is younger than ``dedupe_seconds``
    - with or without facts, it is throttled while the last *attempt* is
      younger than ``throttle_seconds``

    Only a send the port accepts restarts the duplicate window.
    """

    def __init__(
        self,
        port: SessionActivityPort | None,
        dedupe_seconds: float = 5.0,
        throttle_seconds: float = 0.5,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.port = port
        self.dedupe_seconds = dedupe_seconds
        self.throttle_seconds = throttle_seconds
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep
        self._last_stage: FluencyStage | None = None
        self._last_attempt_at: float | None = None
        self._last_accepted_at: float | None = None
        self.sent = 0
        self.dropped = 0
        self.failed = 0

    def _is_duplicate(self, stage: FluencyStage, facts_by_stage: FactsByStage | None, now: float) -> bool:
        if self._last_stage is not stage:
            return False
        if (
            not facts_by_stage
            and self._last_accepted_at is not None
            and now - self._last_accepted_at < self.dedupe_seconds
        ):
            return True
        return (
            self._last_attempt_at is not None
            and now - self._last_attempt_at < self.throttle_seconds
        )

    def retry_delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return self.retry_delay * (2 ** (attempt - 1))

    def record_stage_entry(
        self,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts_by_stage: FactsByStage | None = None,
    ) -> bool:
        """
        Record one stage entry.

        Returns:
            True if the port accepted the event
        """
        if self.port is None:
            return False

        now = self._clock()
        if self._is_duplicate(stage, facts_by_stage, now):
            self.dropped += 1
            logger.debug("Dropped duplicate stage entry for {}", stage.value)
            return False

        self._last_stage = stage
        self._last_attempt_at = now

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.port.record_stage_entry(user_id, track_id, stage, facts_by_stage)
            except Exception as e:  # Intentionally broad - activity logging is best effort
                logger.warning(
                    "Failed to record stage entry {} (attempt {}/{}): {}",
                    stage.value,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.retry_delay_for(attempt))
                continue

            self._last_accepted_at = now
            self.sent += 1
            return True

        self.failed += 1
        return False
