"""Progress outbox: durable-write intents drained with retry and backoff."""

from __future__ import annotations

import queue
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger

from fastfacts.core.errors import PersistenceWriteFailure
from fastfacts.core.stages import FluencyStage

from .ports import FactStats, ProgressWritePort

SAVE_FAILED_NOTICE = "Progress may not have saved. Keep practicing; we'll retry next time."


class OutboxStatus(str, Enum):
    """Delivery status of a queued stage advance."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class OutboxEntry:
    """A stage advance waiting to be written."""

    user_id: str
    fact_id: str
    new_status: FluencyStage
    stats: FactStats | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    queued_at: datetime = field(default_factory=datetime.now)
    last_error: str | None = None


class ProgressOutbox:
    """
    Queue of stage advances between the drill and the write port.

    Callers enqueue and move on; a worker thread (``start``) or a
    synchronous ``drain`` delivers each entry, retrying failures with
    exponential backoff (base, 2x base, 4x base, ... capped at max_delay).
    After ``max_retries`` failed attempts the entry is marked FAILED and
    ``on_failure`` is called; the drill is never interrupted.
    """

    def __init__(
        self,
        writer: ProgressWritePort,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        on_failure: Callable[[OutboxEntry], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.writer = writer
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.on_failure = on_failure
        self._sleep = sleep
        self._queue: queue.Queue[OutboxEntry | None] = queue.Queue()
        self._entries: dict[str, OutboxEntry] = {}
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stopping = threading.Event()

    # =========================================================================
    # Producer side
    # =========================================================================

    def enqueue(
        self,
        user_id: str,
        fact_id: str,
        new_status: FluencyStage,
        stats: FactStats | None = None,
    ) -> OutboxEntry:
        """Record the intent to advance a fact; returns immediately."""
        entry = OutboxEntry(user_id=user_id, fact_id=fact_id, new_status=new_status, stats=stats)
        with self._lock:
            self._entries[entry.id] = entry
        self._queue.put(entry)
        logger.info(
            "Queued stage advance for fact {} -> {} (entry {})",
            fact_id,
            new_status.value,
            entry.id,
        )
        return entry

    def status_for(self, fact_id: str) -> OutboxStatus | None:
        """Status of the most recent entry for a fact, if any."""
        with self._lock:
            matches = [e for e in self._entries.values() if e.fact_id == fact_id]
        if not matches:
            return None
        return max(matches, key=lambda e: e.queued_at).status

    def entries(self) -> list[OutboxEntry]:
        with self._lock:
            return list(self._entries.values())

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.status is OutboxStatus.PENDING)

    # =========================================================================
    # Delivery
    # =========================================================================

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the next try after ``attempts`` failures."""
        return min(self.base_delay * (2 ** (attempts - 1)), self.max_delay)

    def deliver(self, entry: OutboxEntry) -> bool:
        """
        Write one entry, retrying until confirmed or out of attempts.

        Returns:
            True if the write was confirmed
        """
        while entry.attempts < self.max_retries:
            entry.attempts += 1
            try:
                self.writer.advance_stage(
                    entry.user_id, entry.fact_id, entry.new_status, entry.stats
                )
            except PersistenceWriteFailure as e:
                entry.last_error = str(e)
                if not e.retryable:
                    logger.error(
                        "Stage advance for fact {} rejected: {}", entry.fact_id, e
                    )
                    break
                if entry.attempts >= self.max_retries:
                    break
                delay = self.backoff_delay(entry.attempts)
                logger.warning(
                    "Stage advance for fact {} failed (attempt {}/{}): {}. Retrying in {}s",
                    entry.fact_id,
                    entry.attempts,
                    self.max_retries,
                    e,
                    delay,
                )
                if self._stopping.is_set():
                    break
                self._sleep(delay)
                continue

            self._set_status(entry, OutboxStatus.CONFIRMED)
            logger.info(
                "Stage advance confirmed: fact {} -> {}", entry.fact_id, entry.new_status.value
            )
            return True

        self._set_status(entry, OutboxStatus.FAILED)
        logger.error(
            "Stage advance for fact {} failed after {} attempts: {}",
            entry.fact_id,
            entry.attempts,
            entry.last_error,
        )
        if self.on_failure is not None:
            self.on_failure(entry)
        return False

    def drain(self) -> int:
        """
        Deliver everything queued, synchronously.

        Returns:
            Number of entries confirmed
        """
        confirmed = 0
        while True:
            try:
                entry = self._queue.get_nowait()
            except queue.Empty:
                return confirmed
            try:
                if entry is not None and self._deliver_or_fail(entry):
                    confirmed += 1
            finally:
                self._queue.task_done()

    def _deliver_or_fail(self, entry: OutboxEntry) -> bool:
        """deliver(), marking the entry FAILED on any unexpected error."""
        try:
            return self.deliver(entry)
        except Exception as e:  # Intentionally broad - an entry must never stay PENDING
            logger.exception("Unexpected error delivering stage advance for fact {}", entry.fact_id)
            entry.last_error = str(e)
            self._set_status(entry, OutboxStatus.FAILED)
            if self.on_failure is not None:
                self.on_failure(entry)
            return False

    def _set_status(self, entry: OutboxEntry, status: OutboxStatus) -> None:
        with self._lock:
            entry.status = status

    # =========================================================================
    # Worker thread
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """
        Start the background worker (idempotent).

        A worker still finishing after a timed-out ``stop`` is left alone;
        a second consumer is never started on the same queue.
        """
        if self.is_running:
            if self._stopping.is_set():
                logger.warning("Progress outbox worker is still finishing; not restarting")
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run, name="progress-outbox", daemon=True)
        self._worker.start()
        logger.debug("Progress outbox worker started")

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is None:
                    return
                self._deliver_or_fail(entry)
            finally:
                self._queue.task_done()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the worker after it finishes what is queued.

        If ``timeout`` runs out first, the worker keeps going in the
        background but stops retrying: each remaining entry gets one more
        attempt and is marked FAILED if that fails. The worker handle is
        kept until the thread exits.
        """
        if self._worker is None:
            return
        if not self._stopping.is_set():
            self._queue.put(None)
        self._worker.join(timeout)
        if self._worker.is_alive():
            self._stopping.set()
            logger.warning("Progress outbox stopped with {} pending writes", self.pending_count)
            return
        self._worker = None
