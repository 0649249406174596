"""
Error taxonomy for the fluency engine.

Learner behavior never raises: bad input and timeouts are scored as
incorrect attempts. Only defects (InvariantViolation) end a session, and
persistence failures are retried by the outbox and never reach the
learner as exceptions.
"""

from __future__ import annotations


class FluencyError(Exception):
    """Base class for fastfacts errors."""


class InvariantViolation(FluencyError):
    """
    A programming or configuration defect.

    Fatal to the current session: the caller should abort and reload.
    """


class PersistenceWriteFailure(FluencyError):
    """A durable write did not complete."""

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
