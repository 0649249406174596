"""
Progress Module - Durable progress behind narrow ports.

Components:
- ports: ProgressReadPort, ProgressWritePort, SessionActivityPort
- outbox: Fire-and-forget stage advances with retry and backoff
- activity: De-duplicated, best-effort stage-entry events
- state_store: SQLite store implementing every port
- http_client: Remote progress API implementing every port
"""

from fastfacts.progress.activity import SessionActivityRecorder
from fastfacts.progress.http_client import HttpProgressClient
from fastfacts.progress.outbox import SAVE_FAILED_NOTICE, OutboxEntry, OutboxStatus, ProgressOutbox
from fastfacts.progress.ports import (
    FactsByStage,
    FactStats,
    ProgressReadPort,
    ProgressWritePort,
    SessionActivityPort,
)
from fastfacts.progress.state_store import StateStore

__all__ = [
    "SAVE_FAILED_NOTICE",
    "FactStats",
    "FactsByStage",
    "HttpProgressClient",
    "OutboxEntry",
    "OutboxStatus",
    "ProgressOutbox",
    "ProgressReadPort",
    "ProgressWritePort",
    "SessionActivityPort",
    "SessionActivityRecorder",
    "StateStore",
]
