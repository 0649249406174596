"""
SQLite State Store for fastfacts.

Provides portable persistence for:
- Fluency stage and attempt totals per fact
- Stage-entry events for session activity
- Session history for progress reports

Database location: ~/.fastfacts/progress.db

Implements all three progress ports, so the CLI can run fully offline.
"""

from __future__ import annotations

import json
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fastfacts.core.errors import PersistenceWriteFailure
from fastfacts.core.stages import FluencyStage

from .ports import FactsByStage, FactStats

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class FactProgress:
    """Stored progress for a single fact."""

    user_id: str
    fact_id: str
    track_id: str
    status: FluencyStage
    attempts: int = 0
    correct: int = 0
    time_spent_ms: int = 0
    updated_at: str | None = None

    @property
    def accuracy(self) -> float:
        if not self.attempts:
            return 0.0
        return self.correct / self.attempts


@dataclass
class SessionRecord:
    """A drill session summary."""

    id: int
    user_id: str
    track_id: str
    stage: str
    started_at: str
    ended_at: str | None
    attempts: int
    accuracy: float
    facts_advanced: int


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS fact_progress (
        user_id TEXT NOT NULL,
        fact_id TEXT NOT NULL,
        track_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'notStarted',
        attempts INTEGER NOT NULL DEFAULT 0,
        correct INTEGER NOT NULL DEFAULT 0,
        time_spent_ms INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT,
        PRIMARY KEY (user_id, fact_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stage_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        track_id TEXT NOT NULL,
        stage TEXT NOT NULL,
        facts_by_stage TEXT,
        recorded_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        track_id TEXT NOT NULL,
        stage TEXT NOT NULL,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        attempts INTEGER DEFAULT 0,
        accuracy REAL DEFAULT 0.0,
        facts_advanced INTEGER DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fact_progress_track ON fact_progress(user_id, track_id)",
]

_TABLES = ("fact_progress", "stage_events", "session_history")


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _build_engine(database_url: str) -> tuple[Engine, Path | None]:
    """Create the engine, expanding ``~`` and creating the parent directory."""
    url = make_url(database_url)
    db_file: Path | None = None
    if url.database and url.database != ":memory:":
        db_file = Path(url.database).expanduser()
        db_file.parent.mkdir(parents=True, exist_ok=True)
        url = url.set(database=str(db_file))
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        # One shared connection, or every checkout would see an empty database
        engine = create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    return engine, db_file


# =============================================================================
# State Store
# =============================================================================


class StateStore:
    """
    SQLite-backed progress persistence.

    Handles:
    - Fluency stage per fact (forward-only, idempotent advances)
    - Stage-entry events
    - Session history

    Args:
        database_url: SQLAlchemy URL (``sqlite://`` for an in-memory store)
        track_id: Track recorded for facts first written by advance_stage
    """

    DEFAULT_DATABASE_URL = "sqlite:///~/.fastfacts/progress.db"

    def __init__(self, database_url: str | None = None, track_id: str = "TRACK1"):
        self.database_url = database_url or self.DEFAULT_DATABASE_URL
        self.track_id = track_id
        self.engine, self.db_path = _build_engine(self.database_url)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False)
        self._init_schema()

        logger.info("StateStore initialized at {}", self.db_path or "memory")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    def _init_schema(self) -> None:
        with self.session_scope() as session:
            for statement in _SCHEMA:
                session.execute(text(statement))

    # =========================================================================
    # Fact Progress (ProgressReadPort / ProgressWritePort)
    # =========================================================================

    def get_current_status(self, user_id: str, track_id: str) -> dict[str, FluencyStage]:
        """
        Current stage of every stored fact on a track.

        Raises:
            InvariantViolation: If a stored label is not a known stage
        """
        with self.session_scope() as session:
            rows = session.execute(
                text(
                    "SELECT fact_id, status FROM fact_progress "
                    "WHERE user_id = :user_id AND track_id = :track_id"
                ),
                {"user_id": user_id, "track_id": track_id},
            ).all()
        return {row.fact_id: FluencyStage.parse(row.status) for row in rows}

    def get_fact(self, user_id: str, fact_id: str) -> FactProgress | None:
        with self.session_scope() as session:
            row = session.execute(
                text("SELECT * FROM fact_progress WHERE user_id = :user_id AND fact_id = :fact_id"),
                {"user_id": user_id, "fact_id": fact_id},
            ).mappings().first()
        if row is None:
            return None
        return FactProgress(
            user_id=row["user_id"],
            fact_id=row["fact_id"],
            track_id=row["track_id"],
            status=FluencyStage.parse(row["status"]),
            attempts=row["attempts"],
            correct=row["correct"],
            time_spent_ms=row["time_spent_ms"],
            updated_at=row["updated_at"],
        )

    def advance_stage(
        self,
        user_id: str,
        fact_id: str,
        new_status: FluencyStage,
        stats: FactStats | None = None,
    ) -> None:
        """
        Move a fact forward to ``new_status``.

        A request that is not a forward progression (including a replay of
        the same status) is a no-op, so retries are safe. Attempt totals
        are added only when the status actually changes.

        Raises:
            PersistenceWriteFailure: If the database write fails
        """
        new_status = FluencyStage.parse(new_status)
        stats = stats or FactStats()
        try:
            with self.session_scope() as session:
                row = session.execute(
                    text(
                        "SELECT status FROM fact_progress "
                        "WHERE user_id = :user_id AND fact_id = :fact_id"
                    ),
                    {"user_id": user_id, "fact_id": fact_id},
                ).first()

                if row is None:
                    session.execute(
                        text(
                            """
                            INSERT INTO fact_progress
                                (user_id, fact_id, track_id, status,
                                 attempts, correct, time_spent_ms, updated_at)
                            VALUES
                                (:user_id, :fact_id, :track_id, :status,
                                 :attempts, :correct, :time_spent_ms, :updated_at)
                            """
                        ),
                        {
                            "user_id": user_id,
                            "fact_id": fact_id,
                            "track_id": self.track_id,
                            "status": new_status.value,
                            "attempts": stats.attempts,
                            "correct": stats.correct,
                            "time_spent_ms": stats.time_spent_ms,
                            "updated_at": _now(),
                        },
                    )
                    logger.debug("Fact {} first stored at {}", fact_id, new_status.value)
                    return

                current = FluencyStage.parse(row.status)
                if not current.is_progression_to(new_status):
                    logger.debug(
                        "Ignoring advance of {} to {} (already {})",
                        fact_id,
                        new_status.value,
                        current.value,
                    )
                    return

                session.execute(
                    text(
                        """
                        UPDATE fact_progress SET
                            status = :status,
                            attempts = attempts + :attempts,
                            correct = correct + :correct,
                            time_spent_ms = time_spent_ms + :time_spent_ms,
                            updated_at = :updated_at
                        WHERE user_id = :user_id AND fact_id = :fact_id
                        """
                    ),
                    {
                        "user_id": user_id,
                        "fact_id": fact_id,
                        "status": new_status.value,
                        "attempts": stats.attempts,
                        "correct": stats.correct,
                        "time_spent_ms": stats.time_spent_ms,
                        "updated_at": _now(),
                    },
                )
        except SQLAlchemyError as e:
            raise PersistenceWriteFailure(f"Could not save {fact_id}: {e}") from e

        logger.info("Fact {} stored at {}", fact_id, new_status.value)

    def seed_facts(self, user_id: str, track_id: str, fact_ids: Iterable[str]) -> int:
        """
        Register facts as notStarted; existing progress is left untouched.

        Returns:
            Number of facts newly added
        """
        added = 0
        with self.session_scope() as session:
            for fact_id in fact_ids:
                result = session.execute(
                    text(
                        """
                        INSERT OR IGNORE INTO fact_progress
                            (user_id, fact_id, track_id, status, updated_at)
                        VALUES (:user_id, :fact_id, :track_id, :status, :updated_at)
                        """
                    ),
                    {
                        "user_id": user_id,
                        "fact_id": fact_id,
                        "track_id": track_id,
                        "status": FluencyStage.NOT_STARTED.value,
                        "updated_at": _now(),
                    },
                )
                added += result.rowcount
        logger.info("Seeded {} new facts on {} for {}", added, track_id, user_id)
        return added

    def count_by_stage(self, user_id: str, track_id: str) -> dict[FluencyStage, int]:
        """Number of facts in each stage (every stage present, zero if empty)."""
        counts = {stage: 0 for stage in FluencyStage}
        for stage in self.get_current_status(user_id, track_id).values():
            counts[stage] += 1
        return counts

    # =========================================================================
    # Session Activity (SessionActivityPort)
    # =========================================================================

    def record_stage_entry(
        self,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts_by_stage: FactsByStage | None = None,
    ) -> None:
        payload = None
        if facts_by_stage:
            payload = json.dumps(
                {FluencyStage.parse(k).value: list(v) for k, v in facts_by_stage.items()}
            )
        with self.session_scope() as session:
            session.execute(
                text(
                    """
                    INSERT INTO stage_events (user_id, track_id, stage, facts_by_stage, recorded_at)
                    VALUES (:user_id, :track_id, :stage, :facts_by_stage, :recorded_at)
                    """
                ),
                {
                    "user_id": user_id,
                    "track_id": track_id,
                    "stage": FluencyStage.parse(stage).value,
                    "facts_by_stage": payload,
                    "recorded_at": _now(),
                },
            )

    def get_stage_events(self, user_id: str, limit: int = 50) -> list[dict]:
        with self.session_scope() as session:
            rows = session.execute(
                text(
                    "SELECT * FROM stage_events WHERE user_id = :user_id "
                    "ORDER BY id DESC LIMIT :limit"
                ),
                {"user_id": user_id, "limit": limit},
            ).mappings().all()
        return [
            {
                **dict(row),
                "facts_by_stage": json.loads(row["facts_by_stage"]) if row["facts_by_stage"] else None,
            }
            for row in rows
        ]

    # =========================================================================
    # Session History
    # =========================================================================

    def start_session(self, user_id: str, track_id: str, stage: FluencyStage) -> int:
        """
        Start a new drill session.

        Returns:
            Session ID
        """
        with self.session_scope() as session:
            result = session.execute(
                text(
                    """
                    INSERT INTO session_history (user_id, track_id, stage, started_at)
                    VALUES (:user_id, :track_id, :stage, :started_at)
                    """
                ),
                {
                    "user_id": user_id,
                    "track_id": track_id,
                    "stage": FluencyStage.parse(stage).value,
                    "started_at": _now(),
                },
            )
            return result.lastrowid

    def end_session(
        self,
        session_id: int,
        attempts: int,
        accuracy: float,
        facts_advanced: int,
    ) -> None:
        """Close a drill session with summary stats."""
        with self.session_scope() as session:
            session.execute(
                text(
                    """
                    UPDATE session_history SET
                        ended_at = :ended_at,
                        attempts = :attempts,
                        accuracy = :accuracy,
                        facts_advanced = :facts_advanced
                    WHERE id = :id
                    """
                ),
                {
                    "id": session_id,
                    "ended_at": _now(),
                    "attempts": attempts,
                    "accuracy": accuracy,
                    "facts_advanced": facts_advanced,
                },
            )

    def get_session_history(self, user_id: str | None = None, limit: int = 30) -> list[SessionRecord]:
        """Get recent session history, newest first."""
        query = "SELECT * FROM session_history"
        params: dict = {"limit": limit}
        if user_id is not None:
            query += " WHERE user_id = :user_id"
            params["user_id"] = user_id
        query += " ORDER BY id DESC LIMIT :limit"

        with self.session_scope() as session:
            rows = session.execute(text(query), params).mappings().all()
        return [
            SessionRecord(
                id=row["id"],
                user_id=row["user_id"],
                track_id=row["track_id"],
                stage=row["stage"],
                started_at=row["started_at"],
                ended_at=row["ended_at"],
                attempts=row["attempts"] or 0,
                accuracy=row["accuracy"] or 0.0,
                facts_advanced=row["facts_advanced"] or 0,
            )
            for row in rows
        ]

    # =========================================================================
    # Stats & Maintenance
    # =========================================================================

    def get_stats(self, user_id: str | None = None) -> dict:
        """
        Get overall progress statistics.

        Returns:
            Dictionary with aggregate stats
        """
        where = " WHERE user_id = :user_id" if user_id is not None else ""
        params = {"user_id": user_id} if user_id is not None else {}

        with self.session_scope() as session:
            totals = session.execute(
                text(
                    "SELECT COUNT(*) AS facts, COALESCE(SUM(attempts), 0) AS attempts, "
                    f"COALESCE(SUM(correct), 0) AS correct FROM fact_progress{where}"
                ),
                params,
            ).one()
            by_status = session.execute(
                text(f"SELECT status, COUNT(*) AS cnt FROM fact_progress{where} GROUP BY status"),
                params,
            ).all()
            completed_where = f"{where} AND" if where else " WHERE"
            sessions = session.execute(
                text(
                    "SELECT COUNT(*) FROM session_history"
                    f"{completed_where} ended_at IS NOT NULL"
                ),
                params,
            ).scalar_one()
            events = session.execute(
                text(f"SELECT COUNT(*) FROM stage_events{where}"), params
            ).scalar_one()

        accuracy = totals.correct * 100.0 / totals.attempts if totals.attempts else 0.0
        return {
            "facts_tracked": totals.facts,
            "facts_by_stage": {row.status: row.cnt for row in by_status},
            "total_attempts": totals.attempts,
            "accuracy_percent": round(accuracy, 1),
            "sessions_completed": sessions,
            "stage_events": events,
        }

    def reset(self, user_id: str | None = None, backup: bool = True) -> int:
        """
        Delete progress (for testing or a fresh start).

        A JSON backup is written next to the database first when the store
        is file-backed.

        Args:
            user_id: Only reset this learner's data
            backup: Write a backup before deleting

        Returns:
            Number of fact records deleted
        """
        where = " WHERE user_id = :user_id" if user_id is not None else ""
        params = {"user_id": user_id} if user_id is not None else {}

        with self.session_scope() as session:
            if backup and self.db_path is not None:
                snapshot = {
                    table: [
                        dict(row)
                        for row in session.execute(
                            text(f"SELECT * FROM {table}{where}"), params
                        ).mappings()
                    ]
                    for table in _TABLES
                }
                self._write_backup(user_id, snapshot)

            deleted = session.execute(text(f"DELETE FROM fact_progress{where}"), params).rowcount
            session.execute(text(f"DELETE FROM stage_events{where}"), params)
            session.execute(text(f"DELETE FROM session_history{where}"), params)

        logger.warning("Reset complete: {} fact records deleted", deleted)
        return deleted

    def _write_backup(self, user_id: str | None, snapshot: dict) -> Path:
        backup_dir = self.db_path.parent / "backups"
        backup_dir.mkdir(exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_file = backup_dir / f"progress_backup_{timestamp}.json"
        with open(backup_file, "w", encoding="utf-8") as f:
            json.dump({"timestamp": timestamp, "user_id": user_id, **snapshot}, f, indent=2)
        logger.info("Backup saved: {}", backup_file)
        return backup_file

    def list_backups(self) -> list[Path]:
        """List available backup files, newest first."""
        if self.db_path is None:
            return []
        backup_dir = self.db_path.parent / "backups"
        if not backup_dir.exists():
            return []
        return sorted(backup_dir.glob("progress_backup_*.json"), reverse=True)

    def close(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
