"""
Drill Session.

One learner, one stage, one set of facts. The session owns every piece
of ephemeral state (scores, queue, timer, tallies) and exposes the
surface a front-end needs:

    current_item / current_zone / scores      read-only observables
    submit_answer(raw) / advance_to_next()    mutating entry points
    tick()                                    timer polling

Stage advances are handed to the progress outbox and never awaited, so
a slow or failing backend cannot stall play.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from loguru import logger

from fastfacts.core.errors import InvariantViolation
from fastfacts.core.stages import FluencyStage
from fastfacts.progress.activity import SessionActivityRecorder
from fastfacts.progress.outbox import SAVE_FAILED_NOTICE, OutboxEntry, OutboxStatus, ProgressOutbox
from fastfacts.progress.ports import ProgressReadPort

from .facts import Fact, PracticeItem, generate_permutations
from .queue import SessionQueue
from .scoring import MasteryScorer, ScoringConfig, parse_answer, scoring_config_for
from .telemetry import SessionTelemetry
from .timer import DEFAULT_ACCURACY_WINDOW, Clock, ResponseTimer, TimerZone, timer_config_for
from .transitions import StageAdvance, StageTransitionController


@dataclass(frozen=True)
class AttemptResult:
    """What the front-end shows after an answer or a timeout."""

    item: PracticeItem
    answer: int | None
    is_correct: bool
    creditable: bool
    zone: TimerZone
    old_score: int
    new_score: int
    mastered: bool
    advance: StageAdvance | None = None

    @property
    def expected(self) -> int:
        return self.item.result

    @property
    def timed_out(self) -> bool:
        return self.zone is TimerZone.EXPIRED


@dataclass
class SessionSummary:
    """Handed to the navigation collaborator when the session completes."""

    stage: FluencyStage
    items: int
    mastered_items: int
    rounds: int
    advances: list[StageAdvance] = field(default_factory=list)
    stats: dict = field(default_factory=dict)
    struggling: list[str] = field(default_factory=list)


def eligible_stages(stage: FluencyStage) -> frozenset[FluencyStage]:
    """Stored stages whose facts join a drill of ``stage``."""
    if stage is FluencyStage.LEARNING:
        return frozenset({FluencyStage.NOT_STARTED, FluencyStage.LEARNING})
    return frozenset({stage})


class DrillSession:
    """
    A single practice session.

    Args:
        user_id: Learner the progress belongs to
        track_id: Track the facts come from
        stage: Drill stage (decides timer and scoring rules)
        facts: Facts to practice
        current_stages: Stored stage per fact (defaults to ``stage``)
        outbox: Receives stage advances; None keeps them local
        scoring: Override the stage's scoring rules
        accuracy_window: Answer window for accuracy practice
        clock: Monotonic clock for the response timer
        rng: Random source for item order
        on_complete: Called once with the SessionSummary
    """

    def __init__(
        self,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts: Sequence[Fact],
        current_stages: Mapping[str, FluencyStage] | None = None,
        outbox: ProgressOutbox | None = None,
        scoring: ScoringConfig | None = None,
        accuracy_window: float = DEFAULT_ACCURACY_WINDOW,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        on_complete: Callable[[SessionSummary], None] | None = None,
    ):
        stage = FluencyStage.parse(stage)
        if not stage.is_drillable:
            raise InvariantViolation(f"Cannot drill facts in stage {stage.value}")

        self.user_id = user_id
        self.track_id = track_id
        self.stage = stage
        self.facts: dict[str, Fact] = {fact.fact_id: fact for fact in facts}
        if len(self.facts) != len(facts):
            raise InvariantViolation("Fact ids must be unique within a session")

        stages = {fact_id: stage for fact_id in self.facts}
        stages.update({k: FluencyStage.parse(v) for k, v in (current_stages or {}).items()})

        items = generate_permutations(self.facts.values())
        self.items: dict[str, PracticeItem] = {item.id: item for item in items}
        self.accuracy_window = accuracy_window
        self.outbox = outbox
        self.on_complete = on_complete

        self.scorer = MasteryScorer(self.items, scoring or scoring_config_for(stage))
        self.queue = SessionQueue(items, self.scorer.score, self.scorer.threshold, rng=rng)
        self.timer = ResponseTimer(clock)
        self.telemetry = SessionTelemetry()
        self.transitions = StageTransitionController(
            items=self.items,
            current_stages=stages,
            score_of=self.scorer.score,
            threshold=self.scorer.threshold,
            sink=self._request_advance,
        )

        self._live: PracticeItem | None = None
        self._last_result: AttemptResult | None = None
        self._outbox_entries: list[OutboxEntry] = []
        self._completed = False
        self._closed = False

        logger.info(
            "Drill session for {} ({}): {} facts, {} items, threshold {}",
            user_id,
            stage.value,
            len(self.facts),
            len(self.items),
            self.scorer.threshold,
        )

    @classmethod
    def start(
        cls,
        read_port: ProgressReadPort,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts: Iterable[Fact],
        activity: SessionActivityRecorder | None = None,
        **kwargs,
    ) -> DrillSession:
        """
        Seed a session from stored progress.

        Only facts whose stored stage matches the drill (notStarted facts
        also join timed practice) are included. Records one stage-entry
        event for the session.
        """
        stage = FluencyStage.parse(stage)
        stored = read_port.get_current_status(user_id, track_id)
        allowed = eligible_stages(stage)
        chosen = [
            fact
            for fact in facts
            if stored.get(fact.fact_id, FluencyStage.NOT_STARTED) in allowed
        ]
        current = {
            fact.fact_id: stored.get(fact.fact_id, FluencyStage.NOT_STARTED) for fact in chosen
        }
        logger.debug("{} of the track's facts are eligible for {}", len(chosen), stage.value)

        if activity is not None:
            activity.record_stage_entry(
                user_id, track_id, stage, {stage: [fact.fact_id for fact in chosen]}
            )
        return cls(user_id, track_id, stage, chosen, current_stages=current, **kwargs)

    # =========================================================================
    # Observables
    # =========================================================================

    @property
    def current_item(self) -> PracticeItem | None:
        """Item awaiting an answer, if any."""
        return self._live

    @property
    def current_zone(self) -> TimerZone | None:
        if self._live is None or self.timer.config is None:
            return None
        return self.timer.zone()

    @property
    def scores(self) -> Mapping[str, int]:
        return self.scorer.scores

    @property
    def last_result(self) -> AttemptResult | None:
        return self._last_result

    @property
    def is_complete(self) -> bool:
        return self._completed

    @property
    def advances(self) -> list[StageAdvance]:
        return list(self.transitions.advances)

    @property
    def notices(self) -> list[str]:
        """Non-blocking messages for the learner (failed saves)."""
        failed = [e for e in self._outbox_entries if e.status is OutboxStatus.FAILED]
        return [SAVE_FAILED_NOTICE] if failed else []

    def save_status(self, fact_id: str) -> OutboxStatus | None:
        """Delivery status of the fact's stage advance from this session."""
        for entry in reversed(self._outbox_entries):
            if entry.fact_id == fact_id:
                return entry.status
        return None

    # =========================================================================
    # Entry points
    # =========================================================================

    def advance_to_next(self) -> PracticeItem | None:
        """
        Present the next item, or complete the session.

        Advancing past an unanswered item scores it as a timeout.
        """
        self._ensure_open()
        if self._live is not None:
            logger.debug("Advancing past unanswered item {}", self._live.id)
            self._score(self._live, None, False, TimerZone.EXPIRED, self.timer.cancel())

        item = self.queue.next_item()
        if item is None:
            self.timer.cancel()
            self._complete()
            return None

        self._live = item
        self._last_result = None
        self.timer.start(
            timer_config_for(self.stage, self.scorer.score(item.id), self.accuracy_window)
        )
        return item

    def submit_answer(self, raw_input: str | int | None) -> AttemptResult | None:
        """
        Score the learner's answer to the live item.

        Empty or non-numeric input counts as incorrect. Returns None when
        there is no live item (already answered or timed out).
        """
        self._ensure_open()
        item = self._live
        if item is None:
            logger.debug("Ignoring answer with no live item")
            return None

        elapsed = self.timer.cancel()
        zone = self.timer.config.classify(elapsed)
        answer = parse_answer(raw_input)
        is_correct = answer is not None and answer == item.result
        return self._score(item, answer, is_correct, zone, elapsed)

    def tick(self) -> TimerZone | None:
        """
        Poll the response timer.

        When the window closes with no answer, the item is scored as an
        incorrect, expired attempt.
        """
        if self._closed or self._live is None:
            return None
        zone = self.timer.tick()
        if zone is TimerZone.EXPIRED:
            self._score(self._live, None, False, TimerZone.EXPIRED, self.timer.config.duration)
        return zone

    def close(self) -> None:
        """Leave the session: stop the timer and discard scores."""
        if self._closed:
            return
        self.timer.cancel()
        self._live = None
        self.scorer.clear()
        self._closed = True
        logger.info("Drill session closed ({} attempts)", self.telemetry.total_attempts)

    def summary(self) -> SessionSummary:
        return SessionSummary(
            stage=self.stage,
            items=len(self.items),
            mastered_items=len(self.queue.mastered),
            rounds=self.queue.rounds,
            advances=self.advances,
            stats=self.telemetry.get_stats(),
            struggling=self.telemetry.get_struggling_items(),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvariantViolation("Drill session is closed")

    def _score(
        self,
        item: PracticeItem,
        answer: int | None,
        is_correct: bool,
        zone: TimerZone,
        elapsed: float,
    ) -> AttemptResult:
        outcome = self.scorer.record_attempt(item.id, is_correct, zone)
        self.telemetry.record(
            item,
            is_correct=is_correct,
            creditable=outcome.creditable,
            zone=zone,
            response_ms=int(elapsed * 1000),
            new_score=outcome.new_score,
        )
        self._live = None
        self.queue.record_result(item, outcome.creditable, outcome.reached_threshold)

        advance = self.transitions.on_score_change(
            self.facts[item.fact_id], item.id, outcome.new_score, outcome.old_score
        )
        result = AttemptResult(
            item=item,
            answer=answer,
            is_correct=is_correct,
            creditable=outcome.creditable,
            zone=zone,
            old_score=outcome.old_score,
            new_score=outcome.new_score,
            mastered=item.id in self.queue.mastered,
            advance=advance,
        )
        self._last_result = result
        logger.debug(
            "{} answered {} ({}, {}): score {} -> {}",
            item.prompt,
            answer,
            "correct" if is_correct else "incorrect",
            zone.value,
            outcome.old_score,
            outcome.new_score,
        )
        return result

    def _request_advance(self, advance: StageAdvance) -> None:
        if self.outbox is None:
            return
        entry = self.outbox.enqueue(
            self.user_id,
            advance.fact_id,
            advance.to_stage,
            stats=self.telemetry.fact_stats(advance.fact_id),
        )
        self._outbox_entries.append(entry)

    def _complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        summary = self.summary()
        logger.info(
            "Session complete: {} items mastered in {} rounds, {} facts advanced",
            summary.mastered_items,
            summary.rounds,
            len(summary.advances),
        )
        if self.on_complete is not None:
            self.on_complete(summary)
