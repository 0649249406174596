"""
Drill Module - The in-session fluency engine.

Components:
- facts: Facts, practice items and permutation generation
- timer: Response timer and green/yellow/expired zones
- scoring: Clamped per-item mastery scores
- transitions: Edge-triggered stage advances
- queue: Random, retry-until-mastered item scheduling
- telemetry: Per-direction attempt tallies
- session: DrillSession, the presentation boundary
- deck: Fact decks from JSON or built-in tables
"""

from fastfacts.drill.deck import FactDeck, build_track
from fastfacts.drill.facts import (
    Fact,
    Operation,
    PracticeItem,
    generate_permutations,
    is_commutative,
    sibling_id,
)
from fastfacts.drill.queue import SessionQueue
from fastfacts.drill.scoring import MasteryScorer, ScoringConfig, scoring_config_for
from fastfacts.drill.session import AttemptResult, DrillSession, SessionSummary
from fastfacts.drill.telemetry import SessionTelemetry
from fastfacts.drill.timer import ResponseTimer, TimerConfig, TimerZone, timer_config_for
from fastfacts.drill.transitions import StageAdvance, StageTransitionController

__all__ = [
    "AttemptResult",
    "DrillSession",
    "Fact",
    "FactDeck",
    "MasteryScorer",
    "Operation",
    "PracticeItem",
    "ResponseTimer",
    "ScoringConfig",
    "SessionQueue",
    "SessionSummary",
    "SessionTelemetry",
    "StageAdvance",
    "StageTransitionController",
    "TimerConfig",
    "TimerZone",
    "build_track",
    "generate_permutations",
    "is_commutative",
    "scoring_config_for",
    "sibling_id",
    "timer_config_for",
]
