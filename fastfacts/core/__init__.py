"""
Core Module - Shared domain types.

Components:
- stages: FluencyStage pipeline with table-driven next_stage
- errors: FluencyError hierarchy

All drill and progress modules import stages and errors from here.
"""

from fastfacts.core.errors import FluencyError, InvariantViolation, PersistenceWriteFailure
from fastfacts.core.stages import DRILL_STAGES, FluencyStage

__all__ = [
    "DRILL_STAGES",
    "FluencyError",
    "FluencyStage",
    "InvariantViolation",
    "PersistenceWriteFailure",
]
