"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fastfacts.drill.facts import Fact, Operation  # noqa: E402
from fastfacts.progress.state_store import StateStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def fact_3_plus_4():
    return Fact("F1", Operation.ADDITION, 3, 4, 7)


@pytest.fixture
def fact_7_minus_2():
    return Fact("F2", Operation.SUBTRACTION, 7, 2, 5)


@pytest.fixture
def store():
    """In-memory progress store."""
    store = StateStore("sqlite://", track_id="TRACK1")
    yield store
    store.close()


@pytest.fixture
def sample_fact_records():
    """Fact records as exported by the content team."""
    return [
        {"fact_id": "F1", "operation": "addition", "operand1": 3, "operand2": 4, "result": 7},
        {"PK": "FACT#F2", "operation": "subtraction", "operand1": 7, "operand2": 2, "result": 5},
        {"factId": "F3", "operation": "multiplication", "operand1": 6, "operand2": 6, "result": 36},
    ]
