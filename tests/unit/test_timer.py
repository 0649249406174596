"""Tests for the response timer and zone classifier."""

import pytest

from fastfacts.core.errors import InvariantViolation
from fastfacts.core.stages import FluencyStage
from fastfacts.drill.timer import (
    ResponseTimer,
    TimerConfig,
    TimerState,
    TimerZone,
    timed_practice_duration,
    timer_config_for,
)


class TestClassify:
    @pytest.mark.parametrize(
        "elapsed,zone",
        [
            (0.0, TimerZone.GREEN),
            (1.99, TimerZone.GREEN),
            (2.0, TimerZone.YELLOW),
            (5.99, TimerZone.YELLOW),
            (6.0, TimerZone.EXPIRED),
            (6.2, TimerZone.EXPIRED),
        ],
    )
    def test_zone_boundaries(self, elapsed, zone):
        assert TimerConfig(duration=6.0, green_until=2.0).classify(elapsed) is zone

    def test_all_green_window_has_no_yellow(self):
        config = TimerConfig(duration=12.0, green_until=12.0)

        assert not config.has_yellow_zone
        assert config.classify(11.9) is TimerZone.GREEN
        assert config.classify(12.0) is TimerZone.EXPIRED

    def test_invalid_config(self):
        with pytest.raises(InvariantViolation):
            TimerConfig(duration=0, green_until=0)
        with pytest.raises(InvariantViolation):
            TimerConfig(duration=3.0, green_until=4.0)


class TestStageTimers:
    def test_timed_practice_window_shrinks_with_score(self):
        assert timed_practice_duration(-4) == 6.0
        assert timed_practice_duration(0) == 6.0
        assert timed_practice_duration(1) == 4.5
        assert timed_practice_duration(2) == 3.0

    def test_learning_green_is_first_third(self):
        config = timer_config_for(FluencyStage.LEARNING, score=0)

        assert config.duration == 6.0
        assert config.green_until == pytest.approx(2.0)

    def test_accuracy_practice_single_window(self):
        config = timer_config_for(FluencyStage.ACCURACY_PRACTICE, score=1, accuracy_window=12.0)

        assert config == TimerConfig(duration=12.0, green_until=12.0)

    def test_fluency_stage_green_is_target_time(self):
        config = timer_config_for(FluencyStage.FLUENCY_3, score=0)

        assert config.green_until == 3.0
        assert config.duration == 9.0

    def test_no_timer_for_mastered(self):
        with pytest.raises(InvariantViolation):
            timer_config_for(FluencyStage.MASTERED, score=0)


class TestResponseTimer:
    def test_tick_reports_zones_then_expires_once(self, clock):
        timer = ResponseTimer(clock)
        timer.start(TimerConfig(duration=6.0, green_until=2.0))

        assert timer.tick() is TimerZone.GREEN
        clock.advance(3.0)
        assert timer.tick() is TimerZone.YELLOW
        clock.advance(3.0)
        assert timer.tick() is TimerZone.EXPIRED
        assert timer.state is TimerState.EXPIRED
        assert timer.tick() is None

    def test_cancel_returns_elapsed(self, clock):
        timer = ResponseTimer(clock)
        timer.start(TimerConfig(duration=6.0, green_until=2.0))
        clock.advance(1.5)

        assert timer.cancel() == pytest.approx(1.5)
        assert not timer.is_running
        assert timer.tick() is None

    def test_start_replaces_running_countdown(self, clock):
        timer = ResponseTimer(clock)
        timer.start(TimerConfig(duration=6.0, green_until=2.0))
        clock.advance(5.0)
        timer.start(TimerConfig(duration=3.0, green_until=1.0))

        assert timer.elapsed() == 0.0
        assert timer.zone() is TimerZone.GREEN

    def test_zone_before_start_raises(self, clock):
        with pytest.raises(InvariantViolation):
            ResponseTimer(clock).zone()
