"""
SM-2 Spaced Repetition Scheduler.

Implements an SM-2 style ease/interval algorithm on a four-point scale:

FAIL - not recalled; the card lapses and is relearned
HARD - recalled with significant difficulty; ease shrinks
GOOD - recalled; ease unchanged
EASY - recalled effortlessly; ease grows and the interval gets a bonus

The scheduler is a pure function of (state, grade, reviewed_at). It never
reads the clock and never touches storage.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from .clock import to_utc
from .errors import InvalidInputError
from .models import Grade, SchedulingState

if TYPE_CHECKING:
    from .config import Settings

# Absolute floor for the ease factor; configuration may raise it but never lower it.
EASE_FLOOR = 1.3


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class SchedulerConfig:
    """Tunable constants for the SM-2 algorithm."""

    initial_ease: float = 2.5
    minimum_ease: float = EASE_FLOOR
    maximum_ease: float = 3.0
    first_interval_days: int = 1  # Days after the first successful review
    relearning_interval_days: int = 1  # Days after a lapse
    maximum_interval_days: int = 3650
    hard_ease_delta: float = -0.15
    good_ease_delta: float = 0.0
    easy_ease_delta: float = 0.15
    fail_ease_penalty: float = 0.20
    easy_bonus: float = 1.3

    def __post_init__(self) -> None:
        if self.minimum_ease < EASE_FLOOR:
            raise ValueError(f"minimum_ease must be >= {EASE_FLOOR}")
        if not self.minimum_ease <= self.initial_ease <= self.maximum_ease:
            raise ValueError("initial_ease must lie within [minimum_ease, maximum_ease]")
        if self.first_interval_days < 1:
            raise ValueError("first_interval_days must be >= 1")
        if not 0 <= self.relearning_interval_days <= self.first_interval_days:
            raise ValueError("relearning_interval_days must be between 0 and first_interval_days")
        if self.maximum_interval_days < self.first_interval_days:
            raise ValueError("maximum_interval_days must be >= first_interval_days")
        if self.fail_ease_penalty < 0:
            raise ValueError("fail_ease_penalty must be >= 0")
        if self.easy_bonus < 1.0:
            raise ValueError("easy_bonus must be >= 1.0")

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerConfig:
        return cls(
            initial_ease=settings.initial_ease,
            minimum_ease=settings.minimum_ease,
            maximum_ease=settings.maximum_ease,
            first_interval_days=settings.first_interval_days,
            relearning_interval_days=settings.relearning_interval_days,
            maximum_interval_days=settings.maximum_interval_days,
            hard_ease_delta=settings.hard_ease_delta,
            good_ease_delta=settings.good_ease_delta,
            easy_ease_delta=settings.easy_ease_delta,
            fail_ease_penalty=settings.fail_ease_penalty,
            easy_bonus=settings.easy_bonus,
        )


class ScheduleResult(NamedTuple):
    """New state plus the interval to record in the review log."""

    state: SchedulingState
    interval: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =============================================================================
# SM-2 Algorithm
# =============================================================================


class SM2Scheduler:
    """
    Computes the next scheduling state for a card.

    Each card tracks:
    - Ease factor: interval multiplier (starts at initial_ease, floor 1.3)
    - Interval: whole days until the next review
    - Repetitions: consecutive passing reviews
    - Lapses: total failed reviews
    """

    def __init__(self, config: SchedulerConfig | None = None):
        self.config = config or SchedulerConfig()

    def initial_state(self, created_at: datetime) -> SchedulingState:
        """State of a brand-new card: due immediately."""
        return SchedulingState(
            ease_factor=self.config.initial_ease,
            interval_days=0,
            repetitions=0,
            due_at=to_utc(created_at),
            lapses=0,
            last_reviewed_at=None,
        )

    def schedule(
        self,
        state: SchedulingState,
        grade: Grade | int | str,
        reviewed_at: datetime,
    ) -> ScheduleResult:
        """
        Calculate the state after a review.

        Args:
            state: Current scheduling state of the card
            grade: Review grade (FAIL, HARD, GOOD, EASY)
            reviewed_at: Instant of the review

        Returns:
            ScheduleResult with the new state and the resulting interval

        Raises:
            InvalidInputError: bad grade, or a review that predates the
                card's last review (or its creation, if never reviewed)
        """
        grade = Grade.parse(grade)
        reviewed_at = to_utc(reviewed_at)

        baseline = state.last_reviewed_at
        if baseline is None and state.repetitions == 0 and state.lapses == 0:
            # Never reviewed: due_at is still the creation instant
            baseline = state.due_at
        if baseline is not None and reviewed_at < baseline:
            raise InvalidInputError(
                f"Review at {reviewed_at.isoformat()} predates baseline {baseline.isoformat()}"
            )

        cfg = self.config
        if grade is Grade.FAIL:
            ease = max(cfg.minimum_ease, state.ease_factor - cfg.fail_ease_penalty)
            new_state = replace(
                state,
                ease_factor=round(ease, 4),
                interval_days=cfg.relearning_interval_days,
                repetitions=0,
                lapses=state.lapses + 1,
            )
        else:
            ease = self._adjust_ease(state.ease_factor, grade)
            new_state = replace(
                state,
                ease_factor=ease,
                interval_days=self._next_interval(state, grade, ease),
                repetitions=state.repetitions + 1,
            )

        new_state = replace(
            new_state,
            due_at=reviewed_at + timedelta(days=new_state.interval_days),
            last_reviewed_at=reviewed_at,
        )

        logger.debug(
            f"Scheduled grade={grade.name}: ease {state.ease_factor} -> {new_state.ease_factor}, "
            f"interval {state.interval_days}d -> {new_state.interval_days}d"
        )
        return ScheduleResult(new_state, new_state.interval_days)

    def _adjust_ease(self, ease: float, grade: Grade) -> float:
        cfg = self.config
        delta = {
            Grade.HARD: cfg.hard_ease_delta,
            Grade.GOOD: cfg.good_ease_delta,
            Grade.EASY: cfg.easy_ease_delta,
        }[grade]
        clamped = min(cfg.maximum_ease, max(cfg.minimum_ease, ease + delta))
        return round(clamped, 4)

    def _next_interval(self, state: SchedulingState, grade: Grade, ease: float) -> int:
        cfg = self.config
        if state.repetitions == 0:
            interval = cfg.first_interval_days
        else:
            factor = ease * (cfg.easy_bonus if grade is Grade.EASY else 1.0)
            # Always move forward by at least one day
            interval = max(state.interval_days + 1, _round_half_up(state.interval_days * factor))
        return min(interval, cfg.maximum_interval_days)
