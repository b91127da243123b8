"""Spaced-repetition scheduling for notes, folders and questions."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from conspecto.study.errors import InvalidQualityError, ValidationError


DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MIN_QUALITY = 0
MAX_QUALITY = 5

# UI feedback buttons (forgot, hard, good, easy) mapped to SM-2 quality.
FEEDBACK_TO_QUALITY = {1: 0, 2: 2, 3: 4, 4: 5}


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Tuning parameters for the SM-2 scheduler."""

    passing_quality: int = 3
    failed_interval_days: int = 1
    first_interval_days: int = 1
    second_interval_days: int = 6
    min_ease_factor: float = MIN_EASE_FACTOR
    max_interval_days: Optional[int] = None
    slow_answer_threshold_ms: int = 15_000
    slow_answer_penalty_per_ms: float = 0.0001
    max_slow_answer_penalty: float = 1.5

    def __post_init__(self) -> None:
        if not MIN_QUALITY < self.passing_quality <= MAX_QUALITY:
            raise ValidationError("passing_quality must be between 1 and 5.")
        if self.min_ease_factor <= 0:
            raise ValidationError("min_ease_factor must be positive.")
        if self.max_interval_days is not None and self.max_interval_days < 1:
            raise ValidationError("max_interval_days must be a positive number of days.")


DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()


@dataclass(frozen=True, slots=True)
class ReviewHistoryItem:
    """One self-rated review."""

    date: datetime
    quality: int

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "quality": self.quality}

    @classmethod
    def from_dict(cls, payload: dict) -> ReviewHistoryItem:
        return cls(date=datetime.fromisoformat(payload["date"]), quality=int(payload["quality"]))


@dataclass(frozen=True, slots=True)
class SchedulingState:
    """Scheduling fields shared by notes, folders and questions."""

    repetition: int = 0
    interval: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    next_review: Optional[datetime] = None
    last_review: Optional[datetime] = None
    history: tuple[ReviewHistoryItem, ...] = field(default_factory=tuple)

    def is_due(self, now: datetime) -> bool:
        return self.next_review is None or self.next_review <= now


def validate_quality(quality: object) -> int:
    """Return ``quality`` unchanged when it is an integer in 0..5."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQualityError(quality)
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise InvalidQualityError(quality)
    return quality


def _next_ease_factor(ease_factor: float, quality: int, config: SchedulerConfig) -> float:
    penalty = MAX_QUALITY - quality
    updated = ease_factor + (0.1 - penalty * (0.08 + penalty * 0.02))
    return max(config.min_ease_factor, updated)


def schedule_review(
    state: SchedulingState,
    quality: int,
    now: datetime,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> SchedulingState:
    """Return the scheduling state after a review rated ``quality`` at ``now``.

    The input state is never modified. Failing recalls reset the repetition
    count, passing recalls follow the SM-2 interval ladder, and the ease factor
    is adjusted on every review without dropping below the configured floor.
    """
    quality = validate_quality(quality)

    repetition = max(0, state.repetition)
    interval = max(0, state.interval)
    ease_factor = state.ease_factor or DEFAULT_EASE_FACTOR

    if quality < config.passing_quality:
        repetition = 0
        interval = config.failed_interval_days
    else:
        repetition += 1
        if repetition == 1:
            interval = config.first_interval_days
        elif repetition == 2:
            interval = config.second_interval_days
        else:
            interval = max(1, math.floor(interval * ease_factor + 0.5))

    if config.max_interval_days is not None and interval > config.max_interval_days:
        interval = config.max_interval_days

    return SchedulingState(
        repetition=repetition,
        interval=interval,
        ease_factor=_next_ease_factor(ease_factor, quality, config),
        next_review=now + timedelta(days=interval),
        last_review=now,
        history=state.history + (ReviewHistoryItem(date=now, quality=quality),),
    )


def feedback_to_quality(
    feedback: int,
    time_spent_ms: Optional[int] = None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> int:
    """Translate a 1..4 feedback button into an SM-2 quality.

    Correct answers that took longer than the configured threshold lose up to
    ``max_slow_answer_penalty`` quality points.
    """
    if isinstance(feedback, bool) or feedback not in FEEDBACK_TO_QUALITY:
        raise ValidationError(f"Feedback must be one of 1, 2, 3 or 4, got {feedback!r}.")

    quality = FEEDBACK_TO_QUALITY[feedback]
    if quality < config.passing_quality or not time_spent_ms:
        return quality

    excess = time_spent_ms - config.slow_answer_threshold_ms
    if excess <= 0:
        return quality

    penalty = min(config.max_slow_answer_penalty, excess * config.slow_answer_penalty_per_ms)
    return max(MIN_QUALITY, math.floor(quality - penalty))


def history_to_json(history: Sequence[ReviewHistoryItem]) -> list[dict]:
    return [item.to_dict() for item in history]


def history_from_json(payload: Optional[Sequence[dict]]) -> tuple[ReviewHistoryItem, ...]:
    return tuple(ReviewHistoryItem.from_dict(item) for item in payload or ())
