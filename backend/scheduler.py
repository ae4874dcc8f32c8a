"""Two-button spaced repetition schedule.

A simplified member of the SM-2 family: the user only answers ``easy`` or
``hard``. Easy multiplies the interval by the card's easiness factor and
nudges the factor up; hard resets the interval to one day and pulls the factor
down. The factor always stays inside [1.3, 3.0].
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from errors import ConflictError
from models import EASY, RESPONSES, utcnow
from validation import (
    MAX_EASE,
    MAX_INTERVAL_DAYS,
    MIN_EASE,
    validate_choice,
    validate_easiness_factor,
    validate_interval_days,
    validate_repetition_count,
)

EASE_STEP_UP = 0.1
EASE_STEP_DOWN = 0.2
MIN_INTERVAL_DAYS = 1


@dataclass(frozen=True)
class ReviewOutcome:
    easiness_factor: float
    interval_days: int
    next_review_date: datetime
    repetition_count: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def schedule_review(
    easiness_factor: float,
    interval_days: int,
    repetition_count: int,
    response: str,
    now: Optional[datetime] = None,
) -> ReviewOutcome:
    validate_choice(response, "response", RESPONSES)
    ease = validate_easiness_factor(easiness_factor)
    interval = validate_interval_days(interval_days)
    reps = validate_repetition_count(repetition_count)
    now = now or utcnow()

    if response == EASY:
        new_interval = max(MIN_INTERVAL_DAYS, round_half_up(interval * ease))
        new_ease = min(MAX_EASE, ease + EASE_STEP_UP)
    else:
        new_interval = MIN_INTERVAL_DAYS
        new_ease = max(MIN_EASE, ease - EASE_STEP_DOWN)

    if new_interval > MAX_INTERVAL_DAYS:
        raise ConflictError(
            f"Next interval of {new_interval} days exceeds the {MAX_INTERVAL_DAYS} day limit",
            "INTERVAL_LIMIT_EXCEEDED",
        )
    try:
        next_review_date = now + timedelta(days=new_interval)
    except OverflowError:
        raise ConflictError("Next review date is out of range", "INTERVAL_LIMIT_EXCEEDED") from None

    return ReviewOutcome(
        easiness_factor=new_ease,
        interval_days=new_interval,
        next_review_date=next_review_date,
        repetition_count=reps + 1,
    )


def is_due(next_review_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if next_review_date is None:
        return True
    return next_review_date <= (now or utcnow())
