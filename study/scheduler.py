"""SM-2 spaced repetition scheduler for the review queue."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class ReviewSchedule:
    interval: int
    ease_factor: float
    repetitions: int
    next_review: datetime


def sm2_update(
    quality: int,
    repetitions: int,
    interval: int,
    ease_factor: float,
    now: datetime,
) -> ReviewSchedule:
    """
    SM-2 style update for one review rating.

    Args:
        quality:      User rating 0-5 (0=blackout, 5=perfect)
        repetitions:  Successful reviews in a row so far
        interval:     Current interval in days
        ease_factor:  Current ease factor (>= 1.3)
        now:          Time of the review

    Returns:
        ReviewSchedule with the new interval, ease, repetitions and due time.
        A failed review (quality < 3) resets repetitions and interval but
        leaves the ease factor as it was.
    """
    if not (0 <= quality <= 5):
        raise ValueError(f"Quality must be 0-5, got {quality}")

    if quality >= 3:
        if repetitions == 0:
            new_interval = 1
        elif repetitions == 1:
            new_interval = 6
        else:
            new_interval = round(interval * ease_factor)

        new_reps = repetitions + 1

        # EF' = EF + (0.1 - (5-q) * (0.08 + (5-q) * 0.02))
        new_ease = ease_factor + 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        new_ease = max(1.3, new_ease)
    else:
        new_interval = 1
        new_reps = 0
        new_ease = ease_factor

    return ReviewSchedule(
        interval=new_interval,
        ease_factor=new_ease,
        repetitions=new_reps,
        next_review=now + timedelta(days=new_interval),
    )
