"""XP, streak and mastery rules for graded practice attempts."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

MASTERY_WINDOW = 20
STREAK_WINDOW_HOURS = 24
SPEED_BONUS_MS = 10_000

BASE_XP = {'easy': 10, 'medium': 15, 'hard': 20}
DIFFICULTY_WEIGHT = {'hard': 1.5, 'medium': 1.0, 'easy': 0.7}


@dataclass
class AttemptOutcome:
    xp_earned: int
    new_streak: int
    mastery: int


@dataclass
class ScoredAttempt:
    """The parts of an attempt mastery cares about."""
    correct: bool
    difficulty: str
    score: Optional[float] = None


def calculate_xp(
    correct: bool,
    difficulty: str,
    streak: int,
    time_ms: Optional[int] = None,
) -> int:
    """
    XP for one graded attempt.

    Incorrect answers earn nothing. Correct ones earn 10 (easy or unknown),
    15 (medium) or 20 (hard), plus 2 per streak level capped at 20, plus 5
    for answering in under ten seconds.
    """
    if not correct:
        return 0

    xp = BASE_XP.get(difficulty, BASE_XP['easy'])
    xp += min(streak * 2, 20)
    if time_ms and time_ms < SPEED_BONUS_MS:
        xp += 5
    return xp


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def hours_since(last_active_at: Optional[datetime], now: datetime) -> float:
    if last_active_at is None:
        return math.inf
    delta = _naive_utc(now) - _naive_utc(last_active_at)
    return delta.total_seconds() / 3600


def next_streak(
    previous_streak: int,
    last_active_at: Optional[datetime],
    correct: bool,
    now: datetime,
) -> int:
    """A correct answer within 24h of the last activity extends the streak."""
    if not correct:
        return 0
    if hours_since(last_active_at, now) <= STREAK_WINDOW_HOURS:
        return previous_streak + 1
    return 1


def compute_mastery(attempts: Sequence[ScoredAttempt]) -> int:
    """
    Mastery 0-100 from attempts ordered newest first.

    Only the first MASTERY_WINDOW attempts count. Each one is weighted by
    recency (1 / (1 + 0.1 * i)) and difficulty (hard 1.5, medium 1.0,
    easy 0.7); correct attempts contribute their score (default 1).
    """
    recent = list(attempts)[:MASTERY_WINDOW]
    if not recent:
        return 0

    weighted = 0.0
    total = 0.0
    for i, attempt in enumerate(recent):
        recency = 1 / (1 + i * 0.1)
        weight = recency * DIFFICULTY_WEIGHT.get(attempt.difficulty, DIFFICULTY_WEIGHT['easy'])
        score = (attempt.score if attempt.score is not None else 1) if attempt.correct else 0
        weighted += score * weight
        total += weight

    return round(weighted / total * 100)
