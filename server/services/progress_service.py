"""
Persistent gamification state: graded attempts, mastery and the review queue.

record_attempt applies one graded answer in a fixed order:
    1. mark the pending attempt graded (conditional on graded_at IS NULL)
    2. streak transition and XP, written as a compare-and-swap on the user row
    3. Progress.xp_earned upserted on (user_id, section_id)
    4. review queue item when incorrect
    5. mastery recomputed from history
All writes go through the caller's session, so they commit or roll back together.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session as DBSession

from server.db.models import Attempt, Progress, ReviewQueueItem, Section, User, utcnow
from server.errors import AttemptAlreadyGradedError, ConcurrentUpdateError, NotFoundError
from study.gamification import (
    MASTERY_WINDOW,
    AttemptOutcome,
    ScoredAttempt,
    calculate_xp,
    compute_mastery,
    next_streak,
)
from study.grader import GradeResult
from study.scheduler import sm2_update

logger = logging.getLogger("studyforge.progress")

INITIAL_INTERVAL = 1
INITIAL_EASE = 2.5
STREAK_RETRIES = 3


def upsert_progress(
    db: DBSession,
    user_id: str,
    section_id: str,
    xp_delta: int = 0,
    mastery: Optional[int] = None,
) -> None:
    """
    Create the Progress row or add xp_delta to it in one statement.

    mastery, when given, replaces the stored value. Concurrent first writers
    for the same (user_id, section_id) both land on the same row.
    """
    insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    now = utcnow()
    stmt = insert(Progress).values(
        user_id=user_id,
        section_id=section_id,
        xp_earned=xp_delta,
        mastery=mastery or 0,
        updated_at=now,
    )
    changes = {"xp_earned": Progress.xp_earned + stmt.excluded.xp_earned, "updated_at": now}
    if mastery is not None:
        changes["mastery"] = stmt.excluded.mastery
    db.execute(stmt.on_conflict_do_update(index_elements=["user_id", "section_id"], set_=changes))


def update_mastery(db: DBSession, user_id: str, section_id: str) -> int:
    """Recompute mastery for a user and section from graded attempts and store it."""
    rows = db.scalars(
        select(Attempt)
        .where(Attempt.user_id == user_id, Attempt.section_id == section_id, Attempt.graded_at.is_not(None))
        .order_by(Attempt.graded_at.desc(), Attempt.created_at.desc())
        .limit(MASTERY_WINDOW)
    ).all()
    mastery = compute_mastery([
        ScoredAttempt(correct=bool(a.correct), difficulty=a.difficulty, score=a.score)
        for a in rows
    ])
    upsert_progress(db, user_id, section_id, mastery=mastery)
    return mastery


def _advance_streak(
    db: DBSession,
    user: User,
    correct: bool,
    difficulty: str,
    time_ms: Optional[int],
    now: datetime,
) -> Tuple[int, int]:
    """
    Apply the streak transition and XP to the user row.

    The UPDATE only matches the streak and last_active_at it was computed
    from; a mismatch reloads the user and recomputes.
    Returns (new_streak, xp_earned).
    """
    for _ in range(STREAK_RETRIES):
        seen_streak = user.streak
        seen_active = user.last_active_at
        new_streak = next_streak(seen_streak, seen_active, correct, now)
        xp_earned = calculate_xp(correct, difficulty, new_streak, time_ms)

        result = db.execute(
            update(User)
            .where(
                User.id == user.id,
                User.streak == seen_streak,
                User.last_active_at.is_(None) if seen_active is None else User.last_active_at == seen_active,
            )
            .values(xp=User.xp + xp_earned, streak=new_streak, last_active_at=now)
            .execution_options(synchronize_session=False)
        )
        db.expire(user)
        if result.rowcount == 1:
            return new_streak, xp_earned
        logger.info("Streak of user %s changed while grading, recomputing", user.id)

    raise ConcurrentUpdateError(f"Streak of user {user.id} kept changing")


def record_attempt(
    db: DBSession,
    attempt_id: str,
    user_id: str,
    grade: GradeResult,
    time_ms: Optional[int] = None,
    user_answer: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AttemptOutcome:
    """
    Grade a pending attempt and update XP, streak, progress, review queue and mastery.

    Raises:
        NotFoundError: no attempt with this id for this user
        AttemptAlreadyGradedError: the attempt was graded before (first grader wins)
        ConcurrentUpdateError: the user's streak kept changing underneath
    """
    now = now or utcnow()

    attempt = db.scalar(select(Attempt).where(Attempt.id == attempt_id, Attempt.user_id == user_id))
    if attempt is None:
        raise NotFoundError("attempt", attempt_id)
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("user", user_id)

    result = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt_id, Attempt.graded_at.is_(None))
        .values(
            correct=grade.correct,
            score=grade.score,
            feedback=grade.feedback,
            user_answer=user_answer,
            time_ms=time_ms,
            graded_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AttemptAlreadyGradedError(attempt_id)
    db.refresh(attempt)

    new_streak, xp_earned = _advance_streak(db, user, grade.correct, attempt.difficulty, time_ms, now)
    upsert_progress(db, user_id, attempt.section_id, xp_delta=xp_earned)

    if not grade.correct:
        db.add(ReviewQueueItem(
            user_id=user_id,
            attempt_id=attempt_id,
            next_review=now,
            interval=INITIAL_INTERVAL,
            ease_factor=INITIAL_EASE,
            repetitions=0,
        ))
        db.flush()

    mastery = update_mastery(db, user_id, attempt.section_id)
    logger.info(
        "Attempt %s graded: correct=%s xp=%d streak=%d mastery=%d",
        attempt_id, grade.correct, xp_earned, new_streak, mastery,
    )
    return AttemptOutcome(xp_earned=xp_earned, new_streak=new_streak, mastery=mastery)


def update_review_schedule(
    db: DBSession,
    user_id: str,
    review_id: str,
    quality: int,
    now: Optional[datetime] = None,
) -> ReviewQueueItem:
    """
    Apply one SM-2 rating to a review item owned by user_id.

    Raises:
        NotFoundError: no such item for this user
        ValueError: quality outside 0-5
    """
    item = db.scalar(select(ReviewQueueItem).where(ReviewQueueItem.id == review_id, ReviewQueueItem.user_id == user_id))
    if item is None:
        raise NotFoundError("review item", review_id)

    schedule = sm2_update(quality, item.repetitions, item.interval, item.ease_factor, now or utcnow())
    item.interval = schedule.interval
    item.ease_factor = schedule.ease_factor
    item.repetitions = schedule.repetitions
    item.next_review = schedule.next_review
    db.flush()
    return item


def next_review_item(db: DBSession, user_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    The earliest due review item with its attempt and section, or None.

    An item whose attempt no longer exists is deleted and None is returned.
    """
    now = now or utcnow()
    item = db.scalar(
        select(ReviewQueueItem)
        .where(ReviewQueueItem.user_id == user_id, ReviewQueueItem.next_review <= now)
        .order_by(ReviewQueueItem.next_review, ReviewQueueItem.id)
        .limit(1)
    )
    if item is None:
        return None

    attempt = db.get(Attempt, item.attempt_id)
    if attempt is None:
        logger.info("Removing orphaned review item %s", item.id)
        db.delete(item)
        db.flush()
        return None

    section = db.get(Section, attempt.section_id)
    return {
        "review_id": item.id,
        "attempt_id": attempt.id,
        "question": attempt.question,
        "answer": attempt.answer,
        "mode": attempt.mode,
        "section": {"id": section.id, "title": section.title, "course_id": section.course_id} if section else None,
        "repetitions": item.repetitions,
        "interval": item.interval,
    }
