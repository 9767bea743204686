"""Day-streak tracking: qualifying-day transitions, milestones and the daily sweep.

All day arithmetic is on UTC calendar days. A streak continues when the
previous qualifying day is exactly yesterday, restarts at 1 after a gap,
and is zeroed by the daily sweep once a full day has been missed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import UserProgress
from vitality.progress import ledger_service
from vitality.progress.constants import (
    STREAK_MILESTONE_BONUS,
    STREAK_MILESTONES,
    ActivityType,
    next_milestone,
)
from vitality.progress.events import StreakBroken, StreakMilestoneReached, emit_event
from vitality.progress.points_service import credit_with_entry, get_progress

logger = logging.getLogger(__name__)

SWEEP_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class StreakTransition:
    """Result of applying one qualifying day to a streak state."""

    current_streak: int
    longest_streak: int
    last_qualifying_date: date | None
    changed: bool = False
    restarted: bool = False


@dataclass(frozen=True)
class StreakUpdate:
    """What a qualifying event did to a user's streak."""

    current_streak: int
    longest_streak: int
    changed: bool
    milestone: int | None = None
    bonus_points: int = 0


def compute_transition(
    current_streak: int,
    longest_streak: int,
    last_qualifying_date: date | None,
    today: date,
) -> StreakTransition:
    """Pure streak state machine step for a qualifying event on ``today``."""
    unchanged = StreakTransition(current_streak, longest_streak, last_qualifying_date)
    if last_qualifying_date is not None and today <= last_qualifying_date:
        # Same day, or a late backfill for an earlier day
        return unchanged

    restarted = False
    if last_qualifying_date is None or last_qualifying_date == today - timedelta(days=1):
        new_current = current_streak + 1
    else:
        new_current = 1
        restarted = True

    return StreakTransition(
        current_streak=new_current,
        longest_streak=max(longest_streak, new_current),
        last_qualifying_date=today,
        changed=True,
        restarted=restarted,
    )


def is_streak_broken(last_qualifying_date: date | None, as_of: date) -> bool:
    """True once more than one full day has passed since the last qualifying day."""
    if last_qualifying_date is None:
        return False
    return (as_of - last_qualifying_date).days > 1


def effective_streak(progress: UserProgress, as_of: date) -> int:
    """Current streak as the next sweep would leave it."""
    if is_streak_broken(progress.last_qualifying_date, as_of):
        return 0
    return progress.current_streak


async def apply_qualifying_day(
    db: AsyncSession,
    progress: UserProgress,
    today: date,
) -> StreakUpdate:
    """Advance ``progress`` for a qualifying event on ``today`` (UTC day).

    Mutates the record in the session; milestone events and bonus ledger
    entries are staged in the same unit of work. Nothing is committed here.
    """
    transition = compute_transition(
        progress.current_streak,
        progress.longest_streak,
        progress.last_qualifying_date,
        today,
    )
    if not transition.changed:
        return StreakUpdate(progress.current_streak, progress.longest_streak, changed=False)

    if transition.restarted or progress.current_streak == 0:
        progress.streak_start_date = today
    progress.current_streak = transition.current_streak
    progress.longest_streak = transition.longest_streak
    progress.last_qualifying_date = transition.last_qualifying_date
    progress.updated_at = datetime.now(timezone.utc)

    milestone, bonus = await _check_streak_milestone(db, progress, today)
    logger.info("Streak for user %d now %d days", progress.user_id, progress.current_streak)
    return StreakUpdate(
        current_streak=progress.current_streak,
        longest_streak=progress.longest_streak,
        changed=True,
        milestone=milestone,
        bonus_points=bonus,
    )


async def _check_streak_milestone(
    db: AsyncSession,
    progress: UserProgress,
    today: date,
) -> tuple[int | None, int]:
    """Emit the milestone event and credit any bonus for the new streak length."""
    streak = progress.current_streak
    if streak not in STREAK_MILESTONES:
        return None, 0

    emit_event(db, StreakMilestoneReached(user_id=progress.user_id, streak_length=streak))

    bonus = STREAK_MILESTONE_BONUS.get(streak, 0)
    if bonus:
        await credit_with_entry(
            db,
            progress,
            bonus,
            ActivityType.STREAK_MILESTONE,
            f"Reached {streak}-day streak",
            idempotency_key=f"streak_milestone:{progress.user_id}:{streak}:{today.isoformat()}",
            metadata={"streak_length": streak},
        )
    return streak, bonus


# --- Daily sweep ---


async def run_daily_sweep(db: AsyncSession, as_of: date) -> list[StreakBroken]:
    """Zero every streak whose last qualifying day is more than a day before ``as_of``.

    Each reset is a conditional write on the row version and last qualifying
    date, so a workout logged concurrently wins over a stale sweep decision.
    Returns the StreakBroken events staged (committed on return).
    """
    cutoff = as_of - timedelta(days=1)
    candidates = await db.execute(
        select(UserProgress.user_id).where(
            UserProgress.current_streak > 0,
            UserProgress.last_qualifying_date < cutoff,
        )
    )
    broken: list[StreakBroken] = []
    for user_id in list(candidates.scalars()):
        event = await _sweep_user(db, user_id, as_of)
        if event is not None:
            broken.append(event)

    await db.commit()
    logger.info("Daily sweep for %s: %d streaks broken", as_of.isoformat(), len(broken))
    return broken


async def _sweep_user(db: AsyncSession, user_id: int, as_of: date) -> StreakBroken | None:
    """Reset one user's streak if still broken at write time."""
    for _ in range(SWEEP_MAX_ATTEMPTS):
        row = (
            await db.execute(
                select(
                    UserProgress.current_streak,
                    UserProgress.last_qualifying_date,
                    UserProgress.version,
                ).where(UserProgress.user_id == user_id)
            )
        ).one_or_none()
        if row is None or row.current_streak == 0 or not is_streak_broken(row.last_qualifying_date, as_of):
            return None

        result = await db.execute(
            update(UserProgress)
            .where(
                UserProgress.user_id == user_id,
                UserProgress.version == row.version,
                UserProgress.last_qualifying_date == row.last_qualifying_date,
            )
            .values(
                current_streak=0,
                streak_start_date=None,
                version=row.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            event = StreakBroken(user_id=user_id, prior_length=row.current_streak)
            emit_event(db, event)
            logger.info("Reset streak for user %d (was %d days)", user_id, row.current_streak)
            return event

        logger.debug("Sweep lost race for user %d, re-reading", user_id)

    logger.warning("Sweep gave up on user %d after %d attempts", user_id, SWEEP_MAX_ATTEMPTS)
    return None


# --- Read side ---


async def get_streak_stats(db: AsyncSession, user_id: int, today: date) -> dict:
    """Streak summary: counters, workout frequency and next milestone."""
    progress = await get_progress(db, user_id)

    total_workout_days = await ledger_service.count_active_days(db, user_id, ActivityType.WORKOUT_COMPLETED)
    recent_days = await ledger_service.count_active_days(
        db, user_id, ActivityType.WORKOUT_COMPLETED, since_day=today - timedelta(days=29)
    )
    frequency = round(recent_days / 30 * 100, 1)

    current = effective_streak(progress, today)
    milestone = next_milestone(current)

    return {
        "current_streak": progress.current_streak,
        "effective_streak": current,
        "longest_streak": progress.longest_streak,
        "last_qualifying_date": progress.last_qualifying_date,
        "streak_start_date": progress.streak_start_date if current else None,
        "total_workout_days": total_workout_days,
        "workout_frequency": frequency,
        "next_milestone": milestone,
        "days_to_milestone": milestone - current if milestone is not None else None,
        "streak_status": "active" if current > 0 else "inactive",
    }


async def get_streak_history(db: AsyncSession, user_id: int, today: date, days: int = 30) -> list[dict]:
    """One entry per UTC day ending ``today``, oldest first, flagging workout days."""
    start = today - timedelta(days=days - 1)
    active = await ledger_service.days_with_activity(
        db, user_id, ActivityType.WORKOUT_COMPLETED, start, today
    )
    history = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        history.append({
            "day": day,
            "has_workout": day in active,
            "day_of_week": day.strftime("%a"),
        })
    return history
