"""Leaderboard queries over active users' progress records.

Order is metric descending, then account creation date, then user id, so
ties always list the same way. Rank is competition style: one plus the
number of active users with a strictly greater value, which means tied
users share a rank.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import User, UserProgress
from vitality.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"
MAX_TOP_N = 500


class LeaderboardMetric(str, Enum):
    TOTAL_POINTS = "total_points"
    CURRENT_STREAK = "current_streak"
    LONGEST_STREAK = "longest_streak"


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    display_name: str
    value: int


def parse_metric(value: str | LeaderboardMetric) -> LeaderboardMetric:
    """Coerce a raw metric name. Raises ValidationError if unknown."""
    if isinstance(value, LeaderboardMetric):
        return value
    try:
        return LeaderboardMetric(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown leaderboard metric: {value}", metric=value) from exc


def _column(metric: LeaderboardMetric):
    return getattr(UserProgress, metric.value)


async def top(
    db: AsyncSession,
    n: int = 10,
    metric: str | LeaderboardMetric = LeaderboardMetric.TOTAL_POINTS,
) -> list[LeaderboardEntry]:
    """First ``n`` active users by ``metric``."""
    metric = parse_metric(metric)
    if n < 1 or n > MAX_TOP_N:
        raise ValidationError(f"n must be between 1 and {MAX_TOP_N}", n=n)
    column = _column(metric)

    result = await db.execute(
        select(UserProgress.user_id, User.display_name, column.label("value"))
        .join(User, User.id == UserProgress.user_id)
        .where(User.account_status == ACTIVE_STATUS)
        .order_by(column.desc(), User.created_at.asc(), User.id.asc())
        .limit(n)
    )
    rows = result.all()

    entries: list[LeaderboardEntry] = []
    prev_value: int | None = None
    rank = 0
    for position, row in enumerate(rows, start=1):
        if row.value != prev_value:
            rank = position
            prev_value = row.value
        entries.append(
            LeaderboardEntry(
                rank=rank,
                user_id=row.user_id,
                display_name=row.display_name or f"User-{row.user_id}",
                value=int(row.value),
            )
        )
    return entries


async def rank_of(
    db: AsyncSession,
    user_id: int,
    metric: str | LeaderboardMetric = LeaderboardMetric.TOTAL_POINTS,
) -> int:
    """1-based rank of an active user. Raises NotFoundError otherwise."""
    metric = parse_metric(metric)
    column = _column(metric)

    own = await db.execute(
        select(column)
        .join(User, User.id == UserProgress.user_id)
        .where(UserProgress.user_id == user_id, User.account_status == ACTIVE_STATUS)
    )
    value = own.scalar_one_or_none()
    if value is None:
        raise NotFoundError(f"No ranked progress for user {user_id}", user_id=user_id)

    ahead = await db.execute(
        select(func.count())
        .select_from(UserProgress)
        .join(User, User.id == UserProgress.user_id)
        .where(User.account_status == ACTIVE_STATUS, column > value)
    )
    return int(ahead.scalar_one()) + 1


async def count_ranked(db: AsyncSession) -> int:
    """Number of active users with a progress record."""
    result = await db.execute(
        select(func.count())
        .select_from(UserProgress)
        .join(User, User.id == UserProgress.user_id)
        .where(User.account_status == ACTIVE_STATUS)
    )
    return int(result.scalar_one())
