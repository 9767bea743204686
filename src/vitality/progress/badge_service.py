"""Badge evaluation and award with duplicate prevention."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import BadgeDefinition, UserBadge, UserProgress
from vitality.errors import ConflictError
from vitality.progress.badge_catalog import list_badges
from vitality.progress.constants import ActivityType
from vitality.progress.criteria import CriterionContext, get_reader, is_met
from vitality.progress.events import BadgeEarned, discard_staged_events, emit_event
from vitality.progress.points_service import credit_with_entry, get_progress

logger = logging.getLogger(__name__)

AfterCommit = Callable[[AsyncSession], Awaitable[object]]


@dataclass(frozen=True)
class AwardedBadge:
    """Snapshot of a badge awarded by one evaluation."""

    badge_id: int
    slug: str
    name: str
    reward_points: int


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def earned_badge_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
    return set(result.scalars())


async def evaluate(
    db: AsyncSession,
    user_id: int,
    today: date,
    water_goal_ml: float = 2000.0,
    after_commit: AfterCommit | None = None,
) -> list[AwardedBadge]:
    """Award every active, unearned badge whose criterion is now met.

    Badges are checked in catalog order and each award commits on its own,
    so an award that loses a race does not undo earlier ones. ``after_commit``
    runs after each committed award (the engine publishes events there).
    Returns the badges newly awarded by this call.
    """
    progress = await get_progress(db, user_id)
    earned = await earned_badge_ids(db, user_id)
    ctx = CriterionContext(db=db, user_id=user_id, progress=progress, today=today, water_goal_ml=water_goal_ml)

    awarded: list[AwardedBadge] = []
    for badge in await list_badges(db, active_only=True):
        if badge.id in earned:
            continue
        value = await get_reader(badge.criterion_kind, badge.target_metric)(ctx)
        if not is_met(badge.criterion_kind, value, badge.target_value):
            continue

        snapshot = AwardedBadge(badge.id, badge.slug, badge.name, badge.reward_points)
        if not await award_badge(db, progress, badge, metadata={"value": value}):
            # Lost the insert to a concurrent evaluation, which covers the rest
            break
        awarded.append(snapshot)
        if after_commit is not None:
            await after_commit(db)

    if awarded:
        logger.info("User %d earned %d badge(s): %s", user_id, len(awarded), [a.slug for a in awarded])
    return awarded


async def award_badge(
    db: AsyncSession,
    progress: UserProgress,
    badge: BadgeDefinition,
    metadata: dict | None = None,
) -> bool:
    """Award one badge and commit.

    Inserts the user_badges row, credits the reward with its ledger entry
    and stages BadgeEarned, all in one transaction. Returns False when the
    badge was already held (a concurrent evaluation won the insert). A
    stale progress row raises ConflictError after rollback.
    """
    user_id = progress.user_id
    db.add(
        UserBadge(
            user_id=user_id,
            badge_id=badge.id,
            earned_at=datetime.now(timezone.utc),
            badge_metadata=metadata or {},
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        discard_staged_events(db)
        return False

    try:
        await credit_with_entry(
            db,
            progress,
            badge.reward_points,
            ActivityType.BADGE_EARNED,
            f'Earned badge: "{badge.name}"',
            related_entity_id=str(badge.id),
            idempotency_key=f"badge:{badge.id}:{user_id}",
            metadata={"badge_slug": badge.slug},
        )
        emit_event(
            db,
            BadgeEarned(
                user_id=user_id,
                badge_id=badge.id,
                badge_slug=badge.slug,
                badge_name=badge.name,
                reward_points=badge.reward_points,
            ),
        )
        await db.commit()
    except ConflictError:
        await db.rollback()
        discard_staged_events(db)
        raise

    return True


async def get_earned_badges(db: AsyncSession, user_id: int) -> list[UserBadge]:
    """Badges earned by a user, oldest first."""
    await get_progress(db, user_id)
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at, UserBadge.id)
    )
    return list(result.unique().scalars().all())


async def get_available_badges(db: AsyncSession, user_id: int) -> list[dict]:
    """Active catalog plus any retired badge the user holds, each with an earned flag."""
    earned = {ub.badge_id: ub for ub in await get_earned_badges(db, user_id)}
    available = []
    for badge in await list_badges(db):
        user_badge = earned.get(badge.id)
        if not badge.is_active and user_badge is None:
            continue
        available.append({
            "badge": badge,
            "earned": user_badge is not None,
            "earned_at": user_badge.earned_at if user_badge else None,
        })
    return available
