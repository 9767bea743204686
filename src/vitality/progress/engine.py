"""Progress engine facade.

Every write runs in its own session inside ``run_with_retry``: an optimistic
conflict rolls the whole unit of work back and replays it on fresh state.
Events staged by a committed unit are published straight after the commit.
Badge evaluation follows as a separate step whose failure never undoes the
activity that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from vitality.config import Settings, get_settings
from vitality.db.models import BadgeDefinition, BiometricSample, Goal, UserBadge, UserProgress
from vitality.errors import ConflictError, NotFoundError, PersistenceError, ProgressError, ValidationError
from vitality.progress import (
    badge_catalog,
    badge_service,
    leaderboard_service,
    ledger_service,
    points_service,
    streak_service,
)
from vitality.progress.badge_service import AwardedBadge
from vitality.progress.constants import (
    ACTIVITY_DESCRIPTIONS,
    ACTIVITY_POINTS,
    INBOUND_ACTIVITIES,
    QUALIFYING_ACTIVITIES,
    ActivityType,
    parse_activity_type,
)
from vitality.progress.events import EventPublisher, StreakBroken, discard_staged_events
from vitality.progress.ledger_service import utc_day

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ActivityResult:
    """Outcome of one inbound activity."""

    user_id: int
    activity_type: str
    points_earned: int
    total_points: int
    current_streak: int
    longest_streak: int
    duplicate: bool = False
    streak_changed: bool = False
    milestone: int | None = None
    bonus_points: int = 0
    badges_awarded: list[AwardedBadge] = field(default_factory=list)


def progress_view(progress: UserProgress, today: date, badges_earned: int = 0) -> dict[str, Any]:
    """Plain snapshot of a progress record for callers outside the session."""
    return {
        "user_id": progress.user_id,
        "total_points": progress.total_points,
        "current_streak": progress.current_streak,
        "effective_streak": streak_service.effective_streak(progress, today),
        "longest_streak": progress.longest_streak,
        "last_qualifying_date": progress.last_qualifying_date,
        "streak_start_date": progress.streak_start_date,
        "badges_earned": badges_earned,
        "updated_at": progress.updated_at,
    }


class ProgressEngine:
    """Entry point for recording activity and reading progress."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.publisher = publisher or EventPublisher(None, self.settings.events_channel)
        self.clock = clock

    def today(self) -> date:
        return utc_day(self.clock())

    def _resolve_occurred_at(self, occurred_at: datetime | None) -> datetime:
        """Default to now, read naive values as UTC and reject future timestamps."""
        now = self.clock()
        if occurred_at is None:
            return now
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        if occurred_at > now + timedelta(seconds=self.settings.max_clock_skew_seconds):
            raise ValidationError(
                "occurred_at is in the future", occurred_at=occurred_at.isoformat(), now=now.isoformat()
            )
        return occurred_at

    # --- Unit of work ---

    async def run_with_retry(self, operation: Callable[[AsyncSession], Awaitable[T]], name: str = "operation") -> T:
        """Run ``operation`` in a fresh session, replaying it on optimistic conflicts.

        ``operation`` commits its own work. Conflicts are retried up to
        ``conflict_max_retries`` times, then surface as PersistenceError.
        NotFoundError and ValidationError propagate unchanged.
        """
        retries = self.settings.conflict_max_retries
        for attempt in range(retries + 1):
            async with self.session_factory() as db:
                try:
                    result = await operation(db)
                except (ConflictError, StaleDataError, IntegrityError) as exc:
                    await db.rollback()
                    discard_staged_events(db)
                    logger.info("Conflict in %s (attempt %d/%d): %s", name, attempt + 1, retries + 1, exc)
                    continue
                except ProgressError:
                    await db.rollback()
                    discard_staged_events(db)
                    raise
                except SQLAlchemyError as exc:
                    await db.rollback()
                    discard_staged_events(db)
                    raise PersistenceError(f"Storage failure in {name}") from exc

                await self._publish(db)
                return result

        logger.error("Giving up on %s after %d conflicting attempts", name, retries + 1)
        raise PersistenceError(f"Too many concurrent updates in {name}", attempts=retries + 1)

    async def _publish(self, db: AsyncSession) -> None:
        try:
            await self.publisher.publish_staged(db)
        except SQLAlchemyError:
            # Rows stay unpublished in the outbox; the relay job retries them
            logger.warning("Failed to mark events published", exc_info=True)

    # --- Inbound ---

    async def record_qualifying_activity(
        self,
        user_id: int,
        activity_type: str | ActivityType,
        occurred_at: datetime | None = None,
        related_entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityResult:
        """Score an activity, advance the streak if it qualifies, then evaluate badges.

        The same activity for the same user, UTC day and related entity is
        recorded once; repeats return the current state with ``duplicate=True``.
        """
        try:
            activity = parse_activity_type(activity_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown activity type: {activity_type}", activity_type=str(activity_type)) from exc
        if activity not in INBOUND_ACTIVITIES:
            raise ValidationError(f"{activity.value} cannot be submitted directly", activity_type=activity.value)

        occurred_at = self._resolve_occurred_at(occurred_at)
        day = utc_day(occurred_at)
        key = ledger_service.activity_idempotency_key(user_id, activity, day, related_entity_id)
        points = ACTIVITY_POINTS[activity]

        async def _record(db: AsyncSession) -> ActivityResult:
            progress = await points_service.get_or_create_progress(db, user_id)
            if await ledger_service.find_by_idempotency_key(db, key) is not None:
                await db.commit()
                return ActivityResult(
                    user_id=user_id,
                    activity_type=activity.value,
                    points_earned=0,
                    total_points=progress.total_points,
                    current_streak=progress.current_streak,
                    longest_streak=progress.longest_streak,
                    duplicate=True,
                )

            await points_service.credit_with_entry(
                db,
                progress,
                points,
                activity,
                ACTIVITY_DESCRIPTIONS[activity],
                occurred_at=occurred_at,
                related_entity_id=related_entity_id,
                idempotency_key=key,
                metadata=metadata,
            )
            streak = None
            if activity in QUALIFYING_ACTIVITIES:
                streak = await streak_service.apply_qualifying_day(db, progress, day)
            await db.commit()

            return ActivityResult(
                user_id=user_id,
                activity_type=activity.value,
                points_earned=points,
                total_points=progress.total_points,
                current_streak=progress.current_streak,
                longest_streak=progress.longest_streak,
                streak_changed=bool(streak and streak.changed),
                milestone=streak.milestone if streak else None,
                bonus_points=streak.bonus_points if streak else 0,
            )

        result = await self.run_with_retry(_record, name=f"record {activity.value}")
        logger.info(
            "Recorded %s for user %d: +%d points%s",
            activity.value, user_id, result.points_earned, " (duplicate)" if result.duplicate else "",
        )
        if result.duplicate:
            return result

        awarded = await self._evaluate_badges_safely(user_id)
        if awarded:
            result = replace(
                result,
                badges_awarded=awarded,
                total_points=result.total_points + sum(a.reward_points for a in awarded),
            )
        return result

    async def evaluate_badges(self, user_id: int) -> list[AwardedBadge]:
        """Award any badges the user now qualifies for."""
        today = self.today()

        async def _evaluate(db: AsyncSession) -> list[AwardedBadge]:
            return await badge_service.evaluate(
                db,
                user_id,
                today,
                water_goal_ml=self.settings.water_goal_ml,
                after_commit=self._publish,
            )

        return await self.run_with_retry(_evaluate, name="evaluate badges")

    async def _evaluate_badges_safely(self, user_id: int) -> list[AwardedBadge]:
        try:
            return await self.evaluate_badges(user_id)
        except ProgressError:
            # The next activity re-runs evaluation
            logger.warning("Badge evaluation failed for user %d", user_id, exc_info=True)
            return []

    async def run_daily_sweep(self, as_of: date | None = None) -> list[StreakBroken]:
        """Zero streaks that missed a full UTC day before ``as_of`` (default today)."""
        as_of = as_of or self.today()

        async def _sweep(db: AsyncSession) -> list[StreakBroken]:
            return await streak_service.run_daily_sweep(db, as_of)

        return await self.run_with_retry(_sweep, name="daily sweep")

    async def prune_ledger(self, now: datetime | None = None) -> int:
        """Delete ledger entries past the retention window."""
        async with self.session_factory() as db:
            return await ledger_service.prune_expired_entries(
                db, self.settings.ledger_retention_days, now=now or self.clock()
            )

    async def publish_pending(self, limit: int = 500) -> int:
        """Relay outbox events that were committed but never published."""
        async with self.session_factory() as db:
            return await self.publisher.publish_pending(db, limit=limit)

    # --- Domain helpers feeding badge criteria ---

    async def record_biometric_sample(
        self,
        user_id: int,
        sample_type: str,
        value: float,
        unit: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ActivityResult:
        """Store a biometric reading and score it as ``biometric_logged``."""
        recorded_at = self._resolve_occurred_at(recorded_at)
        if value < 0:
            raise ValidationError("Biometric value must be >= 0", value=value)

        async def _store(db: AsyncSession) -> int:
            await points_service.get_or_create_progress(db, user_id)
            sample = BiometricSample(
                user_id=user_id,
                sample_type=sample_type,
                value=value,
                unit=unit,
                recorded_on=utc_day(recorded_at),
            )
            db.add(sample)
            await db.commit()
            return sample.id

        sample_id = await self.run_with_retry(_store, name="store biometric sample")
        return await self.record_qualifying_activity(
            user_id,
            ActivityType.BIOMETRIC_LOGGED,
            occurred_at=recorded_at,
            related_entity_id=f"biometric:{sample_id}",
            metadata={"sample_type": sample_type},
        )

    async def create_goal(self, user_id: int, goal_type: str, title: str = "") -> tuple[int, ActivityResult]:
        """Create a goal and score it as ``goal_created``. Returns (goal_id, result)."""

        async def _create(db: AsyncSession) -> int:
            await points_service.get_or_create_progress(db, user_id)
            goal = Goal(user_id=user_id, goal_type=goal_type, title=title, status="active")
            db.add(goal)
            await db.commit()
            return goal.id

        goal_id = await self.run_with_retry(_create, name="create goal")
        result = await self.record_qualifying_activity(
            user_id, ActivityType.GOAL_CREATED, related_entity_id=f"goal:{goal_id}"
        )
        return goal_id, result

    async def complete_goal(self, user_id: int, goal_id: int) -> ActivityResult:
        """Mark a goal completed and score it as ``goal_completed``.

        Completing a goal that is already completed scores nothing and
        returns the current state with ``duplicate=True``.
        """
        completed_at = self.clock()

        async def _complete(db: AsyncSession) -> ActivityResult | None:
            goal = await db.get(Goal, goal_id)
            if goal is None or goal.user_id != user_id:
                raise NotFoundError(f"Goal {goal_id} not found", goal_id=goal_id, user_id=user_id)
            if goal.status == "completed":
                progress = await points_service.get_or_create_progress(db, user_id)
                await db.commit()
                return ActivityResult(
                    user_id=user_id,
                    activity_type=ActivityType.GOAL_COMPLETED.value,
                    points_earned=0,
                    total_points=progress.total_points,
                    current_streak=progress.current_streak,
                    longest_streak=progress.longest_streak,
                    duplicate=True,
                )
            goal.status = "completed"
            goal.completed_at = completed_at
            await db.commit()
            return None

        already = await self.run_with_retry(_complete, name="complete goal")
        if already is not None:
            logger.info("Goal %d for user %d was already completed", goal_id, user_id)
            return already
        return await self.record_qualifying_activity(
            user_id, ActivityType.GOAL_COMPLETED, occurred_at=completed_at, related_entity_id=f"goal:{goal_id}"
        )

    # --- Outbound ---

    async def get_progress(self, user_id: int) -> dict[str, Any]:
        async with self.session_factory() as db:
            progress = await points_service.get_progress(db, user_id)
            badges = await db.execute(
                select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
            )
            return progress_view(progress, self.today(), int(badges.scalar_one()))

    async def get_leaderboard(
        self, n: int = 10, metric: str = leaderboard_service.LeaderboardMetric.TOTAL_POINTS.value
    ) -> list[leaderboard_service.LeaderboardEntry]:
        async with self.session_factory() as db:
            return await leaderboard_service.top(db, n, metric)

    async def get_rank(
        self, user_id: int, metric: str = leaderboard_service.LeaderboardMetric.TOTAL_POINTS.value
    ) -> dict[str, Any]:
        async with self.session_factory() as db:
            rank = await leaderboard_service.rank_of(db, user_id, metric)
            total = await leaderboard_service.count_ranked(db)
            return {"user_id": user_id, "metric": leaderboard_service.parse_metric(metric).value,
                    "rank": rank, "total_ranked": total}

    async def get_earned_badges(self, user_id: int) -> list[UserBadge]:
        async with self.session_factory() as db:
            return await badge_service.get_earned_badges(db, user_id)

    async def get_available_badges(self, user_id: int) -> list[dict]:
        async with self.session_factory() as db:
            return await badge_service.get_available_badges(db, user_id)

    async def get_streak_stats(self, user_id: int) -> dict[str, Any]:
        async with self.session_factory() as db:
            return await streak_service.get_streak_stats(db, user_id, self.today())

    async def get_streak_history(self, user_id: int, days: int = 30) -> list[dict]:
        if days < 1 or days > 365:
            raise ValidationError("days must be between 1 and 365", days=days)
        async with self.session_factory() as db:
            await points_service.get_progress(db, user_id)
            return await streak_service.get_streak_history(db, user_id, self.today(), days)

    async def get_points_history(self, user_id: int, page: int = 1, per_page: int = 20) -> tuple[list, int]:
        if page < 1 or per_page < 1 or per_page > 100:
            raise ValidationError("Invalid pagination", page=page, per_page=per_page)
        async with self.session_factory() as db:
            await points_service.get_progress(db, user_id)
            return await ledger_service.get_points_history(db, user_id, page, per_page)

    async def get_achievements(self, user_id: int) -> dict[str, Any]:
        """Summary of a user's progress across points, streaks, badges and goals."""
        async with self.session_factory() as db:
            progress = await points_service.get_progress(db, user_id)
            badges = await db.execute(
                select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
            )
            goals = await db.execute(
                select(func.count()).select_from(Goal).where(Goal.user_id == user_id, Goal.status == "completed")
            )
            total_workouts = await ledger_service.count_entries(db, user_id, ActivityType.WORKOUT_COMPLETED)
            total_activities = await ledger_service.count_entries(db, user_id)
            try:
                rank = await leaderboard_service.rank_of(db, user_id)
            except NotFoundError:
                rank = None

            return {
                "user_id": user_id,
                "total_points": progress.total_points,
                "badges_earned": int(badges.scalar_one()),
                "current_streak": streak_service.effective_streak(progress, self.today()),
                "longest_streak": progress.longest_streak,
                "total_workouts": total_workouts,
                "goals_completed": int(goals.scalar_one()),
                "total_activities": total_activities,
                "rank": rank,
            }

    # --- Catalog administration ---

    async def list_badges(self, active_only: bool = False) -> list[BadgeDefinition]:
        async with self.session_factory() as db:
            return await badge_catalog.list_badges(db, active_only=active_only)

    async def create_badge(self, **fields: Any) -> BadgeDefinition:  # noqa: ANN401
        async with self.session_factory() as db:
            return await badge_catalog.create_badge(db, **fields)

    async def set_badge_active(self, badge_id: int, active: bool) -> BadgeDefinition:
        async with self.session_factory() as db:
            return await badge_catalog.set_badge_active(db, badge_id, active)
