"""Badge criteria registry.

Every badge names a ``(criterion_kind, target_metric)`` pair. Each pair maps
to one async reader that returns the user's current value for the metric;
the evaluator compares it against the badge's ``target_value``. Custom
criteria return 1.0 when met and 0.0 otherwise and carry no target.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import BiometricSample, Goal, UserProgress
from vitality.progress import ledger_service
from vitality.progress.constants import ActivityType
from vitality.progress.streak_service import effective_streak


class CriterionKind(str, Enum):
    STREAK = "streak"
    COUNT = "count"
    ACCUMULATED_VALUE = "accumulated_value"
    CUSTOM = "custom"


@dataclass
class CriterionContext:
    """Everything a metric reader may look at for one user."""

    db: AsyncSession
    user_id: int
    progress: UserProgress
    today: date
    water_goal_ml: float = 2000.0


MetricReader = Callable[[CriterionContext], Awaitable[float]]


# --- streak ---


async def _workout_streak(ctx: CriterionContext) -> float:
    return float(effective_streak(ctx.progress, ctx.today))


async def _water_goal_streak(ctx: CriterionContext) -> float:
    """Consecutive UTC days ending today where water intake met the goal."""
    result = await ctx.db.execute(
        select(BiometricSample.recorded_on)
        .where(
            BiometricSample.user_id == ctx.user_id,
            BiometricSample.sample_type == "water_intake",
            BiometricSample.recorded_on <= ctx.today,
        )
        .group_by(BiometricSample.recorded_on)
        .having(func.max(BiometricSample.value) >= ctx.water_goal_ml)
    )
    met = set(result.scalars())
    streak = 0
    day = ctx.today
    while day in met:
        streak += 1
        day -= timedelta(days=1)
    return float(streak)


# --- count ---


def _ledger_count(activity_type: ActivityType, **metadata: str) -> MetricReader:
    async def reader(ctx: CriterionContext) -> float:
        count = await ledger_service.count_entries(
            ctx.db, ctx.user_id, activity_type, metadata_match=metadata or None
        )
        return float(count)

    return reader


async def _goals_completed(ctx: CriterionContext) -> float:
    result = await ctx.db.execute(
        select(func.count()).select_from(Goal).where(
            Goal.user_id == ctx.user_id,
            Goal.status == "completed",
        )
    )
    return float(result.scalar_one())


# --- accumulated value ---


async def _weight_lost(ctx: CriterionContext) -> float:
    """First recorded weight minus the latest one (negative when weight was gained)."""
    base = select(BiometricSample.value).where(
        BiometricSample.user_id == ctx.user_id,
        BiometricSample.sample_type == "weight",
    )
    first = (
        await ctx.db.execute(base.order_by(BiometricSample.recorded_on.asc(), BiometricSample.id.asc()).limit(1))
    ).scalar_one_or_none()
    latest = (
        await ctx.db.execute(base.order_by(BiometricSample.recorded_on.desc(), BiometricSample.id.desc()).limit(1))
    ).scalar_one_or_none()
    if first is None or latest is None:
        return 0.0
    return float(first - latest)


# --- custom ---


async def _goal_weight_reached(ctx: CriterionContext) -> float:
    result = await ctx.db.execute(
        select(Goal.id)
        .where(
            Goal.user_id == ctx.user_id,
            Goal.goal_type == "weight",
            Goal.status == "completed",
        )
        .limit(1)
    )
    return 1.0 if result.scalar_one_or_none() is not None else 0.0


async def _community_joined(ctx: CriterionContext) -> float:
    count = await ledger_service.count_entries(ctx.db, ctx.user_id, ActivityType.COMMUNITY_POST)
    return 1.0 if count > 0 else 0.0


CRITERIA_REGISTRY: dict[tuple[CriterionKind, str], MetricReader] = {
    (CriterionKind.STREAK, "workout_streak"): _workout_streak,
    (CriterionKind.STREAK, "water_goal_streak"): _water_goal_streak,
    (CriterionKind.COUNT, "workouts_completed"): _ledger_count(ActivityType.WORKOUT_COMPLETED),
    (CriterionKind.COUNT, "meals_logged"): _ledger_count(ActivityType.MEAL_LOGGED),
    (CriterionKind.COUNT, "biometrics_logged"): _ledger_count(ActivityType.BIOMETRIC_LOGGED),
    (CriterionKind.COUNT, "goals_completed"): _goals_completed,
    (CriterionKind.COUNT, "encouragements_given"): _ledger_count(
        ActivityType.COMMUNITY_POST, post_type="motivation"
    ),
    (CriterionKind.ACCUMULATED_VALUE, "weight_lost"): _weight_lost,
    (CriterionKind.CUSTOM, "goal_weight_reached"): _goal_weight_reached,
    (CriterionKind.CUSTOM, "community_joined"): _community_joined,
}


def parse_criterion_kind(value: str | CriterionKind) -> CriterionKind:
    """Coerce a raw string into a CriterionKind. Raises ValueError if unknown."""
    if isinstance(value, CriterionKind):
        return value
    return CriterionKind(value)


def is_registered(kind: str | CriterionKind, metric: str) -> bool:
    try:
        return (parse_criterion_kind(kind), metric) in CRITERIA_REGISTRY
    except ValueError:
        return False


def get_reader(kind: str | CriterionKind, metric: str) -> MetricReader:
    """Reader for a pair. Raises KeyError for pairs outside the registry."""
    return CRITERIA_REGISTRY[(parse_criterion_kind(kind), metric)]


def is_met(kind: str | CriterionKind, value: float, target_value: float | None) -> bool:
    """Compare a metric value against a badge target."""
    if parse_criterion_kind(kind) is CriterionKind.CUSTOM:
        return value >= 1.0
    if target_value is None:
        return False
    return value >= target_value
