"""Progress API endpoints, called by the platform's public API layer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from vitality.dependencies import get_progress_engine
from vitality.progress.engine import ProgressEngine
from vitality.progress.leaderboard_service import LeaderboardMetric
from vitality.progress.schemas import (
    AchievementsResponse,
    ActivityRequest,
    ActivityResponse,
    AllBadgesResponse,
    AvailableBadgeResponse,
    AvailableBadgesResponse,
    AwardedBadgeResponse,
    BadgeActiveRequest,
    BadgeDefinitionResponse,
    CreateBadgeRequest,
    EarnedBadgeResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    PointsHistoryEntry,
    PointsHistoryResponse,
    ProgressResponse,
    RankResponse,
    StreakDayEntry,
    StreakHistoryResponse,
    StreakResponse,
    SweepRequest,
    SweepResponse,
    UserBadgesResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progress"])


# ── Activities ──


@router.post("/users/{user_id}/activities", response_model=ActivityResponse)
async def record_activity(
    user_id: int,
    body: ActivityRequest,
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """Score an activity for a user and advance their streak if it qualifies."""
    result = await engine.record_qualifying_activity(
        user_id,
        body.activity_type,
        occurred_at=body.occurred_at,
        related_entity_id=body.related_entity_id,
        metadata=body.metadata,
    )
    return ActivityResponse(
        user_id=result.user_id,
        activity_type=result.activity_type,
        points_earned=result.points_earned,
        total_points=result.total_points,
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        duplicate=result.duplicate,
        milestone=result.milestone,
        bonus_points=result.bonus_points,
        badges_awarded=[
            AwardedBadgeResponse(
                badge_id=a.badge_id, slug=a.slug, name=a.name, reward_points=a.reward_points
            )
            for a in result.badges_awarded
        ],
    )


# ── Progress ──


@router.get("/users/{user_id}/progress", response_model=ProgressResponse)
async def get_progress(user_id: int, engine: ProgressEngine = Depends(get_progress_engine)):
    return ProgressResponse(**await engine.get_progress(user_id))


@router.get("/users/{user_id}/achievements", response_model=AchievementsResponse)
async def get_achievements(user_id: int, engine: ProgressEngine = Depends(get_progress_engine)):
    return AchievementsResponse(**await engine.get_achievements(user_id))


@router.get("/users/{user_id}/points/history", response_model=PointsHistoryResponse)
async def get_points_history(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """Point-earning ledger entries, newest first."""
    entries, total = await engine.get_points_history(user_id, page, per_page)
    return PointsHistoryResponse(
        entries=[
            PointsHistoryEntry(
                activity_type=e.activity_type,
                description=e.description,
                points_earned=e.points_earned,
                related_entity_id=e.related_entity_id,
                occurred_at=e.occurred_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


# ── Streak ──


@router.get("/users/{user_id}/streak", response_model=StreakResponse)
async def get_streak(user_id: int, engine: ProgressEngine = Depends(get_progress_engine)):
    return StreakResponse(**await engine.get_streak_stats(user_id))


@router.get("/users/{user_id}/streak/history", response_model=StreakHistoryResponse)
async def get_streak_history(
    user_id: int,
    days: int = Query(30, ge=1, le=365),
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """One entry per UTC day, oldest first."""
    history = await engine.get_streak_history(user_id, days)
    return StreakHistoryResponse(days=[StreakDayEntry(**entry) for entry in history])


# ── Badges ──


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: int, engine: ProgressEngine = Depends(get_progress_engine)):
    earned = await engine.get_earned_badges(user_id)
    return UserBadgesResponse(
        earned=[
            EarnedBadgeResponse(
                slug=ub.badge.slug,
                name=ub.badge.name,
                rarity=ub.badge.rarity,
                reward_points=ub.badge.reward_points,
                earned_at=ub.earned_at,
                metadata=ub.badge_metadata or {},
            )
            for ub in earned
        ],
        total_earned=len(earned),
    )


@router.get("/users/{user_id}/badges/available", response_model=AvailableBadgesResponse)
async def get_available_badges(user_id: int, engine: ProgressEngine = Depends(get_progress_engine)):
    """Catalog with an earned flag per badge."""
    available = await engine.get_available_badges(user_id)
    badges = [
        AvailableBadgeResponse(
            **BadgeDefinitionResponse.model_validate(item["badge"]).model_dump(),
            earned=item["earned"],
            earned_at=item["earned_at"],
        )
        for item in available
    ]
    return AvailableBadgesResponse(
        badges=badges,
        total_available=len(badges),
        total_earned=sum(1 for b in badges if b.earned),
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(
    include_inactive: bool = Query(False),
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """Badge catalog in evaluation order."""
    badges = await engine.list_badges(active_only=not include_inactive)
    return AllBadgesResponse(badges=[BadgeDefinitionResponse.model_validate(b) for b in badges])


# ── Leaderboard ──


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    metric: LeaderboardMetric = Query(LeaderboardMetric.TOTAL_POINTS),
    limit: int = Query(10, ge=1, le=500),
    engine: ProgressEngine = Depends(get_progress_engine),
):
    entries = await engine.get_leaderboard(limit, metric.value)
    return LeaderboardResponse(
        metric=metric.value,
        entries=[
            LeaderboardEntryResponse(rank=e.rank, user_id=e.user_id, display_name=e.display_name, value=e.value)
            for e in entries
        ],
    )


@router.get("/users/{user_id}/rank", response_model=RankResponse)
async def get_rank(
    user_id: int,
    metric: LeaderboardMetric = Query(LeaderboardMetric.TOTAL_POINTS),
    engine: ProgressEngine = Depends(get_progress_engine),
):
    return RankResponse(**await engine.get_rank(user_id, metric.value))


# ── Admin ──


@router.post("/admin/sweep", response_model=SweepResponse)
async def run_sweep(
    body: SweepRequest | None = None,
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """Run the daily streak sweep now (normally a worker cron job)."""
    as_of = (body.as_of if body else None) or engine.today()
    broken = await engine.run_daily_sweep(as_of)
    return SweepResponse(as_of=as_of, streaks_broken=len(broken), user_ids=[e.user_id for e in broken])


@router.post("/admin/badges", response_model=BadgeDefinitionResponse, status_code=201)
async def create_badge(body: CreateBadgeRequest, engine: ProgressEngine = Depends(get_progress_engine)):
    badge = await engine.create_badge(**body.model_dump())
    return BadgeDefinitionResponse.model_validate(badge)


@router.patch("/admin/badges/{badge_id}", response_model=BadgeDefinitionResponse)
async def set_badge_active(
    badge_id: int,
    body: BadgeActiveRequest,
    engine: ProgressEngine = Depends(get_progress_engine),
):
    """Enable or disable a badge. Already-earned instances are kept."""
    badge = await engine.set_badge_active(badge_id, body.is_active)
    return BadgeDefinitionResponse.model_validate(badge)
