"""Pydantic request and response models for progress endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Activities ---


class ActivityRequest(BaseModel):
    activity_type: str
    occurred_at: datetime | None = None
    related_entity_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] = {}


class AwardedBadgeResponse(BaseModel):
    badge_id: int
    slug: str
    name: str
    reward_points: int


class ActivityResponse(BaseModel):
    user_id: int
    activity_type: str
    points_earned: int
    total_points: int
    current_streak: int
    longest_streak: int
    duplicate: bool = False
    milestone: int | None = None
    bonus_points: int = 0
    badges_awarded: list[AwardedBadgeResponse] = []


# --- Progress ---


class ProgressResponse(BaseModel):
    user_id: int
    total_points: int
    current_streak: int
    effective_streak: int
    longest_streak: int
    last_qualifying_date: date | None = None
    streak_start_date: date | None = None
    badges_earned: int = 0
    updated_at: datetime | None = None


class AchievementsResponse(BaseModel):
    user_id: int
    total_points: int
    badges_earned: int
    current_streak: int
    longest_streak: int
    total_workouts: int
    goals_completed: int
    total_activities: int
    rank: int | None = None


# --- Badges ---


class BadgeDefinitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    description: str
    category: str
    rarity: str
    criterion_kind: str
    target_metric: str
    target_value: float | None = None
    reward_points: int
    icon: str | None = None
    is_active: bool = True


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    slug: str
    name: str
    rarity: str
    reward_points: int
    earned_at: datetime
    metadata: dict = {}


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_earned: int


class AvailableBadgeResponse(BadgeDefinitionResponse):
    earned: bool = False
    earned_at: datetime | None = None


class AvailableBadgesResponse(BaseModel):
    badges: list[AvailableBadgeResponse]
    total_available: int
    total_earned: int


class CreateBadgeRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str
    category: str = Field(min_length=1, max_length=32)
    criterion_kind: str
    target_metric: str
    target_value: float | None = None
    reward_points: int = 10
    rarity: str = "common"
    icon: str | None = Field(default=None, max_length=16)
    slug: str | None = Field(default=None, max_length=64)
    sort_order: int = 0


class BadgeActiveRequest(BaseModel):
    is_active: bool


# --- Streak ---


class StreakResponse(BaseModel):
    current_streak: int
    effective_streak: int
    longest_streak: int
    last_qualifying_date: date | None = None
    streak_start_date: date | None = None
    total_workout_days: int
    workout_frequency: float
    next_milestone: int | None = None
    days_to_milestone: int | None = None
    streak_status: str


class StreakDayEntry(BaseModel):
    day: date
    has_workout: bool
    day_of_week: str


class StreakHistoryResponse(BaseModel):
    days: list[StreakDayEntry]


# --- Points ---


class PointsHistoryEntry(BaseModel):
    activity_type: str
    description: str
    points_earned: int
    related_entity_id: str | None = None
    occurred_at: datetime


class PointsHistoryResponse(BaseModel):
    entries: list[PointsHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Leaderboard ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: int
    display_name: str
    value: int


class LeaderboardResponse(BaseModel):
    metric: str
    entries: list[LeaderboardEntryResponse]


class RankResponse(BaseModel):
    user_id: int
    metric: str
    rank: int
    total_ranked: int


# --- Admin ---


class SweepRequest(BaseModel):
    as_of: date | None = None


class SweepResponse(BaseModel):
    as_of: date
    streaks_broken: int
    user_ids: list[int]
