"""Default badge catalog, upserted on startup."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import BadgeDefinition
from vitality.progress.badge_catalog import validate_criterion

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Workout
    {
        "slug": "first_step",
        "name": "First Step",
        "description": "Complete your first workout",
        "category": "workout",
        "rarity": "common",
        "criterion_kind": "count",
        "target_metric": "workouts_completed",
        "target_value": 1,
        "reward_points": 10,
        "icon": "\U0001f3af",
        "sort_order": 1,
    },
    {
        "slug": "week_warrior",
        "name": "Week Warrior",
        "description": "Maintain a 7-day workout streak",
        "category": "streak",
        "rarity": "rare",
        "criterion_kind": "streak",
        "target_metric": "workout_streak",
        "target_value": 7,
        "reward_points": 50,
        "icon": "\U0001f525",
        "sort_order": 2,
    },
    {
        "slug": "month_master",
        "name": "Month Master",
        "description": "Maintain a 30-day workout streak",
        "category": "streak",
        "rarity": "epic",
        "criterion_kind": "streak",
        "target_metric": "workout_streak",
        "target_value": 30,
        "reward_points": 200,
        "icon": "\U0001f4aa",
        "sort_order": 3,
    },
    {
        "slug": "century_club",
        "name": "Century Club",
        "description": "Complete 100 workouts",
        "category": "milestone",
        "rarity": "legendary",
        "criterion_kind": "count",
        "target_metric": "workouts_completed",
        "target_value": 100,
        "reward_points": 500,
        "icon": "\U0001f451",
        "sort_order": 4,
    },
    # Nutrition
    {
        "slug": "meal_planner",
        "name": "Meal Planner",
        "description": "Log your first completed meal",
        "category": "nutrition",
        "rarity": "common",
        "criterion_kind": "count",
        "target_metric": "meals_logged",
        "target_value": 1,
        "reward_points": 10,
        "icon": "\U0001f34e",
        "sort_order": 5,
    },
    {
        "slug": "hydration_hero",
        "name": "Hydration Hero",
        "description": "Meet your water intake goal 7 days in a row",
        "category": "nutrition",
        "rarity": "rare",
        "criterion_kind": "streak",
        "target_metric": "water_goal_streak",
        "target_value": 7,
        "reward_points": 50,
        "icon": "\U0001f4a7",
        "sort_order": 6,
    },
    # Weight
    {
        "slug": "first_pound",
        "name": "First Pound",
        "description": "Lose your first kilogram",
        "category": "milestone",
        "rarity": "common",
        "criterion_kind": "accumulated_value",
        "target_metric": "weight_lost",
        "target_value": 1,
        "reward_points": 20,
        "icon": "⚖️",
        "sort_order": 7,
    },
    {
        "slug": "transformation",
        "name": "Transformation",
        "description": "Reach your goal weight",
        "category": "milestone",
        "rarity": "legendary",
        "criterion_kind": "custom",
        "target_metric": "goal_weight_reached",
        "target_value": None,
        "reward_points": 1000,
        "icon": "\U0001f31f",
        "sort_order": 8,
    },
    # Social
    {
        "slug": "community_member",
        "name": "Community Member",
        "description": "Join the community",
        "category": "social",
        "rarity": "common",
        "criterion_kind": "custom",
        "target_metric": "community_joined",
        "target_value": None,
        "reward_points": 5,
        "icon": "\U0001f465",
        "sort_order": 9,
    },
    {
        "slug": "motivator",
        "name": "Motivator",
        "description": "Encourage 10 community members",
        "category": "social",
        "rarity": "rare",
        "criterion_kind": "count",
        "target_metric": "encouragements_given",
        "target_value": 10,
        "reward_points": 50,
        "icon": "\U0001f4ac",
        "sort_order": 10,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the default badge definitions by slug. Returns number of badges seeded.

    Existing rows keep their ``is_active`` flag so an admin toggle survives restarts.
    """
    result = await db.execute(
        select(BadgeDefinition).where(BadgeDefinition.slug.in_([b["slug"] for b in BADGE_SEED_DATA]))
    )
    existing = {badge.slug: badge for badge in result.scalars()}

    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        validate_criterion(badge_data["criterion_kind"], badge_data["target_metric"], badge_data["target_value"])
        badge = existing.get(badge_data["slug"])
        if badge is None:
            db.add(BadgeDefinition(**badge_data, is_active=True))
        else:
            for key, value in badge_data.items():
                setattr(badge, key, value)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
