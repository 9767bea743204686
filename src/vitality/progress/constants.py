"""Activity types, scoring table and streak milestones."""

from __future__ import annotations

from enum import Enum


class ActivityType(str, Enum):
    """Ledger activity types. Inbound types are scored; the rest are engine-written."""

    WORKOUT_COMPLETED = "workout_completed"
    MEAL_LOGGED = "meal_logged"
    BIOMETRIC_LOGGED = "biometric_logged"
    GOAL_CREATED = "goal_created"
    GOAL_PROGRESS_UPDATED = "goal_progress_updated"
    GOAL_COMPLETED = "goal_completed"
    COMMUNITY_POST = "community_post"
    COMMUNITY_COMMENT = "community_comment"
    WORKOUT_PLAN_GENERATED = "workout_plan_generated"
    MEAL_PLAN_GENERATED = "meal_plan_generated"
    # Written by the engine itself
    BADGE_EARNED = "badge_earned"
    STREAK_MILESTONE = "streak_milestone"


# Points credited per inbound event
ACTIVITY_POINTS: dict[ActivityType, int] = {
    ActivityType.WORKOUT_COMPLETED: 15,
    ActivityType.MEAL_LOGGED: 5,
    ActivityType.BIOMETRIC_LOGGED: 5,
    ActivityType.GOAL_CREATED: 10,
    ActivityType.GOAL_PROGRESS_UPDATED: 5,
    ActivityType.GOAL_COMPLETED: 50,
    ActivityType.COMMUNITY_POST: 10,
    ActivityType.COMMUNITY_COMMENT: 5,
    ActivityType.WORKOUT_PLAN_GENERATED: 20,
    ActivityType.MEAL_PLAN_GENERATED: 20,
}

ACTIVITY_DESCRIPTIONS: dict[ActivityType, str] = {
    ActivityType.WORKOUT_COMPLETED: "Completed workout day",
    ActivityType.MEAL_LOGGED: "Completed meal",
    ActivityType.BIOMETRIC_LOGGED: "Logged biometric data",
    ActivityType.GOAL_CREATED: "Created new goal",
    ActivityType.GOAL_PROGRESS_UPDATED: "Updated goal progress",
    ActivityType.GOAL_COMPLETED: "Completed goal",
    ActivityType.COMMUNITY_POST: "Created community post",
    ActivityType.COMMUNITY_COMMENT: "Added comment",
    ActivityType.WORKOUT_PLAN_GENERATED: "Generated workout plan",
    ActivityType.MEAL_PLAN_GENERATED: "Generated meal plan",
}

# Types that advance the day streak
QUALIFYING_ACTIVITIES: frozenset[ActivityType] = frozenset({ActivityType.WORKOUT_COMPLETED})

# Types callers may submit; engine-written types are rejected on the inbound path
INBOUND_ACTIVITIES: frozenset[ActivityType] = frozenset(ACTIVITY_POINTS)

# --- Streak milestones ---
STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 21, 30, 50, 100, 365)

STREAK_MILESTONE_BONUS: dict[int, int] = {
    7: 50,
    30: 200,
    100: 500,
}


def parse_activity_type(value: str | ActivityType) -> ActivityType:
    """Coerce a raw string into an ActivityType. Raises ValueError if unknown."""
    if isinstance(value, ActivityType):
        return value
    return ActivityType(value)


def next_milestone(current_streak: int) -> int | None:
    """First milestone strictly above the current streak, or None past the last one."""
    for milestone in STREAK_MILESTONES:
        if milestone > current_streak:
            return milestone
    return None
