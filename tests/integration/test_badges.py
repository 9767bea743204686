"""Badge catalog, criteria and award tests."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from vitality.db.models import ActivityLedgerEntry, BiometricSample, UserBadge
from vitality.errors import NotFoundError, ValidationError
from vitality.progress import badge_catalog, badge_service, points_service
from vitality.progress.criteria import CriterionContext, get_reader
from vitality.progress.seed import BADGE_SEED_DATA, seed_badges

TODAY = date(2026, 3, 2)


async def _badge_rows(session_factory, user_id: int) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id))
        return int(result.scalar_one())


class TestSeed:
    """Test default catalog seeding."""

    @pytest.mark.asyncio
    async def test_seeds_ten_badges(self, db_session):
        assert await seed_badges(db_session) == 10
        badges = await badge_catalog.list_badges(db_session)
        assert [b.slug for b in badges] == [b["slug"] for b in BADGE_SEED_DATA]

    @pytest.mark.asyncio
    async def test_reseed_is_idempotent_and_keeps_toggle(self, db_session):
        await seed_badges(db_session)
        motivator = await badge_catalog.get_badge_by_slug(db_session, "motivator")
        await badge_catalog.set_badge_active(db_session, motivator.id, False)

        await seed_badges(db_session)

        badges = await badge_catalog.list_badges(db_session)
        assert len(badges) == 10
        assert not next(b for b in badges if b.slug == "motivator").is_active


class TestCatalogAdmin:
    """Test create / toggle."""

    @pytest.mark.asyncio
    async def test_create_badge(self, db_session):
        badge = await badge_catalog.create_badge(
            db_session, "Soup Season", "Log 20 meals", "nutrition", "count", "meals_logged", 20, reward_points=30
        )
        assert badge.slug == "soup_season"
        assert badge.is_active

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, db_session, seeded_badges):
        with pytest.raises(ValidationError):
            await badge_catalog.create_badge(
                db_session, "First Step", "again", "workout", "count", "workouts_completed", 1
            )

    @pytest.mark.asyncio
    async def test_unregistered_metric_rejected(self, db_session):
        with pytest.raises(ValidationError):
            await badge_catalog.create_badge(db_session, "Nope", "x", "misc", "count", "naps_taken", 3)

    @pytest.mark.asyncio
    async def test_custom_target_dropped(self, db_session):
        badge = await badge_catalog.create_badge(
            db_session, "Joiner", "x", "social", "custom", "community_joined", 5
        )
        assert badge.target_value is None

    @pytest.mark.asyncio
    async def test_toggle_unknown_badge(self, db_session):
        with pytest.raises(NotFoundError):
            await badge_catalog.set_badge_active(db_session, 999, False)


class TestEvaluation:
    """Test awarding through the engine."""

    @pytest.mark.asyncio
    async def test_first_workout_awards_first_step(self, progress_engine, session_factory, make_user, seeded_badges):
        user = await make_user()

        result = await progress_engine.record_qualifying_activity(user.id, "workout_completed")

        assert [b.slug for b in result.badges_awarded] == ["first_step"]
        assert result.total_points == 15 + 10
        progress = await progress_engine.get_progress(user.id)
        assert progress["total_points"] == 25
        assert progress["badges_earned"] == 1

        async with session_factory() as db:
            entries = await db.execute(
                select(ActivityLedgerEntry).where(ActivityLedgerEntry.activity_type == "badge_earned")
            )
            entry = entries.scalar_one()
            assert entry.points_earned == 10
            assert entry.idempotency_key.startswith("badge:")

    @pytest.mark.asyncio
    async def test_no_duplicate_awards(self, progress_engine, session_factory, make_user, seeded_badges, clock):
        user = await make_user()
        await progress_engine.record_qualifying_activity(user.id, "workout_completed")
        clock.advance(days=1)
        result = await progress_engine.record_qualifying_activity(user.id, "workout_completed")

        assert result.badges_awarded == []
        assert await progress_engine.evaluate_badges(user.id) == []
        assert await _badge_rows(session_factory, user.id) == 1

    @pytest.mark.asyncio
    async def test_award_of_held_badge_is_noop(self, db_session, make_user, seeded_badges):
        user = await make_user()
        user_id = user.id
        progress = await points_service.get_or_create_progress(db_session, user_id)
        await db_session.commit()
        badge = await badge_catalog.get_badge_by_slug(db_session, "community_member")

        assert await badge_service.award_badge(db_session, progress, badge)
        progress = await points_service.get_progress(db_session, user_id)
        badge = await badge_catalog.get_badge_by_slug(db_session, "community_member")
        assert not await badge_service.award_badge(db_session, progress, badge)

        progress = await points_service.get_progress(db_session, user_id)
        assert progress.total_points == 5

    @pytest.mark.asyncio
    async def test_week_warrior_on_day_seven(self, progress_engine, make_user, seeded_badges, clock, redis_mock):
        user = await make_user()
        for _ in range(6):
            await progress_engine.record_qualifying_activity(user.id, "workout_completed")
            clock.advance(days=1)

        result = await progress_engine.record_qualifying_activity(user.id, "workout_completed")

        assert [b.slug for b in result.badges_awarded] == ["week_warrior"]
        # 7 workouts, 7-day bonus, First Step, Week Warrior
        assert result.total_points == 105 + 50 + 10 + 50
        assert any("badge_earned" in call.args[1] for call in redis_mock.publish.await_args_list)

    @pytest.mark.asyncio
    async def test_inactive_badge_not_awarded_but_kept(self, progress_engine, db_session, make_user, seeded_badges):
        user = await make_user()
        await progress_engine.record_qualifying_activity(user.id, "workout_completed")
        first_step = await badge_catalog.get_badge_by_slug(db_session, "first_step")
        meal = await badge_catalog.get_badge_by_slug(db_session, "meal_planner")
        await progress_engine.set_badge_active(first_step.id, False)
        await progress_engine.set_badge_active(meal.id, False)

        result = await progress_engine.record_qualifying_activity(user.id, "meal_logged")

        assert result.badges_awarded == []
        earned = await progress_engine.get_earned_badges(user.id)
        assert [ub.badge.slug for ub in earned] == ["first_step"]
        available = await progress_engine.get_available_badges(user.id)
        slugs = {item["badge"].slug: item["earned"] for item in available}
        assert slugs["first_step"] is True
        assert "meal_planner" not in slugs

    @pytest.mark.asyncio
    async def test_goal_weight_and_community(self, progress_engine, make_user, seeded_badges):
        user = await make_user()
        goal_id, _ = await progress_engine.create_goal(user.id, "weight", "Reach 75kg")
        completed = await progress_engine.complete_goal(user.id, goal_id)
        post = await progress_engine.record_qualifying_activity(
            user.id, "community_post", metadata={"post_type": "motivation"}
        )

        assert [b.slug for b in completed.badges_awarded] == ["transformation"]
        assert [b.slug for b in post.badges_awarded] == ["community_member"]

    @pytest.mark.asyncio
    async def test_complete_foreign_goal(self, progress_engine, make_user):
        owner = await make_user()
        other = await make_user()
        goal_id, _ = await progress_engine.create_goal(owner.id, "fitness")
        with pytest.raises(NotFoundError):
            await progress_engine.complete_goal(other.id, goal_id)

    @pytest.mark.asyncio
    async def test_completing_goal_twice_scores_once(self, progress_engine, session_factory, make_user, clock):
        user = await make_user()
        goal_id, _ = await progress_engine.create_goal(user.id, "fitness", "Run 5k")
        first = await progress_engine.complete_goal(user.id, goal_id)
        clock.advance(days=1)
        second = await progress_engine.complete_goal(user.id, goal_id)

        assert first.points_earned == 50
        assert first.duplicate is False
        assert second.duplicate is True
        assert second.points_earned == 0
        assert second.total_points == first.total_points

        async with session_factory() as db:
            completions = await db.execute(
                select(func.count())
                .select_from(ActivityLedgerEntry)
                .where(ActivityLedgerEntry.activity_type == "goal_completed")
            )
            assert completions.scalar_one() == 1


class TestMetricReaders:
    """Criteria that read domain state."""

    @pytest.mark.asyncio
    async def test_water_goal_streak_counts_back_from_today(self, db_session, make_user):
        user = await make_user()
        progress = await points_service.get_or_create_progress(db_session, user.id)
        for days_ago, ml in [(0, 2100), (1, 2500), (1, 300), (2, 2000), (3, 1500), (4, 2200)]:
            db_session.add(BiometricSample(
                user_id=user.id, sample_type="water_intake", value=ml, recorded_on=TODAY - timedelta(days=days_ago)
            ))
        await db_session.commit()

        ctx = CriterionContext(db=db_session, user_id=user.id, progress=progress, today=TODAY)
        assert await get_reader("streak", "water_goal_streak")(ctx) == 3.0

    @pytest.mark.asyncio
    async def test_weight_lost_first_minus_latest(self, db_session, make_user):
        user = await make_user()
        progress = await points_service.get_or_create_progress(db_session, user.id)
        for days_ago, kg in [(30, 82.0), (10, 80.5), (0, 80.8)]:
            db_session.add(BiometricSample(
                user_id=user.id, sample_type="weight", value=kg, recorded_on=TODAY - timedelta(days=days_ago)
            ))
        await db_session.commit()

        ctx = CriterionContext(db=db_session, user_id=user.id, progress=progress, today=TODAY)
        assert await get_reader("accumulated_value", "weight_lost")(ctx) == pytest.approx(1.2)

    @pytest.mark.asyncio
    async def test_weight_lost_without_samples(self, db_session, make_user):
        user = await make_user()
        progress = await points_service.get_or_create_progress(db_session, user.id)
        ctx = CriterionContext(db=db_session, user_id=user.id, progress=progress, today=TODAY)
        assert await get_reader("accumulated_value", "weight_lost")(ctx) == 0.0

    @pytest.mark.asyncio
    async def test_biometric_samples_feed_first_pound(self, progress_engine, make_user, seeded_badges, clock):
        user = await make_user()
        await progress_engine.record_biometric_sample(user.id, "weight", 81.0, unit="kg")
        clock.advance(days=7)
        result = await progress_engine.record_biometric_sample(user.id, "weight", 79.9, unit="kg")

        assert "first_pound" in [b.slug for b in result.badges_awarded]
