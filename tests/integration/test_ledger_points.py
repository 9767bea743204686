"""Ledger and points account tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from vitality.db.models import ActivityLedgerEntry, UserProgress
from vitality.errors import ConflictError, NotFoundError, ValidationError
from vitality.progress import ledger_service, points_service
from vitality.progress.constants import ActivityType

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class TestRecord:
    """Test ledger appends."""

    @pytest.mark.asyncio
    async def test_record_sets_utc_day(self, db_session, make_user):
        user = await make_user()
        entry = await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "Completed meal", 5,
            occurred_at=datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc),
        )
        await db_session.commit()
        assert entry.occurred_on.isoformat() == "2026-03-02"
        assert entry.points_earned == 5

    @pytest.mark.asyncio
    async def test_unknown_activity_type(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(ValidationError):
            await ledger_service.record(db_session, user.id, "yoga_nap", "?", 5)

    @pytest.mark.asyncio
    async def test_negative_points(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(ValidationError):
            await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "x", -1)

    @pytest.mark.asyncio
    async def test_overlong_description_rejected(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(ValidationError):
            await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "x" * 257, 5)

        entry = await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "x" * 256, 5)
        assert len(entry.description) == 256

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key_conflicts(self, db_session, make_user):
        user = await make_user()
        await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "x", 5, idempotency_key="k1")
        await db_session.commit()
        with pytest.raises(ConflictError):
            await ledger_service.record(
                db_session, user.id, ActivityType.MEAL_LOGGED, "x", 5, idempotency_key="k1"
            )
        await db_session.rollback()


class TestQueries:
    """Test ledger counts and history."""

    @pytest.mark.asyncio
    async def test_count_entries_by_type_and_metadata(self, db_session, make_user):
        user = await make_user()
        for i, post_type in enumerate(["motivation", "question", "motivation"]):
            await ledger_service.record(
                db_session, user.id, ActivityType.COMMUNITY_POST, "post", 10,
                occurred_at=NOW + timedelta(minutes=i), metadata={"post_type": post_type},
            )
        await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "meal", 5, occurred_at=NOW)
        await db_session.commit()

        assert await ledger_service.count_entries(db_session, user.id) == 4
        assert await ledger_service.count_entries(db_session, user.id, ActivityType.COMMUNITY_POST) == 3
        assert await ledger_service.count_entries(
            db_session, user.id, ActivityType.COMMUNITY_POST, metadata_match={"post_type": "motivation"}
        ) == 2

    @pytest.mark.asyncio
    async def test_count_entries_window(self, db_session, make_user):
        user = await make_user()
        for days_ago in (0, 1, 10):
            await ledger_service.record(
                db_session, user.id, ActivityType.WORKOUT_COMPLETED, "w", 15,
                occurred_at=NOW - timedelta(days=days_ago),
            )
        await db_session.commit()
        since = NOW - timedelta(days=2)
        assert await ledger_service.count_entries(db_session, user.id, "workout_completed", since=since) == 2

    @pytest.mark.asyncio
    async def test_points_history_newest_first_and_skips_zero(self, db_session, make_user):
        user = await make_user()
        await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "old", 5, occurred_at=NOW)
        await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "free", 0, occurred_at=NOW + timedelta(hours=1)
        )
        await ledger_service.record(
            db_session, user.id, ActivityType.GOAL_COMPLETED, "new", 50, occurred_at=NOW + timedelta(hours=2)
        )
        await db_session.commit()

        entries, total = await ledger_service.get_points_history(db_session, user.id, page=1, per_page=10)
        assert total == 2
        assert [e.description for e in entries] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_latest_entries_by_type(self, db_session, make_user):
        user = await make_user()
        await ledger_service.record(db_session, user.id, ActivityType.MEAL_LOGGED, "first", 5, occurred_at=NOW)
        await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "second", 5, occurred_at=NOW + timedelta(hours=1)
        )
        await ledger_service.record(db_session, user.id, ActivityType.WORKOUT_COMPLETED, "w", 15, occurred_at=NOW)
        await db_session.commit()

        latest = await ledger_service.latest_entries_by_type(db_session, user.id)
        assert latest["meal_logged"].description == "second"
        assert set(latest) == {"meal_logged", "workout_completed"}


class TestPrune:
    """Test retention pruning."""

    @pytest.mark.asyncio
    async def test_prunes_only_expired(self, db_session, make_user):
        user = await make_user()
        await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "old", 5, occurred_at=NOW - timedelta(days=91)
        )
        await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "recent", 5, occurred_at=NOW - timedelta(days=89)
        )
        await db_session.commit()

        removed = await ledger_service.prune_expired_entries(db_session, 90, now=NOW)

        assert removed == 1
        result = await db_session.execute(select(ActivityLedgerEntry.description))
        assert list(result.scalars()) == ["recent"]

    @pytest.mark.asyncio
    async def test_zero_retention_disables(self, db_session, make_user):
        user = await make_user()
        await ledger_service.record(
            db_session, user.id, ActivityType.MEAL_LOGGED, "old", 5, occurred_at=NOW - timedelta(days=900)
        )
        await db_session.commit()
        assert await ledger_service.prune_expired_entries(db_session, 0, now=NOW) == 0


class TestPoints:
    """Test the points account."""

    @pytest.mark.asyncio
    async def test_get_progress_missing(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(NotFoundError):
            await points_service.get_progress(db_session, user.id)

    @pytest.mark.asyncio
    async def test_get_or_create_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            await points_service.get_or_create_progress(db_session, 9999)

    @pytest.mark.asyncio
    async def test_credit_with_entry_moves_total_and_ledger_together(self, db_session, make_user):
        user = await make_user()
        progress = await points_service.get_or_create_progress(db_session, user.id)
        await points_service.credit_with_entry(db_session, progress, 15, ActivityType.WORKOUT_COMPLETED, "w")
        await points_service.credit_with_entry(db_session, progress, 5, ActivityType.MEAL_LOGGED, "m")
        await db_session.commit()

        assert progress.total_points == 20
        ledger_sum = sum(
            (await db_session.execute(
                select(ActivityLedgerEntry.points_earned).where(ActivityLedgerEntry.user_id == user.id)
            )).scalars()
        )
        assert ledger_sum == progress.total_points

    @pytest.mark.asyncio
    async def test_negative_credit_rejected(self, db_session, make_user):
        user = await make_user()
        progress = await points_service.get_or_create_progress(db_session, user.id)
        with pytest.raises(ValidationError):
            points_service.credit(progress, -5)


class TestOptimisticConcurrency:
    """Two sessions updating the same progress row."""

    @pytest.mark.asyncio
    async def test_stale_writer_gets_conflict(self, file_session_factory):
        from vitality.db.models import User

        async with file_session_factory() as setup:
            user = User(display_name="racer", created_at=NOW)
            setup.add(user)
            await setup.commit()
            progress = await points_service.get_or_create_progress(setup, user.id)
            await setup.commit()
            user_id = user.id
            assert progress.version == 1

        async with file_session_factory() as first, file_session_factory() as second:
            p1 = await points_service.get_progress(first, user_id)
            p2 = await points_service.get_progress(second, user_id)

            await points_service.credit_with_entry(second, p2, 10, ActivityType.MEAL_LOGGED, "winner")
            await second.commit()

            with pytest.raises(ConflictError):
                await points_service.credit_with_entry(first, p1, 5, ActivityType.MEAL_LOGGED, "loser")
            await first.rollback()

        async with file_session_factory() as check:
            row = (await check.execute(select(UserProgress).where(UserProgress.user_id == user_id))).scalar_one()
            assert row.total_points == 10
            assert row.version == 2
