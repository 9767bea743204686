"""Per-user serialization through the engine, on a file database with separate connections."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import Update, func, select

from vitality.db.models import ActivityLedgerEntry, ProgressEvent, User, UserProgress
from vitality.progress import streak_service
from vitality.progress.engine import ProgressEngine


@pytest.fixture
def file_engine(file_session_factory, test_settings, clock) -> ProgressEngine:
    return ProgressEngine(file_session_factory, settings=test_settings, clock=clock)


async def _user_with_progress(session_factory, **progress_fields) -> int:
    async with session_factory() as db:
        user = User(display_name="racer", created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        db.add(user)
        await db.flush()
        db.add(UserProgress(user_id=user.id, updated_at=datetime.now(timezone.utc), **progress_fields))
        await db.commit()
        return user.id


async def _load_progress(session_factory, user_id: int) -> UserProgress:
    async with session_factory() as db:
        result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
        return result.scalar_one()


class TestConcurrentActivities:
    """Two writers for the same user at once."""

    @pytest.mark.asyncio
    async def test_same_workout_twice_records_once(self, file_engine, file_session_factory):
        user_id = await _user_with_progress(file_session_factory)

        results = await asyncio.gather(
            file_engine.record_qualifying_activity(user_id, "workout_completed"),
            file_engine.record_qualifying_activity(user_id, "workout_completed"),
        )

        assert sorted(r.duplicate for r in results) == [False, True]
        async with file_session_factory() as db:
            entries = await db.execute(
                select(func.count()).select_from(ActivityLedgerEntry).where(ActivityLedgerEntry.user_id == user_id)
            )
            assert entries.scalar_one() == 1
        progress = await _load_progress(file_session_factory, user_id)
        assert progress.total_points == 15
        assert progress.current_streak == 1

    @pytest.mark.asyncio
    async def test_different_activities_both_land(self, file_engine, file_session_factory):
        user_id = await _user_with_progress(file_session_factory)

        await asyncio.gather(
            file_engine.record_qualifying_activity(user_id, "workout_completed"),
            file_engine.record_qualifying_activity(user_id, "goal_completed", related_entity_id="goal:1"),
        )

        progress = await _load_progress(file_session_factory, user_id)
        assert progress.total_points == 65
        assert progress.current_streak == 1


class TestSweepRace:
    """The sweep re-checks the row at write time."""

    @pytest.mark.asyncio
    async def test_workout_between_read_and_reset_wins(self, file_engine, file_session_factory, clock, monkeypatch):
        as_of = clock().date()
        user_id = await _user_with_progress(
            file_session_factory,
            current_streak=3,
            longest_streak=3,
            last_qualifying_date=as_of - timedelta(days=3),
            streak_start_date=as_of - timedelta(days=5),
        )

        async with file_session_factory() as sweeper:
            execute = sweeper.execute
            raced = []

            async def execute_after_workout(statement, *args, **kwargs):
                if isinstance(statement, Update) and not raced:
                    raced.append(await file_engine.record_qualifying_activity(user_id, "workout_completed"))
                return await execute(statement, *args, **kwargs)

            monkeypatch.setattr(sweeper, "execute", execute_after_workout)
            broken = await streak_service.run_daily_sweep(sweeper, as_of)

        assert broken == []
        assert raced[0].current_streak == 1
        progress = await _load_progress(file_session_factory, user_id)
        assert progress.current_streak == 1
        assert progress.last_qualifying_date == as_of
        assert progress.version == 2
        async with file_session_factory() as db:
            events = await db.execute(select(ProgressEvent).where(ProgressEvent.event_type == "streak_broken"))
            assert list(events.scalars()) == []
