"""Activity ledger: append-only scored events, the source of truth for counts."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from vitality.db.models import ActivityLedgerEntry
from vitality.errors import ConflictError, PersistenceError, ValidationError
from vitality.progress.constants import ActivityType, parse_activity_type

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 256


def utc_day(moment: datetime) -> date:
    """Calendar day of ``moment`` at the UTC midnight boundary. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()


def activity_idempotency_key(
    user_id: int,
    activity_type: ActivityType,
    day: date,
    related_entity_id: str | None = None,
) -> str:
    """Key that collapses repeats of the same event on the same UTC day."""
    return f"activity:{user_id}:{activity_type.value}:{day.isoformat()}:{related_entity_id or ''}"


async def find_by_idempotency_key(db: AsyncSession, idempotency_key: str) -> ActivityLedgerEntry | None:
    """Return the entry already written under ``idempotency_key``, if any."""
    result = await db.execute(
        select(ActivityLedgerEntry).where(ActivityLedgerEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def record(
    db: AsyncSession,
    user_id: int,
    activity_type: ActivityType | str,
    description: str,
    points_earned: int = 0,
    related_entity_id: str | None = None,
    occurred_at: datetime | None = None,
    idempotency_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLedgerEntry:
    """Append an immutable ledger entry and flush it.

    A duplicate idempotency key, or a stale progress row flushed alongside,
    means a concurrent writer got there first and surfaces as ConflictError.
    Other storage failures surface as PersistenceError. Either way the caller
    rolls back the whole unit of work.
    """
    try:
        activity = parse_activity_type(activity_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown activity type: {activity_type}", activity_type=str(activity_type)) from exc
    if points_earned < 0:
        raise ValidationError("points_earned must be >= 0", points_earned=points_earned)
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description longer than {MAX_DESCRIPTION_LENGTH} characters", length=len(description)
        )

    occurred_at = occurred_at or datetime.now(timezone.utc)
    entry = ActivityLedgerEntry(
        user_id=user_id,
        activity_type=activity.value,
        description=description,
        related_entity_id=related_entity_id,
        points_earned=points_earned,
        occurred_at=occurred_at,
        occurred_on=utc_day(occurred_at),
        entry_metadata=metadata or {},
        idempotency_key=idempotency_key,
    )
    db.add(entry)
    try:
        await db.flush()
    except (IntegrityError, StaleDataError) as exc:
        raise ConflictError("Concurrent write on ledger or progress", user_id=user_id) from exc
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to write ledger entry", user_id=user_id) from exc
    return entry


async def count_entries(
    db: AsyncSession,
    user_id: int,
    activity_type: ActivityType | str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    metadata_match: dict[str, str] | None = None,
) -> int:
    """Count ledger entries for a user, optionally by type, window and metadata values."""
    stmt = select(func.count()).select_from(ActivityLedgerEntry).where(ActivityLedgerEntry.user_id == user_id)
    if activity_type is not None:
        stmt = stmt.where(ActivityLedgerEntry.activity_type == parse_activity_type(activity_type).value)
    if since is not None:
        stmt = stmt.where(ActivityLedgerEntry.occurred_at >= since)
    if until is not None:
        stmt = stmt.where(ActivityLedgerEntry.occurred_at < until)
    for key, value in (metadata_match or {}).items():
        stmt = stmt.where(ActivityLedgerEntry.entry_metadata[key].as_string() == value)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def count_active_days(
    db: AsyncSession,
    user_id: int,
    activity_type: ActivityType | str,
    since_day: date | None = None,
) -> int:
    """Number of distinct UTC days with at least one entry of ``activity_type``."""
    stmt = (
        select(func.count(func.distinct(ActivityLedgerEntry.occurred_on)))
        .where(
            ActivityLedgerEntry.user_id == user_id,
            ActivityLedgerEntry.activity_type == parse_activity_type(activity_type).value,
        )
    )
    if since_day is not None:
        stmt = stmt.where(ActivityLedgerEntry.occurred_on >= since_day)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def days_with_activity(
    db: AsyncSession,
    user_id: int,
    activity_type: ActivityType | str,
    start_day: date,
    end_day: date,
) -> set[date]:
    """UTC days in [start_day, end_day] that have an entry of ``activity_type``."""
    result = await db.execute(
        select(ActivityLedgerEntry.occurred_on)
        .where(
            ActivityLedgerEntry.user_id == user_id,
            ActivityLedgerEntry.activity_type == parse_activity_type(activity_type).value,
            ActivityLedgerEntry.occurred_on >= start_day,
            ActivityLedgerEntry.occurred_on <= end_day,
        )
        .distinct()
    )
    return set(result.scalars())


async def latest_entries_by_type(db: AsyncSession, user_id: int) -> dict[str, ActivityLedgerEntry]:
    """Most recent entry per activity type for a user."""
    latest_ids = (
        select(func.max(ActivityLedgerEntry.id).label("id"))
        .where(ActivityLedgerEntry.user_id == user_id)
        .group_by(ActivityLedgerEntry.activity_type)
        .subquery()
    )
    result = await db.execute(
        select(ActivityLedgerEntry).where(ActivityLedgerEntry.id.in_(select(latest_ids.c.id)))
    )
    return {entry.activity_type: entry for entry in result.scalars()}


async def get_points_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[ActivityLedgerEntry], int]:
    """Entries that earned points, newest first (paginated)."""
    offset = (page - 1) * per_page
    base = (ActivityLedgerEntry.user_id == user_id, ActivityLedgerEntry.points_earned > 0)

    total_result = await db.execute(select(func.count()).select_from(ActivityLedgerEntry).where(*base))
    total = int(total_result.scalar_one())

    result = await db.execute(
        select(ActivityLedgerEntry)
        .where(*base)
        .order_by(ActivityLedgerEntry.occurred_at.desc(), ActivityLedgerEntry.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def prune_expired_entries(
    db: AsyncSession,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Delete entries older than the retention window. Returns rows removed."""
    if retention_days <= 0:
        return 0
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    result = await db.execute(
        delete(ActivityLedgerEntry).where(ActivityLedgerEntry.occurred_at < cutoff)
    )
    await db.commit()
    removed = result.rowcount or 0
    logger.info("Pruned %d ledger entries older than %s", removed, cutoff.isoformat())
    return removed
