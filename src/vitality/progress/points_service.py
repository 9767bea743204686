"""Points account: the running total on the user's progress record.

Points are never credited without a ledger entry describing why; use
``credit_with_entry`` so both land in the same flush.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import ActivityLedgerEntry, User, UserProgress
from vitality.errors import NotFoundError, ValidationError
from vitality.progress import ledger_service
from vitality.progress.constants import ActivityType

logger = logging.getLogger(__name__)


async def get_progress(db: AsyncSession, user_id: int) -> UserProgress:
    """Fetch a user's progress record. Raises NotFoundError if absent."""
    result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
    progress = result.scalar_one_or_none()
    if progress is None:
        raise NotFoundError(f"No progress record for user {user_id}", user_id=user_id)
    return progress


async def get_or_create_progress(db: AsyncSession, user_id: int) -> UserProgress:
    """Get the progress record, creating it for a known user on first touch."""
    result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
    progress = result.scalar_one_or_none()
    if progress is not None:
        return progress

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    progress = UserProgress(user_id=user_id, updated_at=datetime.now(timezone.utc))
    db.add(progress)
    await db.flush()
    return progress


def credit(progress: UserProgress, amount: int) -> int:
    """Add ``amount`` to the in-session total. Returns the new total."""
    if amount < 0:
        raise ValidationError("Credit amount must be >= 0", amount=amount)
    progress.total_points += amount
    progress.updated_at = datetime.now(timezone.utc)
    return progress.total_points


async def credit_with_entry(
    db: AsyncSession,
    progress: UserProgress,
    amount: int,
    activity_type: ActivityType,
    description: str,
    occurred_at: datetime | None = None,
    related_entity_id: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLedgerEntry:
    """Credit points and append the ledger entry explaining them, as one flush.

    The flush also bumps ``progress.version``; a concurrent writer on the same
    user makes it fail with StaleDataError, which the engine retries.
    """
    if amount < 0:
        raise ValidationError("Credit amount must be >= 0", amount=amount)
    credit(progress, amount)
    entry = await ledger_service.record(
        db,
        user_id=progress.user_id,
        activity_type=activity_type,
        description=description,
        points_earned=amount,
        related_entity_id=related_entity_id,
        occurred_at=occurred_at,
        idempotency_key=idempotency_key,
        metadata=metadata,
    )
    logger.debug("Credited %d points to user %d (%s)", amount, progress.user_id, activity_type.value)
    return entry
