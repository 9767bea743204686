"""Domain events emitted for the external notifier.

Events are written to the ``progress_events`` outbox inside the same
transaction as the state change that produced them. After commit they are
published to Redis pub/sub; anything left unpublished (Redis down, crash
between commit and publish) is picked up by ``EventPublisher.publish_pending``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import ProgressEvent

logger = logging.getLogger(__name__)

_PENDING_KEY = "vitality.pending_events"


@dataclass(frozen=True)
class StreakMilestoneReached:
    user_id: int
    streak_length: int

    event_type: ClassVar[str] = "streak_milestone_reached"


@dataclass(frozen=True)
class StreakBroken:
    user_id: int
    prior_length: int

    event_type: ClassVar[str] = "streak_broken"


@dataclass(frozen=True)
class BadgeEarned:
    user_id: int
    badge_id: int
    badge_slug: str = ""
    badge_name: str = ""
    reward_points: int = 0

    event_type: ClassVar[str] = "badge_earned"


DomainEvent = StreakMilestoneReached | StreakBroken | BadgeEarned


def emit_event(db: AsyncSession, event: DomainEvent) -> ProgressEvent:
    """Stage an event in the outbox. Published only once the session commits."""
    row = ProgressEvent(
        user_id=event.user_id,
        event_type=event.event_type,
        payload=asdict(event),
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.info.setdefault(_PENDING_KEY, []).append(row)
    return row


def staged_events(db: AsyncSession) -> list[ProgressEvent]:
    """Events staged on this session since the last publish or discard."""
    return list(db.info.get(_PENDING_KEY, []))


def discard_staged_events(db: AsyncSession) -> None:
    """Forget staged events after a rollback."""
    db.info.pop(_PENDING_KEY, None)


def _encode(row: ProgressEvent) -> str:
    return json.dumps({"event": row.event_type, "event_id": row.id, **row.payload}, default=str)


class EventPublisher:
    """Publishes committed outbox rows to a Redis pub/sub channel."""

    def __init__(self, redis: Any, channel: str) -> None:  # noqa: ANN401
        self.redis = redis
        self.channel = channel

    async def publish_staged(self, db: AsyncSession) -> int:
        """Publish events staged on ``db`` after it committed. Returns number published."""
        rows = staged_events(db)
        discard_staged_events(db)
        if not rows:
            return 0
        published = await self._publish_rows(rows)
        if published:
            await db.commit()
        return published

    async def publish_pending(self, db: AsyncSession, limit: int = 500) -> int:
        """Relay outbox rows that were committed but never published."""
        result = await db.execute(
            select(ProgressEvent)
            .where(ProgressEvent.published_at.is_(None))
            .order_by(ProgressEvent.id)
            .limit(limit)
        )
        rows = list(result.scalars())
        published = await self._publish_rows(rows)
        if published:
            await db.commit()
        return published

    async def _publish_rows(self, rows: list[ProgressEvent]) -> int:
        if self.redis is None:
            return 0
        published = 0
        now = datetime.now(timezone.utc)
        for row in rows:
            try:
                await self.redis.publish(self.channel, _encode(row))
            except Exception:
                logger.warning("Failed to publish %s event %s", row.event_type, row.id, exc_info=True)
                break
            row.published_at = now
            published += 1
        return published
