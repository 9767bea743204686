"""Badge catalog administration: create, toggle and list badge definitions."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vitality.db.models import BadgeDefinition
from vitality.errors import NotFoundError, ValidationError
from vitality.progress.criteria import CriterionKind, is_registered, parse_criterion_kind

logger = logging.getLogger(__name__)

RARITIES = ("common", "rare", "epic", "legendary")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_RE.sub("_", name.lower()).strip("_")


def validate_criterion(criterion_kind: str, target_metric: str, target_value: float | None) -> CriterionKind:
    """Check a criterion against the registry. Returns the parsed kind."""
    try:
        kind = parse_criterion_kind(criterion_kind)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown criterion kind: {criterion_kind}", criterion_kind=criterion_kind
        ) from exc
    if not is_registered(kind, target_metric):
        raise ValidationError(
            f"Unsupported criterion: {kind.value}/{target_metric}",
            criterion_kind=kind.value,
            target_metric=target_metric,
        )
    if kind is not CriterionKind.CUSTOM and target_value is None:
        raise ValidationError(
            f"target_value is required for {kind.value} criteria", target_metric=target_metric
        )
    if target_value is not None and target_value <= 0:
        raise ValidationError("target_value must be > 0", target_value=target_value)
    return kind


async def get_badge(db: AsyncSession, badge_id: int) -> BadgeDefinition:
    badge = await db.get(BadgeDefinition, badge_id)
    if badge is None:
        raise NotFoundError(f"Badge {badge_id} not found", badge_id=badge_id)
    return badge


async def get_badge_by_slug(db: AsyncSession, slug: str) -> BadgeDefinition | None:
    """Fetch a badge definition by slug."""
    result = await db.execute(select(BadgeDefinition).where(BadgeDefinition.slug == slug))
    return result.scalar_one_or_none()


async def create_badge(
    db: AsyncSession,
    name: str,
    description: str,
    category: str,
    criterion_kind: str,
    target_metric: str,
    target_value: float | None = None,
    reward_points: int = 10,
    rarity: str = "common",
    icon: str | None = None,
    slug: str | None = None,
    sort_order: int = 0,
) -> BadgeDefinition:
    """Add a badge to the catalog and commit.

    Raises ValidationError for unregistered criteria, a missing target on a
    non-custom criterion, bad reward or rarity, or a duplicate name/slug.
    """
    kind = validate_criterion(criterion_kind, target_metric, target_value)
    if reward_points < 0:
        raise ValidationError("reward_points must be >= 0", reward_points=reward_points)
    if rarity not in RARITIES:
        raise ValidationError(f"Unknown rarity: {rarity}", rarity=rarity)
    slug = slug or slugify(name)

    existing = await db.execute(
        select(BadgeDefinition.id).where(or_(BadgeDefinition.name == name, BadgeDefinition.slug == slug))
    )
    if existing.first() is not None:
        raise ValidationError(f"Badge name or slug already exists: {name}", name=name, slug=slug)

    badge = BadgeDefinition(
        slug=slug,
        name=name,
        description=description,
        category=category,
        rarity=rarity,
        criterion_kind=kind.value,
        target_metric=target_metric,
        target_value=None if kind is CriterionKind.CUSTOM else target_value,
        reward_points=reward_points,
        icon=icon,
        sort_order=sort_order,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(badge)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ValidationError(f"Badge name or slug already exists: {name}", name=name, slug=slug) from exc

    logger.info("Created badge %s (%s/%s)", slug, kind.value, target_metric)
    return badge


async def set_badge_active(db: AsyncSession, badge_id: int, active: bool) -> BadgeDefinition:
    """Enable or disable evaluation of a badge. Earned instances are kept."""
    badge = await get_badge(db, badge_id)
    badge.is_active = active
    await db.commit()
    logger.info("Badge %s %s", badge.slug, "enabled" if active else "disabled")
    return badge


async def list_badges(db: AsyncSession, active_only: bool = False) -> list[BadgeDefinition]:
    """Catalog in evaluation order (sort_order, id)."""
    stmt = select(BadgeDefinition).order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    if active_only:
        stmt = stmt.where(BadgeDefinition.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())
