"""Progress engine tables.

Creates users (read model), user_progress, activity_ledger,
badge_definitions, user_badges, biometric_samples, goals and the
progress_events outbox.

Revision ID: 001_progress_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progress_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (owned upstream; created here only if missing) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            account_status VARCHAR(16) NOT NULL DEFAULT 'active',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Progress record ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_points BIGINT NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_qualifying_date DATE,
            streak_start_date DATE,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_progress_total_points_non_negative CHECK (total_points >= 0),
            CONSTRAINT ck_user_progress_current_streak_non_negative CHECK (current_streak >= 0),
            CONSTRAINT ck_user_progress_longest_covers_current CHECK (longest_streak >= current_streak)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_progress_points
        ON user_progress(total_points DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_progress_sweep
        ON user_progress(last_qualifying_date)
        WHERE current_streak > 0
    """)

    # --- Activity ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_type VARCHAR(32) NOT NULL,
            description VARCHAR(256) NOT NULL,
            related_entity_id VARCHAR(64),
            points_earned INTEGER NOT NULL DEFAULT 0,
            occurred_at TIMESTAMPTZ NOT NULL,
            occurred_on DATE NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            idempotency_key VARCHAR(256) UNIQUE,
            CONSTRAINT ck_activity_ledger_points_earned_non_negative CHECK (points_earned >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_activity_ledger_user_type
        ON activity_ledger(user_id, activity_type)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_activity_ledger_user_occurred
        ON activity_ledger(user_id, occurred_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_activity_ledger_occurred_at
        ON activity_ledger(occurred_at)
    """)

    # --- Badge definitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) UNIQUE NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            criterion_kind VARCHAR(32) NOT NULL,
            target_metric VARCHAR(64) NOT NULL,
            target_value DOUBLE PRECISION,
            reward_points INTEGER NOT NULL DEFAULT 10,
            icon VARCHAR(16),
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- User badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            metadata JSONB NOT NULL DEFAULT '{}',
            CONSTRAINT uq_user_badges_user_badge UNIQUE (user_id, badge_id)
        )
    """)

    # --- Domain state read by badge criteria ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS biometric_samples (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            sample_type VARCHAR(32) NOT NULL,
            value DOUBLE PRECISION NOT NULL,
            unit VARCHAR(16),
            recorded_on DATE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_biometric_samples_user_type_day
        ON biometric_samples(user_id, sample_type, recorded_on)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS goals (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            goal_type VARCHAR(32) NOT NULL,
            title VARCHAR(128) NOT NULL DEFAULT '',
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            completed_at TIMESTAMPTZ
        )
    """)

    # --- Event outbox ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS progress_events (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            event_type VARCHAR(64) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            published_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_progress_events_unpublished
        ON progress_events(id)
        WHERE published_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS progress_events CASCADE")
    op.execute("DROP TABLE IF EXISTS goals CASCADE")
    op.execute("DROP TABLE IF EXISTS biometric_samples CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS activity_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS user_progress CASCADE")
