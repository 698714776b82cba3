"""Progression tables.

Creates accounts, topics, topic_progress, badge_definitions and
earned_badges for the progression engine.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            subscription_tier VARCHAR(16) NOT NULL DEFAULT 'explorer',
            total_xp INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            weekly_xp_earned INTEGER NOT NULL DEFAULT 0,
            weekly_xp_goal INTEGER NOT NULL DEFAULT 500,
            missions_this_week INTEGER NOT NULL DEFAULT 0,
            week_start_date DATE,
            daily_streak INTEGER NOT NULL DEFAULT 0,
            missions_today INTEGER NOT NULL DEFAULT 0,
            last_mission_date DATE,
            vacation_passes INTEGER NOT NULL DEFAULT 0,
            last_term_replenish_date DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CHECK (total_xp >= 0),
            CHECK (vacation_passes >= 0)
        )
    """)

    # --- Topics ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS topics (
            id BIGSERIAL PRIMARY KEY,
            subject_slug VARCHAR(64) NOT NULL,
            slug VARCHAR(64) NOT NULL,
            name VARCHAR(128) NOT NULL
        )
    """)

    # --- Topic Progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS topic_progress (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            topic_id BIGINT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
            xp_earned INTEGER NOT NULL DEFAULT 0,
            weekly_xp INTEGER NOT NULL DEFAULT 0,
            missions_this_week INTEGER NOT NULL DEFAULT 0,
            week_start_date DATE,
            is_mastered BOOLEAN NOT NULL DEFAULT false,
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_topic_progress_account_topic UNIQUE (account_id, topic_id),
            CHECK (weekly_xp <= xp_earned)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_topic_progress_account_id
        ON topic_progress(account_id)
    """)

    # --- Badge Definitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id BIGSERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            emoji VARCHAR(16) NOT NULL DEFAULT '',
            trigger_kind VARCHAR(32) NOT NULL,
            threshold INTEGER NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- Earned Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS earned_badges (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            badge_id BIGINT NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_earned_badges_account_badge UNIQUE (account_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_earned_badges_account_id
        ON earned_badges(account_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS earned_badges")
    op.execute("DROP TABLE IF EXISTS badge_definitions")
    op.execute("DROP TABLE IF EXISTS topic_progress")
    op.execute("DROP TABLE IF EXISTS topics")
    op.execute("DROP TABLE IF EXISTS accounts")
