"""Catalog, enrollment, progression, leaderboard and outbox tables.

Revision ID: 001_treasure_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_treasure_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS age_band (
            id UUID PRIMARY KEY,
            label VARCHAR(64) NOT NULL,
            min_age INTEGER NOT NULL,
            max_age INTEGER NOT NULL,
            CONSTRAINT ck_age_span CHECK (min_age >= 0 AND max_age >= min_age)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS subcategory (
            id UUID PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            active BOOLEAN NOT NULL DEFAULT TRUE
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS subcategory_age_band (
            subcategory_id UUID NOT NULL REFERENCES subcategory(id) ON DELETE CASCADE,
            age_band_id UUID NOT NULL REFERENCES age_band(id) ON DELETE RESTRICT,
            PRIMARY KEY (subcategory_id, age_band_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS plan (
            id UUID PRIMARY KEY,
            subcategory_id UUID NOT NULL REFERENCES subcategory(id) ON DELETE CASCADE,
            title VARCHAR(256) NOT NULL,
            summary TEXT,
            venue_text TEXT,
            city VARCHAR(128),
            country VARCHAR(128),
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            is_virtual BOOLEAN NOT NULL DEFAULT FALSE,
            time_window_type VARCHAR(24) NOT NULL
                CONSTRAINT time_window_type CHECK (time_window_type IN ('FIXED', 'FLEXIBLE')),
            start_at TIMESTAMPTZ,
            end_at TIMESTAMPTZ,
            max_participants INTEGER,
            enrollment_mode VARCHAR(24) NOT NULL DEFAULT 'PAY_TO_ENROLL'
                CONSTRAINT plan_enrollment_mode CHECK (enrollment_mode IN ('PAY_TO_ENROLL', 'APPROVAL_REQUIRED')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_plan_subcategory_id ON plan(subcategory_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_plan_city ON plan(city)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS plan_difficulty (
            id UUID PRIMARY KEY,
            plan_id UUID NOT NULL REFERENCES plan(id) ON DELETE CASCADE,
            difficulty VARCHAR(24) NOT NULL
                CONSTRAINT plan_difficulty_tier CHECK (difficulty IN ('BEGINNER', 'INTERMEDIATE', 'ADVANCED')),
            level_number INTEGER NOT NULL,
            is_crucial BOOLEAN NOT NULL DEFAULT FALSE
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_plan_difficulty_plan_id ON plan_difficulty(plan_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_plan_difficulty_tier_level
        ON plan_difficulty(difficulty, level_number)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS plan_rule (
            id UUID PRIMARY KEY,
            plan_id UUID NOT NULL REFERENCES plan(id) ON DELETE CASCADE,
            rule_text TEXT NOT NULL,
            display_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS task (
            id UUID PRIMARY KEY,
            plan_id UUID NOT NULL REFERENCES plan(id) ON DELETE CASCADE,
            title VARCHAR(256) NOT NULL,
            details TEXT,
            crucial BOOLEAN NOT NULL DEFAULT FALSE
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_task_plan_id ON task(plan_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS plan_price (
            id UUID PRIMARY KEY,
            plan_id UUID NOT NULL REFERENCES plan(id) ON DELETE CASCADE,
            currency VARCHAR(3) NOT NULL,
            base_amount NUMERIC(12, 2) NOT NULL,
            components JSONB NOT NULL DEFAULT '[]'::jsonb,
            CONSTRAINT uq_plan_price_plan_currency UNIQUE (plan_id, currency)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_plan_price_plan_id ON plan_price(plan_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS plan_slot (
            id UUID PRIMARY KEY,
            plan_id UUID NOT NULL UNIQUE REFERENCES plan(id) ON DELETE CASCADE,
            capacity INTEGER,
            reserved INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT ck_plan_slot_reserved CHECK (reserved >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS geofence_rule (
            id UUID PRIMARY KEY,
            enabled BOOLEAN NOT NULL,
            scope VARCHAR(24) NOT NULL
                CONSTRAINT geofence_scope CHECK (scope IN ('CITY', 'COUNTRY')),
            values JSONB NOT NULL DEFAULT '[]'::jsonb,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Enrollment ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS enrollment (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            plan_id UUID NOT NULL REFERENCES plan(id),
            mode VARCHAR(24) NOT NULL
                CONSTRAINT enrollment_mode CHECK (mode IN ('PAY_TO_ENROLL', 'APPROVAL_REQUIRED')),
            status VARCHAR(24) NOT NULL DEFAULT 'PENDING'
                CONSTRAINT enrollment_status CHECK (status IN ('PENDING', 'CONFIRMED', 'REJECTED', 'CANCELLED')),
            payment_status VARCHAR(24) NOT NULL DEFAULT 'NONE'
                CONSTRAINT payment_status CHECK (payment_status IN ('NONE', 'AWAITING', 'PAID', 'REFUNDED')),
            enrollment_type VARCHAR(24) NOT NULL
                CONSTRAINT enrollment_type CHECK (enrollment_type IN ('INDIVIDUAL', 'TEAM')),
            registration_id VARCHAR(50) UNIQUE,
            team_name VARCHAR(128),
            team_size INTEGER,
            slots_reserved INTEGER NOT NULL DEFAULT 0,
            approval_by UUID,
            enrolled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_enrollment_team_fields
                CHECK (enrollment_type <> 'TEAM' OR (team_name IS NOT NULL AND team_size >= 2))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_enrollment_user_id ON enrollment(user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_enrollment_plan_id ON enrollment(plan_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS registration_sequence (
            id UUID PRIMARY KEY,
            month_year VARCHAR(4) NOT NULL,
            enrollment_type VARCHAR(24) NOT NULL
                CONSTRAINT registration_enrollment_type CHECK (enrollment_type IN ('INDIVIDUAL', 'TEAM')),
            plan_number VARCHAR(2) NOT NULL,
            current_sequence INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_registration_sequence_scope UNIQUE (month_year, enrollment_type, plan_number)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS task_progress (
            id UUID PRIMARY KEY,
            enrollment_id UUID NOT NULL REFERENCES enrollment(id) ON DELETE CASCADE,
            task_id UUID NOT NULL REFERENCES task(id) ON DELETE CASCADE,
            status VARCHAR(24) NOT NULL DEFAULT 'LOCKED'
                CONSTRAINT task_status CHECK (status IN ('LOCKED', 'STARTED', 'DONE')),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_task_progress_enrollment_task UNIQUE (enrollment_id, task_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_task_progress_enrollment_id ON task_progress(enrollment_id)")

    # --- Progression ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_level (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            difficulty VARCHAR(24) NOT NULL
                CONSTRAINT user_level_difficulty CHECK (difficulty IN ('BEGINNER', 'INTERMEDIATE', 'ADVANCED')),
            highest_level_reached INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_level_user_difficulty UNIQUE (user_id, difficulty)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_user_level_user_id ON user_level(user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS progression_policy (
            id UUID PRIMARY KEY,
            name VARCHAR(128) NOT NULL DEFAULT 'default',
            scope VARCHAR(24) NOT NULL
                CONSTRAINT policy_scope CHECK (scope IN ('GLOBAL', 'COHORT', 'USER')),
            scope_ref VARCHAR(128),
            policy JSONB NOT NULL DEFAULT '{}'::jsonb,
            active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_progression_policy_scope_ref CHECK (
                (scope = 'GLOBAL' AND scope_ref IS NULL) OR (scope <> 'GLOBAL' AND scope_ref IS NOT NULL)
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_progression_policy_scope_ref ON progression_policy(scope_ref)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_progression_policy_active_scope
        ON progression_policy(scope, scope_ref) WHERE active
    """)

    # --- Statistics & Leaderboard ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_statistics (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            difficulty VARCHAR(24) NOT NULL
                CONSTRAINT user_statistics_difficulty
                CHECK (difficulty IN ('BEGINNER', 'INTERMEDIATE', 'ADVANCED')),
            total_plans_enrolled INTEGER NOT NULL DEFAULT 0,
            total_plans_completed INTEGER NOT NULL DEFAULT 0,
            total_tasks_completed INTEGER NOT NULL DEFAULT 0,
            highest_level_reached INTEGER NOT NULL DEFAULT 0,
            total_score NUMERIC(12, 2) NOT NULL DEFAULT 0,
            score_reached_at TIMESTAMPTZ,
            current_rank INTEGER,
            best_rank_achieved INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_statistics_user_difficulty UNIQUE (user_id, difficulty)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_user_statistics_user_id ON user_statistics(user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entry (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            difficulty VARCHAR(24) NOT NULL
                CONSTRAINT leaderboard_difficulty CHECK (difficulty IN ('BEGINNER', 'INTERMEDIATE', 'ADVANCED')),
            leaderboard_type VARCHAR(24) NOT NULL DEFAULT 'OVERALL'
                CONSTRAINT leaderboard_type CHECK (leaderboard_type IN ('OVERALL')),
            rank_position INTEGER NOT NULL,
            total_score NUMERIC(12, 2) NOT NULL,
            plans_completed INTEGER NOT NULL DEFAULT 0,
            tasks_completed INTEGER NOT NULL DEFAULT 0,
            score_reached_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leaderboard_type_difficulty_user UNIQUE (leaderboard_type, difficulty, user_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_leaderboard_entry_user_id ON leaderboard_entry(user_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_entry_rank
        ON leaderboard_entry(leaderboard_type, difficulty, rank_position)
    """)

    # --- Messaging ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS outbox_event (
            id UUID PRIMARY KEY,
            topic VARCHAR(64) NOT NULL,
            key VARCHAR(64) NOT NULL,
            payload JSONB NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            delivered_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_outbox_event_delivered_at ON outbox_event(delivered_at)")


def downgrade() -> None:
    for table in [
        "outbox_event",
        "leaderboard_entry",
        "user_statistics",
        "progression_policy",
        "user_level",
        "task_progress",
        "registration_sequence",
        "enrollment",
        "geofence_rule",
        "plan_slot",
        "plan_price",
        "task",
        "plan_rule",
        "plan_difficulty",
        "plan",
        "subcategory_age_band",
        "subcategory",
        "age_band",
    ]:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
