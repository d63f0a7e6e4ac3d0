"""create_calendar_sync_tables

Revision ID: core_001
Revises:
Create Date: 2025-01-15 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    # -- Internal event source -------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS applications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            company_name TEXT NOT NULL,
            job_title TEXT NOT NULL,
            description TEXT,
            application_date DATE NOT NULL DEFAULT CURRENT_DATE,
            status TEXT NOT NULL DEFAULT 'applied',
            deadline DATE,
            notes TEXT,
            priority TEXT NOT NULL DEFAULT 'medium',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_applications_user ON applications (user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS interviews (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            application_id UUID NOT NULL REFERENCES applications(id) ON DELETE CASCADE,
            interview_type TEXT NOT NULL,
            scheduled_at TIMESTAMPTZ NOT NULL,
            duration_minutes INTEGER,
            location TEXT,
            meeting_link TEXT,
            notes TEXT,
            outcome TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_interviews_user ON interviews (user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            application_id UUID REFERENCES applications(id) ON DELETE SET NULL,
            title TEXT NOT NULL,
            description TEXT,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            event_type TEXT NOT NULL DEFAULT 'custom',
            all_day BOOLEAN NOT NULL DEFAULT false,
            location TEXT,
            notes TEXT,
            color TEXT,
            sync_with_google BOOLEAN NOT NULL DEFAULT false,
            google_event_id TEXT,
            last_google_sync TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_calendar_events_user ON calendar_events (user_id)")

    # -- Google Calendar sync --------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS google_calendar_tokens (
            user_id TEXT PRIMARY KEY,
            access_token TEXT NOT NULL,
            refresh_token TEXT NOT NULL,
            token_expiry TIMESTAMPTZ NOT NULL,
            scope TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS google_calendar_settings (
            user_id TEXT PRIMARY KEY,
            google_calendar_id TEXT NOT NULL DEFAULT 'primary',
            sync_enabled BOOLEAN NOT NULL DEFAULT false,
            sync_interviews BOOLEAN NOT NULL DEFAULT true,
            sync_deadlines BOOLEAN NOT NULL DEFAULT true,
            sync_applications BOOLEAN NOT NULL DEFAULT false,
            sync_follow_ups BOOLEAN NOT NULL DEFAULT true,
            sync_custom_events BOOLEAN NOT NULL DEFAULT true,
            auto_sync_interval INTEGER NOT NULL DEFAULT 15,
            last_sync_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS google_calendar_event_mappings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            app_event_type TEXT NOT NULL,
            app_event_reference_id TEXT NOT NULL,
            app_event_id UUID,
            google_calendar_id TEXT NOT NULL,
            google_event_id TEXT NOT NULL,
            last_synced_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            sync_status TEXT NOT NULL DEFAULT 'synced'
                CHECK (sync_status IN ('synced', 'pending', 'error')),
            etag TEXT,
            origin TEXT NOT NULL DEFAULT 'internal'
                CHECK (origin IN ('internal', 'google')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_gcal_mappings_internal_key
        ON google_calendar_event_mappings (user_id, app_event_type, app_event_reference_id)
        WHERE origin = 'internal'
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_gcal_mappings_external_key
        ON google_calendar_event_mappings (user_id, google_event_id)
        WHERE origin = 'google'
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS google_calendar_sync_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            sync_type TEXT NOT NULL,
            sync_direction TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('success', 'error')),
            events_processed INTEGER NOT NULL DEFAULT 0,
            errors_count INTEGER NOT NULL DEFAULT 0,
            message TEXT,
            error_details JSONB,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_gcal_sync_logs_user_completed
        ON google_calendar_sync_logs (user_id, completed_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS google_calendar_sync_logs")
    op.execute("DROP TABLE IF EXISTS google_calendar_event_mappings")
    op.execute("DROP TABLE IF EXISTS google_calendar_settings")
    op.execute("DROP TABLE IF EXISTS google_calendar_tokens")
    op.execute("DROP TABLE IF EXISTS calendar_events")
    op.execute("DROP TABLE IF EXISTS interviews")
    op.execute("DROP TABLE IF EXISTS applications")
