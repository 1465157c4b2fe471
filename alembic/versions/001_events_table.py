"""Append-only events table.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # seq orders events that share a timestamp, and is the cursor devices pull after
    op.execute("""
        CREATE TABLE events (
            seq BIGSERIAL PRIMARY KEY,
            user_id TEXT NOT NULL,
            ts BIGINT NOT NULL,
            type TEXT NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            idempotency_key TEXT NOT NULL,
            created_at TIMESTAMPTZ DEFAULT now(),
            CONSTRAINT events_user_key_unique UNIQUE (user_id, idempotency_key)
        );
    """)

    op.execute("""
        CREATE INDEX idx_events_user_ts ON events (user_id, ts);
    """)

    # The log is append-only: corrections are new events, never edits
    op.execute("""
        CREATE FUNCTION events_reject_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'events is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER events_append_only
            BEFORE UPDATE OR DELETE ON events
            FOR EACH ROW EXECUTE FUNCTION events_reject_mutation();
    """)


def downgrade():
    op.execute("DROP TRIGGER IF EXISTS events_append_only ON events;")
    op.execute("DROP FUNCTION IF EXISTS events_reject_mutation();")
    op.execute("DROP TABLE IF EXISTS events;")
