"""003: create order_events table (append-only timeline)

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE order_events (
            seq             BIGSERIAL       NOT NULL UNIQUE,
            id              VARCHAR(128)    PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders (id),
            type            VARCHAR(64)     NOT NULL,
            description     TEXT            NOT NULL,
            created_by      VARCHAR(64)     NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            metadata        JSONB           NOT NULL DEFAULT '{}'::jsonb
        );
    """)
    op.execute("CREATE INDEX idx_order_events_timeline ON order_events (order_id, created_at, seq);")
    # Events are never edited or deleted
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_order_events_immutable()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'order_events is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_order_events_immutable
            BEFORE UPDATE OR DELETE ON order_events
            FOR EACH ROW EXECUTE FUNCTION fn_order_events_immutable();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS order_events CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_order_events_immutable();")
