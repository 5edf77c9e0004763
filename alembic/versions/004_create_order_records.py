"""004: create order_deliveries, order_disputes, order_reviews

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE order_deliveries (
            id              VARCHAR(64)     PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders (id),
            description     TEXT            NOT NULL,
            files           JSONB           NOT NULL DEFAULT '[]'::jsonb,
            notes           TEXT            NOT NULL DEFAULT '',
            delivered_at    TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_order_deliveries_order ON order_deliveries (order_id, delivered_at);")

    op.execute("""
        CREATE TABLE order_disputes (
            id              VARCHAR(64)     PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders (id),
            reason          VARCHAR(200)    NOT NULL,
            description     TEXT            NOT NULL DEFAULT '',
            status          VARCHAR(20)     NOT NULL DEFAULT 'OPEN',
            created_by      VARCHAR(64)     NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            resolved_at     TIMESTAMPTZ,
            resolution      TEXT,
            CONSTRAINT ck_order_disputes_status CHECK (status IN ('OPEN', 'RESOLVED'))
        );
    """)
    # At most one open dispute per order
    op.execute("""
        CREATE UNIQUE INDEX uq_order_disputes_open
        ON order_disputes (order_id)
        WHERE status = 'OPEN';
    """)

    op.execute("""
        CREATE TABLE order_reviews (
            id              VARCHAR(64)     PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders (id),
            reviewer_id     VARCHAR(64)     NOT NULL,
            recipient_id    VARCHAR(64)     NOT NULL,
            rating          SMALLINT        NOT NULL,
            comment         TEXT            NOT NULL DEFAULT '',
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_order_reviews_reviewer UNIQUE (order_id, reviewer_id),
            CONSTRAINT ck_order_reviews_rating   CHECK (rating BETWEEN 1 AND 5),
            CONSTRAINT ck_order_reviews_parties  CHECK (reviewer_id <> recipient_id)
        );
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS order_reviews CASCADE;")
    op.execute("DROP TABLE IF EXISTS order_disputes CASCADE;")
    op.execute("DROP TABLE IF EXISTS order_deliveries CASCADE;")
