"""002: create orders table

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE orders (
            id                      VARCHAR(64)     PRIMARY KEY,
            client_id               VARCHAR(64)     NOT NULL,
            provider_id             VARCHAR(64)     NOT NULL,
            service_id              VARCHAR(64)     NOT NULL,
            title                   VARCHAR(200)    NOT NULL,
            description             TEXT            NOT NULL DEFAULT '',
            price_subtotal          NUMERIC(14, 2)  NOT NULL,
            price_fees              NUMERIC(14, 2)  NOT NULL DEFAULT 0,
            price_taxes             NUMERIC(14, 2)  NOT NULL DEFAULT 0,
            price_total             NUMERIC(14, 2)  NOT NULL,
            currency                CHAR(3)         NOT NULL DEFAULT 'USD',
            deadline                TIMESTAMPTZ,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'CREATED',
            payment_status          VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            payment_intent_id       VARCHAR(255),
            held_amount_cents       BIGINT          NOT NULL DEFAULT 0,
            released_amount_cents   BIGINT          NOT NULL DEFAULT 0,
            refunded_amount_cents   BIGINT          NOT NULL DEFAULT 0,
            payment_epoch           INT             NOT NULL DEFAULT 0,
            version                 INT             NOT NULL DEFAULT 1,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_orders_parties_differ   CHECK (client_id <> provider_id),
            CONSTRAINT ck_orders_price_non_negative CHECK (
                price_subtotal >= 0 AND price_fees >= 0 AND price_taxes >= 0
            ),
            CONSTRAINT ck_orders_price_total      CHECK (
                price_total = price_subtotal + price_fees + price_taxes AND price_total > 0
            ),
            CONSTRAINT ck_orders_status           CHECK (
                status IN ('CREATED', 'CONFIRMED', 'IN_PROGRESS', 'DELIVERED',
                           'COMPLETED', 'CANCELLED', 'DISPUTED')
            ),
            CONSTRAINT ck_orders_payment_status   CHECK (
                payment_status IN ('PENDING', 'HELD', 'PARTIALLY_RELEASED', 'RELEASED',
                                   'REFUNDED', 'FAILED')
            ),
            CONSTRAINT ck_orders_escrow_amounts   CHECK (
                held_amount_cents >= 0 AND released_amount_cents >= 0
                AND refunded_amount_cents >= 0
                AND released_amount_cents + refunded_amount_cents <= held_amount_cents
            ),
            CONSTRAINT ck_orders_version_gte_1    CHECK (version >= 1)
        );
    """)
    op.execute("CREATE INDEX idx_orders_client ON orders (client_id, created_at DESC);")
    op.execute("CREATE INDEX idx_orders_provider ON orders (provider_id, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_orders_updated_at
            BEFORE UPDATE ON orders
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON TABLE orders IS 'Service orders with escrow bookkeeping; version is the CAS token';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS orders CASCADE;")
