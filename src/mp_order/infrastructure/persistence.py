# src/mp_order/infrastructure/persistence.py
"""OrderRepository — raw SQL persistence implementation.

Concurrency: `save_order` is a compare-and-swap on `version`; a miss raises
ConcurrentModificationError. `load_order(for_update=True)` additionally
row-locks the order for payment read-modify-write sequences.

Nothing here commits; the caller's session is the unit of work.
"""
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.enums import DisputeStatus, OrderStatus, PartyRole, PaymentStatus
from src.mp_common.errors import (
    ConcurrentModificationError,
    DisputeAlreadyOpenError,
    PersistenceUnavailableError,
    ReviewAlreadyExistsError,
)
from src.mp_order.domain.models import (
    DeliveryFile,
    Order,
    OrderDelivery,
    OrderDispute,
    OrderEvent,
    OrderFilters,
    OrderReview,
    PriceBreakdown,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_ORDER_COLUMNS = """
    id, client_id, provider_id, service_id, title, description,
    price_subtotal, price_fees, price_taxes, price_total, currency,
    deadline, status, payment_status, payment_intent_id,
    held_amount_cents, released_amount_cents, refunded_amount_cents,
    payment_epoch, version, created_at, updated_at
"""

_INSERT_ORDER_SQL = text("""
    INSERT INTO orders (id, client_id, provider_id, service_id, title, description,
        price_subtotal, price_fees, price_taxes, price_total, currency,
        deadline, status, payment_status, payment_intent_id,
        held_amount_cents, released_amount_cents, refunded_amount_cents,
        payment_epoch, version, created_at, updated_at)
    VALUES (:id, :client_id, :provider_id, :service_id, :title, :description,
        :price_subtotal, :price_fees, :price_taxes, :price_total, :currency,
        :deadline, :status, :payment_status, :payment_intent_id,
        :held_amount_cents, :released_amount_cents, :refunded_amount_cents,
        :payment_epoch, :version, :created_at, :updated_at)
""")

_UPDATE_ORDER_SQL = text("""
    UPDATE orders
    SET status = :status, payment_status = :payment_status,
        payment_intent_id = :payment_intent_id,
        held_amount_cents = :held_amount_cents,
        released_amount_cents = :released_amount_cents,
        refunded_amount_cents = :refunded_amount_cents,
        payment_epoch = :payment_epoch,
        version = version + 1, updated_at = :updated_at
    WHERE id = :id AND version = :expected_version
    RETURNING version
""")

_GET_ORDER_SQL = text(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = :id")

_GET_ORDER_FOR_UPDATE_SQL = text(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = :id FOR UPDATE")

_LIST_CLIENT_ORDERS_SQL = text(f"""
    SELECT {_ORDER_COLUMNS}
    FROM orders
    WHERE client_id = :user_id
      AND (CAST(:statuses_csv AS TEXT) IS NULL
           OR status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ',')))
      AND (CAST(:from_date AS TIMESTAMPTZ) IS NULL OR created_at >= :from_date)
      AND (CAST(:to_date AS TIMESTAMPTZ) IS NULL OR created_at <= :to_date)
    ORDER BY created_at DESC, id DESC
    LIMIT :limit OFFSET :offset
""")

_LIST_PROVIDER_ORDERS_SQL = text(f"""
    SELECT {_ORDER_COLUMNS}
    FROM orders
    WHERE provider_id = :user_id
      AND (CAST(:statuses_csv AS TEXT) IS NULL
           OR status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ',')))
      AND (CAST(:from_date AS TIMESTAMPTZ) IS NULL OR created_at >= :from_date)
      AND (CAST(:to_date AS TIMESTAMPTZ) IS NULL OR created_at <= :to_date)
    ORDER BY created_at DESC, id DESC
    LIMIT :limit OFFSET :offset
""")

_INSERT_EVENT_SQL = text("""
    INSERT INTO order_events (id, order_id, type, description, created_by, created_at, metadata)
    VALUES (:id, :order_id, :type, :description, :created_by, :created_at,
            CAST(:metadata AS JSONB))
    RETURNING seq
""")

_LIST_EVENTS_SQL = text("""
    SELECT id, order_id, seq, type, description, created_by, created_at, metadata
    FROM order_events
    WHERE order_id = :order_id
      AND (CAST(:after_ts AS TIMESTAMPTZ) IS NULL
           OR (created_at, seq) > (CAST(:after_ts AS TIMESTAMPTZ), CAST(:after_seq AS BIGINT)))
    ORDER BY created_at ASC, seq ASC
    LIMIT :limit
""")

_INSERT_DELIVERY_SQL = text("""
    INSERT INTO order_deliveries (id, order_id, description, files, notes, delivered_at)
    VALUES (:id, :order_id, :description, CAST(:files AS JSONB), :notes, :delivered_at)
""")

_LIST_DELIVERIES_SQL = text("""
    SELECT id, order_id, description, files, notes, delivered_at
    FROM order_deliveries WHERE order_id = :order_id
    ORDER BY delivered_at ASC, id ASC
""")

_DISPUTE_COLUMNS = """
    id, order_id, reason, description, status, created_by, created_at,
    resolved_at, resolution
"""

_INSERT_DISPUTE_SQL = text("""
    INSERT INTO order_disputes (id, order_id, reason, description, status,
        created_by, created_at)
    VALUES (:id, :order_id, :reason, :description, :status, :created_by, :created_at)
""")

_GET_DISPUTE_SQL = text(f"SELECT {_DISPUTE_COLUMNS} FROM order_disputes WHERE id = :id")

_GET_OPEN_DISPUTE_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS} FROM order_disputes
    WHERE order_id = :order_id AND status = 'OPEN'
""")

_UPDATE_DISPUTE_SQL = text("""
    UPDATE order_disputes
    SET status = :status, resolved_at = :resolved_at, resolution = :resolution
    WHERE id = :id
""")

_INSERT_REVIEW_SQL = text("""
    INSERT INTO order_reviews (id, order_id, reviewer_id, recipient_id, rating,
        comment, created_at)
    VALUES (:id, :order_id, :reviewer_id, :recipient_id, :rating, :comment, :created_at)
""")

_REVIEW_COLUMNS = "id, order_id, reviewer_id, recipient_id, rating, comment, created_at"

_GET_REVIEW_SQL = text(f"""
    SELECT {_REVIEW_COLUMNS} FROM order_reviews
    WHERE order_id = :order_id AND reviewer_id = :reviewer_id
""")

_LIST_REVIEWS_SQL = text(f"""
    SELECT {_REVIEW_COLUMNS} FROM order_reviews
    WHERE order_id = :order_id ORDER BY created_at ASC, id ASC
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _load_json(value: Any) -> Any:
    """asyncpg may hand JSONB back either decoded or as text."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _row_to_order(row: Any) -> Order:
    """Convert a DB result row to an Order domain object."""
    return Order(
        id=row.id,
        client_id=row.client_id,
        provider_id=row.provider_id,
        service_id=row.service_id,
        title=row.title,
        description=row.description,
        price=PriceBreakdown(
            subtotal=Decimal(row.price_subtotal),
            fees=Decimal(row.price_fees),
            taxes=Decimal(row.price_taxes),
            total=Decimal(row.price_total),
            currency=row.currency,
        ),
        deadline=row.deadline,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        payment_intent_id=row.payment_intent_id,
        held_amount_cents=row.held_amount_cents,
        released_amount_cents=row.released_amount_cents,
        refunded_amount_cents=row.refunded_amount_cents,
        payment_epoch=row.payment_epoch,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_event(row: Any) -> OrderEvent:
    return OrderEvent(
        id=row.id,
        order_id=row.order_id,
        seq=row.seq,
        type=row.type,
        description=row.description,
        created_by=row.created_by,
        created_at=row.created_at,
        metadata=_load_json(row.metadata) or {},
    )


def _row_to_delivery(row: Any) -> OrderDelivery:
    return OrderDelivery(
        id=row.id,
        order_id=row.order_id,
        description=row.description,
        files=[
            DeliveryFile(
                file_name=f["file_name"],
                file_type=f["file_type"],
                file_url=f["file_url"],
                uploaded_at=datetime.fromisoformat(f["uploaded_at"]),
            )
            for f in _load_json(row.files) or []
        ],
        notes=row.notes,
        delivered_at=row.delivered_at,
    )


def _row_to_dispute(row: Any) -> OrderDispute:
    return OrderDispute(
        id=row.id,
        order_id=row.order_id,
        reason=row.reason,
        description=row.description,
        status=DisputeStatus(row.status),
        created_by=row.created_by,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        resolution=row.resolution,
    )


def _row_to_review(row: Any) -> OrderReview:
    return OrderReview(
        id=row.id,
        order_id=row.order_id,
        reviewer_id=row.reviewer_id,
        recipient_id=row.recipient_id,
        rating=row.rating,
        comment=row.comment,
        created_at=row.created_at,
    )


def _order_params(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "client_id": order.client_id,
        "provider_id": order.provider_id,
        "service_id": order.service_id,
        "title": order.title,
        "description": order.description,
        "price_subtotal": order.price.subtotal,
        "price_fees": order.price.fees,
        "price_taxes": order.price.taxes,
        "price_total": order.price.total,
        "currency": order.price.currency,
        "deadline": order.deadline,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_intent_id": order.payment_intent_id,
        "held_amount_cents": order.held_amount_cents,
        "released_amount_cents": order.released_amount_cents,
        "refunded_amount_cents": order.refunded_amount_cents,
        "payment_epoch": order.payment_epoch,
        "version": order.version,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OrderRepository:
    """Concrete implementation of OrderRepositoryProtocol using raw SQL."""

    async def _execute(self, db: AsyncSession, stmt: Any, params: dict[str, Any]) -> Any:
        try:
            return await db.execute(stmt, params)
        except (OperationalError, InterfaceError) as exc:
            logger.error("Order store unavailable: %s", exc)
            raise PersistenceUnavailableError() from exc

    async def load_order(
        self, db: AsyncSession, order_id: str, for_update: bool = False
    ) -> Order | None:
        stmt = _GET_ORDER_FOR_UPDATE_SQL if for_update else _GET_ORDER_SQL
        result = await self._execute(db, stmt, {"id": order_id})
        row = result.fetchone()
        return _row_to_order(row) if row else None

    async def insert_order(self, db: AsyncSession, order: Order) -> None:
        await self._execute(db, _INSERT_ORDER_SQL, _order_params(order))

    async def save_order(
        self, db: AsyncSession, order: Order, expected_version: int
    ) -> Order:
        params = _order_params(order)
        params["expected_version"] = expected_version
        result = await self._execute(db, _UPDATE_ORDER_SQL, params)
        row = result.fetchone()
        if row is None:
            raise ConcurrentModificationError(order.id, expected_version)
        order.version = row.version
        return order

    async def append_event(self, db: AsyncSession, event: OrderEvent) -> OrderEvent:
        result = await self._execute(
            db,
            _INSERT_EVENT_SQL,
            {
                "id": event.id,
                "order_id": event.order_id,
                "type": event.type,
                "description": event.description,
                "created_by": event.created_by,
                "created_at": event.created_at,
                "metadata": json.dumps(event.metadata, default=str),
            },
        )
        event.seq = result.scalar_one()
        return event

    async def list_events(
        self,
        db: AsyncSession,
        order_id: str,
        after: tuple[datetime, int] | None,
        limit: int,
    ) -> list[OrderEvent]:
        after_ts, after_seq = after if after else (None, None)
        result = await self._execute(
            db,
            _LIST_EVENTS_SQL,
            {"order_id": order_id, "after_ts": after_ts, "after_seq": after_seq, "limit": limit},
        )
        return [_row_to_event(row) for row in result.fetchall()]

    async def list_orders_by_party(
        self, db: AsyncSession, user_id: str, role: PartyRole, filters: OrderFilters
    ) -> list[Order]:
        stmt = _LIST_CLIENT_ORDERS_SQL if role == PartyRole.CLIENT else _LIST_PROVIDER_ORDERS_SQL
        statuses_csv = ",".join(s.value for s in filters.statuses) if filters.statuses else None
        result = await self._execute(
            db,
            stmt,
            {
                "user_id": user_id,
                "statuses_csv": statuses_csv,
                "from_date": filters.from_date,
                "to_date": filters.to_date,
                "limit": filters.limit,
                "offset": filters.offset,
            },
        )
        return [_row_to_order(row) for row in result.fetchall()]

    async def insert_delivery(self, db: AsyncSession, delivery: OrderDelivery) -> None:
        files = [
            {
                "file_name": f.file_name,
                "file_type": f.file_type,
                "file_url": f.file_url,
                "uploaded_at": f.uploaded_at.isoformat(),
            }
            for f in delivery.files
        ]
        await self._execute(
            db,
            _INSERT_DELIVERY_SQL,
            {
                "id": delivery.id,
                "order_id": delivery.order_id,
                "description": delivery.description,
                "files": json.dumps(files),
                "notes": delivery.notes,
                "delivered_at": delivery.delivered_at,
            },
        )

    async def list_deliveries(self, db: AsyncSession, order_id: str) -> list[OrderDelivery]:
        result = await self._execute(db, _LIST_DELIVERIES_SQL, {"order_id": order_id})
        return [_row_to_delivery(row) for row in result.fetchall()]

    async def insert_dispute(self, db: AsyncSession, dispute: OrderDispute) -> None:
        try:
            await self._execute(
                db,
                _INSERT_DISPUTE_SQL,
                {
                    "id": dispute.id,
                    "order_id": dispute.order_id,
                    "reason": dispute.reason,
                    "description": dispute.description,
                    "status": dispute.status.value,
                    "created_by": dispute.created_by,
                    "created_at": dispute.created_at,
                },
            )
        except IntegrityError as exc:
            # uq_order_disputes_open: one OPEN dispute per order
            raise DisputeAlreadyOpenError(dispute.order_id) from exc

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> OrderDispute | None:
        result = await self._execute(db, _GET_DISPUTE_SQL, {"id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def get_open_dispute(self, db: AsyncSession, order_id: str) -> OrderDispute | None:
        result = await self._execute(db, _GET_OPEN_DISPUTE_SQL, {"order_id": order_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def update_dispute(self, db: AsyncSession, dispute: OrderDispute) -> None:
        await self._execute(
            db,
            _UPDATE_DISPUTE_SQL,
            {
                "id": dispute.id,
                "status": dispute.status.value,
                "resolved_at": dispute.resolved_at,
                "resolution": dispute.resolution,
            },
        )

    async def insert_review(self, db: AsyncSession, review: OrderReview) -> None:
        try:
            await self._execute(
                db,
                _INSERT_REVIEW_SQL,
                {
                    "id": review.id,
                    "order_id": review.order_id,
                    "reviewer_id": review.reviewer_id,
                    "recipient_id": review.recipient_id,
                    "rating": review.rating,
                    "comment": review.comment,
                    "created_at": review.created_at,
                },
            )
        except IntegrityError as exc:
            # uq_order_reviews_reviewer lost a race with a concurrent submit
            raise ReviewAlreadyExistsError(review.order_id, review.reviewer_id) from exc

    async def get_review(
        self, db: AsyncSession, order_id: str, reviewer_id: str
    ) -> OrderReview | None:
        result = await self._execute(
            db, _GET_REVIEW_SQL, {"order_id": order_id, "reviewer_id": reviewer_id}
        )
        row = result.fetchone()
        return _row_to_review(row) if row else None

    async def list_reviews(self, db: AsyncSession, order_id: str) -> list[OrderReview]:
        result = await self._execute(db, _LIST_REVIEWS_SQL, {"order_id": order_id})
        return [_row_to_review(row) for row in result.fetchall()]
