# src/mp_order/domain/repository.py
"""OrderRepository Protocol — the persistence port consumed by the lifecycle engine.

Writes never commit: the engine owns the unit of work and calls
`db.commit()` / `db.rollback()` once per operation, so an order update and
its timeline events land together or not at all.
"""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.enums import PartyRole
from src.mp_order.domain.models import (
    Order,
    OrderDelivery,
    OrderDispute,
    OrderEvent,
    OrderFilters,
    OrderReview,
)


class OrderRepositoryProtocol(Protocol):
    async def load_order(
        self, db: AsyncSession, order_id: str, for_update: bool = False
    ) -> Order | None: ...

    async def insert_order(self, db: AsyncSession, order: Order) -> None: ...

    async def save_order(
        self, db: AsyncSession, order: Order, expected_version: int
    ) -> Order: ...

    async def append_event(self, db: AsyncSession, event: OrderEvent) -> OrderEvent: ...

    async def list_events(
        self,
        db: AsyncSession,
        order_id: str,
        after: tuple[datetime, int] | None,
        limit: int,
    ) -> list[OrderEvent]: ...

    async def list_orders_by_party(
        self, db: AsyncSession, user_id: str, role: PartyRole, filters: OrderFilters
    ) -> list[Order]: ...

    async def insert_delivery(self, db: AsyncSession, delivery: OrderDelivery) -> None: ...

    async def list_deliveries(self, db: AsyncSession, order_id: str) -> list[OrderDelivery]: ...

    async def insert_dispute(self, db: AsyncSession, dispute: OrderDispute) -> None: ...

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> OrderDispute | None: ...

    async def get_open_dispute(
        self, db: AsyncSession, order_id: str
    ) -> OrderDispute | None: ...

    async def update_dispute(self, db: AsyncSession, dispute: OrderDispute) -> None: ...

    async def insert_review(self, db: AsyncSession, review: OrderReview) -> None: ...

    async def get_review(
        self, db: AsyncSession, order_id: str, reviewer_id: str
    ) -> OrderReview | None: ...

    async def list_reviews(self, db: AsyncSession, order_id: str) -> list[OrderReview]: ...
