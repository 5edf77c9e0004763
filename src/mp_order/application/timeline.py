"""Timeline projection — lazy, restartable, read-only view of an order's events."""
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_order.domain.models import OrderEvent
from src.mp_order.domain.repository import OrderRepositoryProtocol


class OrderTimeline:
    """Events of one order in (created_at, seq) order.

    Nothing is fetched until iteration starts; every `async for` begins a new
    keyset-paged scan, so the same object can be iterated again and sees
    events appended in between.
    """

    def __init__(
        self,
        repo: OrderRepositoryProtocol,
        db: AsyncSession,
        order_id: str,
        page_size: int = 100,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._repo = repo
        self._db = db
        self.order_id = order_id
        self._page_size = page_size

    def __aiter__(self) -> AsyncIterator[OrderEvent]:
        return self._scan()

    async def _scan(self) -> AsyncIterator[OrderEvent]:
        after = None
        while True:
            page = await self._repo.list_events(self._db, self.order_id, after, self._page_size)
            for event in page:
                yield event
            if len(page) < self._page_size:
                return
            last = page[-1]
            after = (last.created_at, last.seq)

    async def collect(self) -> list[OrderEvent]:
        return [event async for event in self]
