"""Actors and builders shared by the engine and API tests."""
from decimal import Decimal

from src.mp_common.enums import OrderStatus
from src.mp_order.application.engine import OrderLifecycleEngine
from src.mp_order.domain.models import Actor, Order, OrderEvent, PriceBreakdown
from tests.fakes import FakeSession

CLIENT = Actor(user_id="client-1")
PROVIDER = Actor(user_id="provider-1")
ADMIN = Actor(user_id="admin-1", is_admin=True)
STRANGER = Actor(user_id="stranger-1")

TOTAL_CENTS = 11500

# Forward path and who drives each step
_FORWARD = [
    (OrderStatus.CONFIRMED, PROVIDER),
    (OrderStatus.IN_PROGRESS, PROVIDER),
    (OrderStatus.DELIVERED, PROVIDER),
    (OrderStatus.COMPLETED, CLIENT),
]


def make_price(total: str = "115.00", currency: str = "USD") -> PriceBreakdown:
    amount = Decimal(total)
    fees = Decimal("15.00") if amount >= Decimal("15.00") else Decimal("0")
    return PriceBreakdown(
        subtotal=amount - fees, fees=fees, taxes=Decimal("0"), total=amount, currency=currency
    )


async def create(engine: OrderLifecycleEngine, db: FakeSession, total: str = "115.00") -> Order:
    return await engine.create_order(
        db,
        CLIENT,
        provider_id=PROVIDER.user_id,
        service_id="svc-1",
        title="Logo design",
        description="Three concepts, two revision rounds",
        price=make_price(total),
    )


async def advance(
    engine: OrderLifecycleEngine, db: FakeSession, order: Order, target: OrderStatus
) -> Order:
    """Walk the happy path with the right actor until `target` is reached."""
    path = [OrderStatus.CREATED] + [status for status, _ in _FORWARD]
    for status, actor in _FORWARD[path.index(order.status):]:
        if order.status == target:
            break
        order = await engine.transition(db, order.id, status, actor)
    assert order.status == target
    return order


async def hold(engine: OrderLifecycleEngine, db: FakeSession, order: Order) -> Order:
    return await engine.authorize_and_hold(db, order.id, CLIENT, TOTAL_CENTS, "USD")


async def timeline(
    engine: OrderLifecycleEngine, db: FakeSession, order_id: str
) -> list[OrderEvent]:
    return await (await engine.get_timeline(db, order_id, ADMIN)).collect()


async def event_types(engine: OrderLifecycleEngine, db: FakeSession, order_id: str) -> list[str]:
    return [e.type for e in await timeline(engine, db, order_id)]
