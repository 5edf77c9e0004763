"""mp_order REST API — order lifecycle, escrow and review endpoints, all JWT-protected."""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.datetime_utils import ensure_utc, utc_now
from src.mp_common.enums import OrderStatus, PartyRole
from src.mp_common.response import ApiResponse, success_response
from src.mp_gateway.auth.dependencies import get_current_actor
from src.mp_order.application.engine import OrderLifecycleEngine
from src.mp_order.application.schemas import (
    AcceptDeliveryRequest,
    CancelRequest,
    CreateOrderRequest,
    DeliveryRequest,
    DeliveryResponse,
    DisputeResponse,
    EventResponse,
    HoldPaymentRequest,
    OpenDisputeRequest,
    OrderListResponse,
    OrderResponse,
    RefundPaymentRequest,
    ReleasePaymentRequest,
    ResolveDisputeRequest,
    ReviewRequest,
    ReviewResponse,
    TimelineResponse,
    TransitionRequest,
)
from src.mp_order.domain.models import Actor, Order, OrderFilters

router = APIRouter(prefix="/orders", tags=["orders"])


def get_engine(request: Request) -> OrderLifecycleEngine:
    """The engine is built once in the app lifespan."""
    return request.app.state.engine


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Db = Annotated[AsyncSession, Depends(get_db_session)]
Engine = Annotated[OrderLifecycleEngine, Depends(get_engine)]


def _ok(request: Request, data: Any) -> ApiResponse:
    return success_response(data, request)


def _order(request: Request, order: Order) -> ApiResponse:
    return _ok(request, OrderResponse.from_domain(order).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_order(
    body: CreateOrderRequest, actor: CurrentActor, db: Db, engine: Engine, request: Request
) -> ApiResponse:
    order = await engine.create_order(
        db,
        actor,
        provider_id=body.provider_id,
        service_id=body.service_id,
        title=body.title,
        description=body.description,
        price=body.price.to_domain(),
        deadline=body.deadline,
    )
    return _order(request, order)


@router.get("")
async def list_orders(
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
    role: PartyRole = Query(PartyRole.CLIENT, description="List as client or provider"),
    status: list[OrderStatus] | None = Query(None, description="Filter by order status"),
    from_date: datetime | None = Query(None, description="Lower bound on created_at"),
    to_date: datetime | None = Query(None, description="Upper bound on created_at"),
    user_id: str | None = Query(None, description="Admin only: list another user's orders"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    filters = OrderFilters(
        statuses=status,
        from_date=ensure_utc(from_date) if from_date else None,
        to_date=ensure_utc(to_date) if to_date else None,
        limit=limit + 1,
        offset=offset,
    )
    orders = await engine.list_orders(db, actor, role, filters, user_id=user_id)
    has_more = len(orders) > limit
    data = OrderListResponse(
        items=[OrderResponse.from_domain(o) for o in orders[:limit]],
        has_more=has_more,
    )
    return _ok(request, data.model_dump(mode="json"))


@router.get("/{order_id}")
async def get_order(
    order_id: str, actor: CurrentActor, db: Db, engine: Engine, request: Request
) -> ApiResponse:
    return _order(request, await engine.get_order(db, order_id, actor))


@router.post("/{order_id}/transition")
async def transition_order(
    order_id: str,
    body: TransitionRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.transition(db, order_id, body.target, actor, body.notes)
    return _order(request, order)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    return _order(request, await engine.cancel(db, order_id, actor, body.reason))


@router.post("/{order_id}/accept")
async def accept_delivery(
    order_id: str,
    body: AcceptDeliveryRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    return _order(request, await engine.accept_delivery(db, order_id, actor, body.notes))


@router.get("/{order_id}/timeline")
async def get_timeline(
    order_id: str, actor: CurrentActor, db: Db, engine: Engine, request: Request
) -> ApiResponse:
    timeline = await engine.get_timeline(db, order_id, actor)
    data = TimelineResponse(
        order_id=order_id,
        events=[EventResponse.from_domain(e) async for e in timeline],
    )
    return _ok(request, data.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Deliveries, disputes, reviews
# ---------------------------------------------------------------------------


@router.post("/{order_id}/deliveries", status_code=201)
async def add_delivery(
    order_id: str,
    body: DeliveryRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    now = utc_now()
    delivery = await engine.add_delivery(
        db,
        order_id,
        actor,
        description=body.description,
        files=[f.to_domain(now) for f in body.files],
        notes=body.notes,
    )
    return _ok(request, DeliveryResponse.from_domain(delivery).model_dump(mode="json"))


@router.get("/{order_id}/deliveries")
async def list_deliveries(
    order_id: str, actor: CurrentActor, db: Db, engine: Engine, request: Request
) -> ApiResponse:
    deliveries = await engine.list_deliveries(db, order_id, actor)
    return _ok(
        request, [DeliveryResponse.from_domain(d).model_dump(mode="json") for d in deliveries]
    )


@router.post("/{order_id}/disputes", status_code=201)
async def open_dispute(
    order_id: str,
    body: OpenDisputeRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    dispute = await engine.open_dispute(db, order_id, actor, body.reason, body.description)
    return _ok(request, DisputeResponse.from_domain(dispute).model_dump(mode="json"))


@router.post("/{order_id}/disputes/{dispute_id}/resolve")
async def resolve_dispute(
    order_id: str,
    dispute_id: str,
    body: ResolveDisputeRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.resolve_dispute(
        db, order_id, dispute_id, actor, body.outcome, body.resolution
    )
    return _order(request, order)


@router.post("/{order_id}/reviews", status_code=201)
async def add_review(
    order_id: str,
    body: ReviewRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    review = await engine.add_review(db, order_id, actor, body.rating, body.comment)
    return _ok(request, ReviewResponse.from_domain(review).model_dump(mode="json"))


@router.get("/{order_id}/reviews")
async def list_reviews(
    order_id: str, actor: CurrentActor, db: Db, engine: Engine, request: Request
) -> ApiResponse:
    reviews = await engine.list_reviews(db, order_id, actor)
    return _ok(request, [ReviewResponse.from_domain(r).model_dump(mode="json") for r in reviews])


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@router.post("/{order_id}/payment/hold")
async def hold_payment(
    order_id: str,
    body: HoldPaymentRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.authorize_and_hold(
        db,
        order_id,
        actor,
        body.amount_cents,
        body.currency,
        payment_method=body.payment_method,
    )
    return _order(request, order)


@router.post("/{order_id}/payment/release")
async def release_payment(
    order_id: str,
    body: ReleasePaymentRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.release_funds(db, order_id, actor, body.amount_cents)
    return _order(request, order)


@router.post("/{order_id}/payment/refund")
async def refund_payment(
    order_id: str,
    body: RefundPaymentRequest,
    actor: CurrentActor,
    db: Db,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.refund(db, order_id, actor, body.amount_cents, body.reason)
    return _order(request, order)
