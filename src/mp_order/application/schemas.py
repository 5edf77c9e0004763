# src/mp_order/application/schemas.py
"""Pydantic request/response schemas for the order lifecycle API."""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.mp_common.cents import cents_to_display
from src.mp_common.enums import DisputeOutcome, OrderStatus
from src.mp_common.errors import InvalidOrderError
from src.mp_order.domain.models import (
    DeliveryFile,
    Order,
    OrderDelivery,
    OrderDispute,
    OrderEvent,
    OrderReview,
    PriceBreakdown,
)

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PriceRequest(BaseModel):
    subtotal: Decimal
    fees: Decimal = Decimal("0")
    taxes: Decimal = Decimal("0")
    total: Decimal
    currency: str = "USD"

    def to_domain(self) -> PriceBreakdown:
        try:
            return PriceBreakdown(
                subtotal=self.subtotal,
                fees=self.fees,
                taxes=self.taxes,
                total=self.total,
                currency=self.currency,
            )
        except ValueError as exc:
            raise InvalidOrderError(str(exc)) from exc


class CreateOrderRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: PriceRequest
    deadline: datetime | None = None


class TransitionRequest(BaseModel):
    target: OrderStatus
    notes: str | None = None


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class AcceptDeliveryRequest(BaseModel):
    notes: str | None = None


class DeliveryFileRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    file_type: str
    file_url: str = Field(..., min_length=1)
    uploaded_at: datetime | None = None

    def to_domain(self, default_uploaded_at: datetime) -> DeliveryFile:
        return DeliveryFile(
            file_name=self.file_name,
            file_type=self.file_type,
            file_url=self.file_url,
            uploaded_at=self.uploaded_at or default_uploaded_at,
        )


class DeliveryRequest(BaseModel):
    description: str = Field(..., min_length=1)
    files: list[DeliveryFileRequest] = Field(default_factory=list)
    notes: str = ""


class OpenDisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    description: str = ""


class ResolveDisputeRequest(BaseModel):
    outcome: DisputeOutcome
    resolution: str = Field(..., min_length=1)


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class HoldPaymentRequest(BaseModel):
    amount_cents: int = Field(..., gt=0, description="Must equal the order total in cents")
    currency: str = "USD"
    payment_method: str | None = None

    @field_validator("currency")
    @classmethod
    def upper_iso(cls, v: str) -> str:
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v.upper()


class ReleasePaymentRequest(BaseModel):
    amount_cents: int | None = Field(None, gt=0, description="Omit to release everything held")


class RefundPaymentRequest(BaseModel):
    amount_cents: int | None = Field(None, gt=0)
    reason: str | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PriceResponse(BaseModel):
    subtotal: Decimal
    fees: Decimal
    taxes: Decimal
    total: Decimal
    currency: str
    total_cents: int
    total_display: str


class OrderResponse(BaseModel):
    id: str
    client_id: str
    provider_id: str
    service_id: str
    title: str
    description: str
    price: PriceResponse
    deadline: datetime | None = None
    status: str
    payment_status: str
    payment_intent_id: str | None = None
    held_amount_cents: int
    released_amount_cents: int
    refunded_amount_cents: int
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        price = order.price
        return cls(
            id=order.id,
            client_id=order.client_id,
            provider_id=order.provider_id,
            service_id=order.service_id,
            title=order.title,
            description=order.description,
            price=PriceResponse(
                subtotal=price.subtotal,
                fees=price.fees,
                taxes=price.taxes,
                total=price.total,
                currency=price.currency,
                total_cents=price.total_cents,
                total_display=cents_to_display(price.total_cents, price.currency),
            ),
            deadline=order.deadline,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_intent_id=order.payment_intent_id,
            held_amount_cents=order.held_amount_cents,
            released_amount_cents=order.released_amount_cents,
            refunded_amount_cents=order.refunded_amount_cents,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    has_more: bool


class EventResponse(BaseModel):
    id: str
    seq: int | None
    type: str
    description: str
    created_by: str
    created_at: datetime
    metadata: dict[str, Any]

    @classmethod
    def from_domain(cls, event: OrderEvent) -> "EventResponse":
        return cls(
            id=event.id,
            seq=event.seq,
            type=event.type,
            description=event.description,
            created_by=event.created_by,
            created_at=event.created_at,
            metadata=event.metadata,
        )


class TimelineResponse(BaseModel):
    order_id: str
    events: list[EventResponse]


class DeliveryFileResponse(BaseModel):
    file_name: str
    file_type: str
    file_url: str
    uploaded_at: datetime


class DeliveryResponse(BaseModel):
    id: str
    order_id: str
    description: str
    files: list[DeliveryFileResponse]
    notes: str
    delivered_at: datetime

    @classmethod
    def from_domain(cls, delivery: OrderDelivery) -> "DeliveryResponse":
        return cls(
            id=delivery.id,
            order_id=delivery.order_id,
            description=delivery.description,
            files=[
                DeliveryFileResponse(
                    file_name=f.file_name,
                    file_type=f.file_type,
                    file_url=f.file_url,
                    uploaded_at=f.uploaded_at,
                )
                for f in delivery.files
            ],
            notes=delivery.notes,
            delivered_at=delivery.delivered_at,
        )


class DisputeResponse(BaseModel):
    id: str
    order_id: str
    reason: str
    description: str
    status: str
    created_by: str
    created_at: datetime
    resolved_at: datetime | None = None
    resolution: str | None = None

    @classmethod
    def from_domain(cls, dispute: OrderDispute) -> "DisputeResponse":
        return cls(
            id=dispute.id,
            order_id=dispute.order_id,
            reason=dispute.reason,
            description=dispute.description,
            status=dispute.status.value,
            created_by=dispute.created_by,
            created_at=dispute.created_at,
            resolved_at=dispute.resolved_at,
            resolution=dispute.resolution,
        )


class ReviewResponse(BaseModel):
    id: str
    order_id: str
    reviewer_id: str
    recipient_id: str
    rating: int
    comment: str
    created_at: datetime

    @classmethod
    def from_domain(cls, review: OrderReview) -> "ReviewResponse":
        return cls(
            id=review.id,
            order_id=review.order_id,
            reviewer_id=review.reviewer_id,
            recipient_id=review.recipient_id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
        )
