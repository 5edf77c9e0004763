"""Order domain models — pure dataclasses, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from src.mp_common.cents import has_at_most_two_places, to_cents
from src.mp_common.enums import DisputeStatus, OrderStatus, PaymentStatus, PartyRole


@dataclass(frozen=True)
class Actor:
    """Whoever is calling: resolved from the bearer token by the gateway."""

    user_id: str
    is_admin: bool = False


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    fees: Decimal
    taxes: Decimal
    total: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        for name in ("subtotal", "fees", "taxes", "total"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"price.{name} must be >= 0, got {value}")
            if not has_at_most_two_places(value):
                raise ValueError(f"price.{name} has more than two decimal places: {value}")
        if self.total != self.subtotal + self.fees + self.taxes:
            raise ValueError(
                f"price.total {self.total} != subtotal + fees + taxes "
                f"({self.subtotal} + {self.fees} + {self.taxes})"
            )
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter ISO code, got {self.currency!r}")
        object.__setattr__(self, "currency", self.currency.upper())

    @property
    def total_cents(self) -> int:
        return to_cents(self.total)


@dataclass
class Order:
    id: str
    client_id: str
    provider_id: str
    service_id: str
    title: str
    description: str
    price: PriceBreakdown
    deadline: datetime | None = None
    status: OrderStatus = OrderStatus.CREATED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: str | None = None
    # Escrow bookkeeping (cents)
    held_amount_cents: int = 0
    released_amount_cents: int = 0
    refunded_amount_cents: int = 0
    # Advances once per applied payment-state transition; idempotency epoch
    payment_epoch: int = 0
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def releasable_cents(self) -> int:
        return self.held_amount_cents - self.released_amount_cents

    def role_of(self, user_id: str) -> PartyRole | None:
        if user_id == self.client_id:
            return PartyRole.CLIENT
        if user_id == self.provider_id:
            return PartyRole.PROVIDER
        return None

    def counterparty_of(self, user_id: str) -> str:
        return self.provider_id if user_id == self.client_id else self.client_id

    def is_party(self, user_id: str) -> bool:
        return self.role_of(user_id) is not None


@dataclass
class OrderEvent:
    id: str
    order_id: str
    type: str
    description: str
    created_by: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    seq: int | None = None  # assigned by persistence on append


@dataclass(frozen=True)
class DeliveryFile:
    file_name: str
    file_type: str  # MIME type
    file_url: str
    uploaded_at: datetime


@dataclass
class OrderDelivery:
    id: str
    order_id: str
    description: str
    files: list[DeliveryFile]
    delivered_at: datetime
    notes: str = ""


@dataclass
class OrderDispute:
    id: str
    order_id: str
    reason: str
    description: str
    created_by: str
    created_at: datetime
    status: DisputeStatus = DisputeStatus.OPEN
    resolved_at: datetime | None = None
    resolution: str | None = None


@dataclass
class OrderReview:
    id: str
    order_id: str
    reviewer_id: str
    recipient_id: str
    rating: int  # 1-5
    comment: str
    created_at: datetime


@dataclass
class OrderFilters:
    statuses: list[OrderStatus] | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = 20
    offset: int = 0
