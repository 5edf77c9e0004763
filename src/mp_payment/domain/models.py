"""Payment port records — what the processor hands back. Amounts in cents."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    amount_cents: int
    currency: str
    status: str  # processor status string, e.g. "requires_capture", "succeeded"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def declined(self) -> bool:
        return self.status in ("canceled", "requires_payment_method")


@dataclass(frozen=True)
class CaptureResult:
    intent_id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class TransferResult:
    id: str
    amount_cents: int
    destination: str


@dataclass(frozen=True)
class RefundResult:
    id: str
    amount_cents: int | None
    status: str


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    data: dict[str, Any]

    @property
    def order_id(self) -> str | None:
        obj = self.data.get("object", {})
        metadata = obj.get("metadata") or {}
        return metadata.get("order_id")
