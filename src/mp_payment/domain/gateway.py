"""PaymentGatewayProtocol — the payment port consumed by the lifecycle engine.

Every mutating call carries an idempotency key; a retried call with the
same key must have at most one effect at the processor.

Implementations signal outcomes with the port exceptions below; the engine
translates them into AppErrors tied to the order.
"""
from typing import Any, Protocol

from src.mp_payment.domain.models import (
    CaptureResult,
    PaymentIntent,
    RefundResult,
    TransferResult,
    WebhookEvent,
)


class PaymentGatewayError(Exception):
    """Processor rejected the request for a non-payment reason (bad request, auth)."""


class PaymentDeclined(PaymentGatewayError):
    """Processor declined the payment (card error, insufficient funds, ...)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PaymentGatewayTimeout(PaymentGatewayError):
    """Outcome unknown: the request may or may not have been applied."""


class PaymentGatewayProtocol(Protocol):
    async def authorize(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> PaymentIntent: ...

    async def capture(self, intent_id: str, idempotency_key: str) -> CaptureResult: ...

    async def release(
        self,
        intent_id: str,
        amount_cents: int,
        currency: str,
        destination: str,
        idempotency_key: str,
    ) -> TransferResult: ...

    async def refund(
        self,
        intent_id: str,
        amount_cents: int | None,
        reason: str | None,
        idempotency_key: str,
    ) -> RefundResult: ...

    def construct_webhook_event(
        self, payload: bytes, signature: str, secret: str
    ) -> WebhookEvent: ...
