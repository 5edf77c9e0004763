"""StripeGateway — PaymentGatewayProtocol over the Stripe-compatible REST API.

Escrow mapping:
  authorize -> POST /payment_intents (capture_method=manual)
  capture   -> POST /payment_intents/{id}/capture
  release   -> POST /transfers (to the provider's connected account)
  refund    -> POST /refunds

Every POST sends an `Idempotency-Key` header, so a retry after a timeout is
deduplicated by the processor. Timeouts, connection failures and 5xx replies
are reported as PaymentGatewayTimeout (outcome unknown, retry with the same
key); card errors as PaymentDeclined.
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

from src.mp_common.errors import WebhookSignatureError
from src.mp_payment.domain.gateway import (
    PaymentDeclined,
    PaymentGatewayError,
    PaymentGatewayTimeout,
)
from src.mp_payment.domain.models import (
    CaptureResult,
    PaymentIntent,
    RefundResult,
    TransferResult,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

# Refund reasons the processor accepts verbatim; anything else goes to metadata.
_REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


def _form_metadata(metadata: dict[str, Any]) -> dict[str, str]:
    return {f"metadata[{k}]": str(v) for k, v in metadata.items()}


class StripeGateway:
    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        webhook_tolerance_seconds: int = 300,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=api_base,
            auth=(api_key, ""),
            timeout=timeout,
        )
        self._webhook_tolerance = webhook_tolerance_seconds

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self, path: str, data: dict[str, Any], idempotency_key: str
    ) -> dict[str, Any]:
        logger.debug("POST %s idempotency_key=%s", path, idempotency_key)
        try:
            resp = await self._client.post(
                path, data=data, headers={"Idempotency-Key": idempotency_key}
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise PaymentGatewayTimeout(f"{path}: {exc!r}") from exc

        if resp.status_code >= 500:
            raise PaymentGatewayTimeout(f"{path}: processor returned {resp.status_code}")

        try:
            body: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                f"{path}: unreadable processor response (HTTP {resp.status_code})"
            ) from exc
        if resp.status_code >= 400:
            error = body.get("error", {})
            message = error.get("message", f"HTTP {resp.status_code}")
            if error.get("type") == "card_error" or resp.status_code == 402:
                raise PaymentDeclined(error.get("decline_code") or message)
            raise PaymentGatewayError(f"{path}: {message}")
        return body

    async def authorize(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> PaymentIntent:
        data: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "capture_method": "manual",
            **_form_metadata(metadata),
        }
        payment_method = metadata.get("payment_method")
        if payment_method:
            data["payment_method"] = payment_method
            data["confirm"] = "true"
        body = await self._post("/payment_intents", data, idempotency_key)
        intent = PaymentIntent(
            id=body["id"],
            amount_cents=body["amount"],
            currency=body["currency"].upper(),
            status=body["status"],
            metadata=body.get("metadata") or {},
        )
        if intent.declined:
            raise PaymentDeclined(f"intent {intent.id} is {intent.status}")
        return intent

    async def capture(self, intent_id: str, idempotency_key: str) -> CaptureResult:
        body = await self._post(f"/payment_intents/{intent_id}/capture", {}, idempotency_key)
        result = CaptureResult(intent_id=body["id"], status=body["status"])
        if not result.succeeded:
            raise PaymentDeclined(f"capture of {intent_id} ended in {result.status}")
        return result

    async def release(
        self,
        intent_id: str,
        amount_cents: int,
        currency: str,
        destination: str,
        idempotency_key: str,
    ) -> TransferResult:
        body = await self._post(
            "/transfers",
            {
                "amount": amount_cents,
                "currency": currency.lower(),
                "destination": destination,
                "transfer_group": intent_id,
                **_form_metadata({"payment_intent": intent_id}),
            },
            idempotency_key,
        )
        return TransferResult(
            id=body["id"], amount_cents=body["amount"], destination=body["destination"]
        )

    async def refund(
        self,
        intent_id: str,
        amount_cents: int | None,
        reason: str | None,
        idempotency_key: str,
    ) -> RefundResult:
        data: dict[str, Any] = {"payment_intent": intent_id}
        if amount_cents is not None:
            data["amount"] = amount_cents
        if reason in _REFUND_REASONS:
            data["reason"] = reason
        elif reason:
            data.update(_form_metadata({"reason": reason}))
        body = await self._post("/refunds", data, idempotency_key)
        return RefundResult(id=body["id"], amount_cents=body.get("amount"), status=body["status"])

    def construct_webhook_event(
        self, payload: bytes, signature: str, secret: str
    ) -> WebhookEvent:
        """Verify a `t=<ts>,v1=<hex>` signature header and parse the event.

        The signed message is f"{t}.{payload}" under HMAC-SHA256 with the
        endpoint secret; stale timestamps are rejected to stop replays.
        """
        if not secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        parts: dict[str, list[str]] = {}
        for item in signature.split(","):
            key, _, value = item.strip().partition("=")
            parts.setdefault(key, []).append(value)
        try:
            timestamp = int(parts["t"][0])
        except (KeyError, ValueError):
            raise WebhookSignatureError("Malformed signature header") from None

        signed = f"{timestamp}.".encode() + payload
        expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        if not any(hmac.compare_digest(expected, v) for v in parts.get("v1", [])):
            raise WebhookSignatureError()
        if abs(time.time() - timestamp) > self._webhook_tolerance:
            raise WebhookSignatureError("Webhook timestamp outside tolerance")

        try:
            body = json.loads(payload)
            return WebhookEvent(id=body["id"], type=body["type"], data=body.get("data") or {})
        except (ValueError, KeyError, TypeError):
            raise WebhookSignatureError("Webhook payload is not a valid event") from None
