"""Order lifecycle over HTTP: envelope, auth, status codes and the escrow flow."""
import json
from typing import Any

import pytest
from httpx import AsyncClient

from src.mp_gateway.auth.jwt_handler import create_access_token

pytestmark = pytest.mark.integration

BASE = "/api/v1/orders"


def bearer(user_id: str, *roles: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, roles=list(roles))}"}


CLIENT = bearer("client-1")
PROVIDER = bearer("provider-1")
ADMIN = bearer("admin-1", "admin")
STRANGER = bearer("stranger-1")

_ORDER_BODY = {
    "provider_id": "provider-1",
    "service_id": "svc-1",
    "title": "Logo design",
    "description": "Three concepts",
    "price": {"subtotal": "100.00", "fees": "15.00", "taxes": "0.00", "total": "115.00"},
}


async def _create(client: AsyncClient) -> dict[str, Any]:
    resp = await client.post(BASE, json=_ORDER_BODY, headers=CLIENT)
    assert resp.status_code == 201
    return resp.json()["data"]


async def _move(client: AsyncClient, order_id: str, target: str, headers: dict[str, str]) -> Any:
    return await client.post(f"{BASE}/{order_id}/transition", json={"target": target}, headers=headers)


async def _hold(client: AsyncClient, order_id: str) -> Any:
    return await client.post(
        f"{BASE}/{order_id}/payment/hold",
        json={"amount_cents": 11500, "currency": "USD"},
        headers=CLIENT,
    )


async def _delivered(client: AsyncClient) -> str:
    order_id = (await _create(client))["id"]
    assert (await _hold(client, order_id)).status_code == 200
    assert (await _move(client, order_id, "CONFIRMED", PROVIDER)).status_code == 200
    resp = await client.post(
        f"{BASE}/{order_id}/deliveries",
        json={
            "description": "Final files",
            "files": [{"file_name": "logo.svg", "file_type": "image/svg+xml",
                       "file_url": "https://files.example.com/logo.svg"}],
        },
        headers=PROVIDER,
    )
    assert resp.status_code == 201
    return order_id


class TestEnvelopeAndAuth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_returns_envelope(self, client: AsyncClient) -> None:
        resp = await client.post(BASE, json=_ORDER_BODY, headers=CLIENT)
        body = resp.json()
        assert resp.status_code == 201
        assert body["code"] == 0
        assert body["request_id"].startswith("req_")
        assert body["data"]["status"] == "CREATED"
        assert body["data"]["payment_status"] == "PENDING"
        assert body["data"]["price"]["total_cents"] == 11500

    async def test_request_id_round_trip(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/ord_missing", headers={**CLIENT, "X-Request-ID": "trace-42"})
        assert resp.headers["X-Request-ID"] == "trace-42"
        assert resp.json()["request_id"] == "trace-42"

        generated = await client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        assert generated.headers["X-Request-ID"].startswith("req_")

    async def test_missing_token_is_401(self, client: AsyncClient) -> None:
        resp = await client.post(BASE, json=_ORDER_BODY)
        assert resp.status_code == 401

    async def test_bad_token_is_401(self, client: AsyncClient) -> None:
        resp = await client.get(BASE, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    async def test_inconsistent_price_is_422(self, client: AsyncClient) -> None:
        body = {**_ORDER_BODY, "price": {"subtotal": "100.00", "total": "99.00"}}
        resp = await client.post(BASE, json=body, headers=CLIENT)
        assert resp.status_code == 422
        assert resp.json()["code"] == 4001

    async def test_stranger_gets_403(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["id"]
        resp = await client.get(f"{BASE}/{order_id}", headers=STRANGER)
        assert resp.status_code == 403
        assert resp.json()["code"] == 1006

    async def test_unknown_order_404(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/ord_missing", headers=CLIENT)
        assert resp.status_code == 404
        assert resp.json()["data"] is None


class TestLifecycle:
    async def test_illegal_transition_is_409(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["id"]
        resp = await _move(client, order_id, "COMPLETED", ADMIN)
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == 4010
        assert body["retryable"] is False

    async def test_list_with_pagination(self, client: AsyncClient) -> None:
        for _ in range(3):
            await _create(client)
        resp = await client.get(BASE, params={"limit": 2}, headers=CLIENT)
        data = resp.json()["data"]
        assert len(data["items"]) == 2
        assert data["has_more"] is True

        resp = await client.get(
            BASE, params={"role": "PROVIDER", "status": ["CREATED"]}, headers=PROVIDER
        )
        assert len(resp.json()["data"]["items"]) == 3

    async def test_happy_path_releases_to_provider(
        self, client: AsyncClient, gateway
    ) -> None:
        order_id = await _delivered(client)
        resp = await client.post(f"{BASE}/{order_id}/accept", json={}, headers=CLIENT)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "COMPLETED"
        assert data["payment_status"] == "RELEASED"
        assert [r.amount_cents for op, _, r in gateway.effects if op == "release"] == [10350]

        review = await client.post(
            f"{BASE}/{order_id}/reviews", json={"rating": 5, "comment": "Great"}, headers=CLIENT
        )
        assert review.status_code == 201
        assert review.json()["data"]["recipient_id"] == "provider-1"

        timeline = await client.get(f"{BASE}/{order_id}/timeline", headers=PROVIDER)
        types = [e["type"] for e in timeline.json()["data"]["events"]]
        assert types == [
            "order_created",
            "payment_captured",
            "order_confirmed",
            "order_in_progress",
            "order_delivered",
            "order_completed",
            "payment_released",
            "review_submitted",
        ]

    async def test_deliveries_listed(self, client: AsyncClient) -> None:
        order_id = await _delivered(client)
        resp = await client.get(f"{BASE}/{order_id}/deliveries", headers=CLIENT)
        deliveries = resp.json()["data"]
        assert len(deliveries) == 1
        assert deliveries[0]["files"][0]["file_name"] == "logo.svg"

    async def test_cancel_refunds_escrow(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["id"]
        await _hold(client, order_id)
        resp = await client.post(
            f"{BASE}/{order_id}/cancel", json={"reason": "Changed plans"}, headers=CLIENT
        )
        data = resp.json()["data"]
        assert data["status"] == "CANCELLED"
        assert data["payment_status"] == "REFUNDED"
        assert data["refunded_amount_cents"] == 11500

    async def test_transition_to_cancelled_refunds_escrow(
        self, client: AsyncClient, gateway
    ) -> None:
        order_id = (await _create(client))["id"]
        await _hold(client, order_id)
        await _move(client, order_id, "CONFIRMED", PROVIDER)
        resp = await _move(client, order_id, "CANCELLED", CLIENT)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "CANCELLED"
        assert data["payment_status"] == "REFUNDED"
        assert gateway.effect_count("refund") == 1

    async def test_transition_into_dispute_is_409(self, client: AsyncClient) -> None:
        order_id = await _delivered(client)
        resp = await _move(client, order_id, "DISPUTED", CLIENT)
        assert resp.status_code == 409
        assert resp.json()["code"] == 4010

    async def test_dispute_resolved_for_client(self, client: AsyncClient) -> None:
        order_id = await _delivered(client)
        opened = await client.post(
            f"{BASE}/{order_id}/disputes",
            json={"reason": "Not as described", "description": "One concept only"},
            headers=CLIENT,
        )
        assert opened.status_code == 201
        dispute_id = opened.json()["data"]["id"]

        again = await client.post(
            f"{BASE}/{order_id}/disputes", json={"reason": "Again"}, headers=PROVIDER
        )
        assert again.status_code == 409

        refused = await client.post(
            f"{BASE}/{order_id}/disputes/{dispute_id}/resolve",
            json={"outcome": "CLIENT", "resolution": "Refund"},
            headers=CLIENT,
        )
        assert refused.status_code == 403

        resolved = await client.post(
            f"{BASE}/{order_id}/disputes/{dispute_id}/resolve",
            json={"outcome": "CLIENT", "resolution": "Refund"},
            headers=ADMIN,
        )
        assert resolved.status_code == 200
        assert resolved.json()["data"]["payment_status"] == "REFUNDED"


class TestPaymentErrors:
    async def test_decline_is_402_and_recorded(self, client: AsyncClient, gateway) -> None:
        order_id = (await _create(client))["id"]
        gateway.decline_on.add("authorize")
        resp = await _hold(client, order_id)
        assert resp.status_code == 402
        assert resp.json()["code"] == 6001

        order = await client.get(f"{BASE}/{order_id}", headers=CLIENT)
        assert order.json()["data"]["payment_status"] == "FAILED"

    async def test_timeout_is_retryable_504(self, client: AsyncClient, gateway) -> None:
        order_id = (await _create(client))["id"]
        gateway.timeout_on["capture"] = 1
        resp = await _hold(client, order_id)
        assert resp.status_code == 504
        assert resp.json()["retryable"] is True

        retry = await _hold(client, order_id)
        assert retry.status_code == 200
        assert retry.json()["data"]["payment_status"] == "HELD"
        assert gateway.effect_count("capture") == 1

    async def test_amount_mismatch_is_422(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["id"]
        resp = await client.post(
            f"{BASE}/{order_id}/payment/hold", json={"amount_cents": 100}, headers=CLIENT
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == 6003

    async def test_release_before_completion_is_409(self, client: AsyncClient) -> None:
        order_id = await _delivered(client)
        resp = await client.post(f"{BASE}/{order_id}/payment/release", json={}, headers=CLIENT)
        assert resp.status_code == 409
        assert resp.json()["code"] == 4011


class TestWebhook:
    async def test_recorded_then_deduplicated(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["id"]
        payload = json.dumps(
            {"id": "evt_1", "type": "payment_intent.succeeded",
             "data": {"object": {"id": "pi_1", "metadata": {"order_id": order_id}}}}
        )
        headers = {"Stripe-Signature": "valid:whsec_test", "Content-Type": "application/json"}

        first = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
        assert first.status_code == 200
        assert first.json()["data"] == {"received": True, "recorded": True}

        second = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
        assert second.json()["data"] == {"received": True, "recorded": False}

    async def test_bad_signature_is_400(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "forged"}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == 6004

    async def test_missing_signature_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/payments/webhook", content=b"{}")
        assert resp.status_code == 400
