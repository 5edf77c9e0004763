"""mp_payment REST API — processor webhook endpoint (signature-authenticated, no JWT)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.errors import WebhookSignatureError
from src.mp_common.response import ApiResponse, success_response
from src.mp_payment.application.webhook import PaymentWebhookService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_webhook_service(request: Request) -> PaymentWebhookService:
    return request.app.state.webhook_service


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PaymentWebhookService, Depends(get_webhook_service)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> ApiResponse:
    if not stripe_signature:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    payload = await request.body()
    recorded = await service.handle_webhook(db, payload, stripe_signature)
    return success_response({"received": True, "recorded": recorded}, request)
