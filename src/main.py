"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import settings
from src.mp_common.database import check_database, engine
from src.mp_common.errors import AppError
from src.mp_common.response import error_response
from src.mp_gateway.middleware.request_log import RequestLogMiddleware
from src.mp_order.api.router import router as order_router
from src.mp_order.application.engine import OrderLifecycleEngine
from src.mp_order.domain.policies import PercentageFeePolicy
from src.mp_order.infrastructure.persistence import OrderRepository
from src.mp_payment.api.router import router as payment_router
from src.mp_payment.application.webhook import PaymentWebhookService
from src.mp_payment.infrastructure.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB, wire the lifecycle engine. Shutdown: dispose."""
    # Startup
    await check_database()

    gateway = StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        api_base=settings.STRIPE_API_BASE,
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        webhook_tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
    repo = OrderRepository()
    app.state.engine = OrderLifecycleEngine(
        repo=repo,
        gateway=gateway,
        fee_policy=PercentageFeePolicy(fee_bps=settings.PLATFORM_FEE_BPS),
        payment_timeout=settings.PAYMENT_TIMEOUT_SECONDS,
    )
    app.state.webhook_service = PaymentWebhookService(
        repo=repo,
        gateway=gateway,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )
    logger.info("Order lifecycle engine ready (fee %d bps)", settings.PLATFORM_FEE_BPS)
    yield
    # Shutdown
    await gateway.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=error_response(exc, request).model_dump(),
    )


app.include_router(order_router, prefix="/api/v1")
app.include_router(payment_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
