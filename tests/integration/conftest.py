"""API-level fixtures.

The app is driven in-process through httpx's ASGITransport. The lifespan
does not run under ASGITransport, so the lifecycle engine and webhook service
are wired onto `app.state` here with in-memory persistence and a fake
payment port; get_db_session is overridden to hand out fake sessions.
"""

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.mp_common.database import get_db_session
from src.mp_order.application.engine import OrderLifecycleEngine
from src.mp_order.domain.policies import PercentageFeePolicy
from src.mp_payment.application.webhook import PaymentWebhookService
from tests.fakes import FakeGateway, FakeSession, InMemoryOrderRepository

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
async def client(repo: InMemoryOrderRepository, gateway: FakeGateway) -> AsyncIterator[AsyncClient]:
    app.state.engine = OrderLifecycleEngine(
        repo=repo,
        gateway=gateway,
        fee_policy=PercentageFeePolicy(fee_bps=1000),
        payment_timeout=1.0,
    )
    app.state.webhook_service = PaymentWebhookService(repo, gateway, WEBHOOK_SECRET)

    async def _session() -> AsyncIterator[FakeSession]:
        yield repo.session()

    app.dependency_overrides[get_db_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

