"""Shared test fixtures."""

import os

# Settings() requires a secret; set it before anything imports config.settings
os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-production")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import pytest

from src.mp_order.application.engine import OrderLifecycleEngine
from src.mp_order.domain.models import Order
from src.mp_order.domain.policies import PercentageFeePolicy
from tests.fakes import FakeGateway, FakeSession, InMemoryOrderRepository
from tests.helpers import create


@pytest.fixture
def repo() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def db(repo: InMemoryOrderRepository) -> FakeSession:
    return repo.session()


@pytest.fixture
def engine(repo: InMemoryOrderRepository, gateway: FakeGateway) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(
        repo=repo,
        gateway=gateway,
        fee_policy=PercentageFeePolicy(fee_bps=1000),
        payment_timeout=1.0,
    )


@pytest.fixture
async def order(engine: OrderLifecycleEngine, db: FakeSession) -> Order:
    """A fresh CREATED / PENDING order for 115.00 USD."""
    return await create(engine, db)
