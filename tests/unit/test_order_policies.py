"""Tests for mp_order.domain.policies — fees, partial release, keys, capabilities."""

from decimal import Decimal

import pytest

from src.mp_common.enums import OrderStatus, PaymentOperation
from src.mp_order.domain.models import Actor, Order, PriceBreakdown
from src.mp_order.domain.policies import (
    AdminPartialReleasePolicy,
    PartyAuthorizer,
    PercentageFeePolicy,
    default_idempotency_key,
)

CLIENT = Actor("client-1")
PROVIDER = Actor("provider-1")
ADMIN = Actor("admin-1", is_admin=True)
STRANGER = Actor("stranger-1")


def _make_order(**kwargs) -> Order:
    return Order(
        id=kwargs.get("id", "ord_1"),
        client_id="client-1",
        provider_id="provider-1",
        service_id="svc-1",
        title="Logo",
        description="",
        price=PriceBreakdown(Decimal("100.00"), Decimal("15.00"), Decimal("0"), Decimal("115.00")),
        status=kwargs.get("status", OrderStatus.CREATED),
        held_amount_cents=kwargs.get("held_amount_cents", 11500),
        released_amount_cents=kwargs.get("released_amount_cents", 0),
    )


class TestPercentageFeePolicy:
    def test_ten_percent(self) -> None:
        assert PercentageFeePolicy(1000).platform_fee(_make_order(), 11500) == 1150

    def test_rounds_in_platform_favour(self) -> None:
        assert PercentageFeePolicy(1000).platform_fee(_make_order(), 11501) == 1151

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_rejects_out_of_range(self, bps: int) -> None:
        with pytest.raises(ValueError):
            PercentageFeePolicy(bps)


class TestAdminPartialReleasePolicy:
    def test_admin_partial_allowed(self) -> None:
        assert AdminPartialReleasePolicy().allows(_make_order(), 5000, ADMIN)

    def test_non_admin_refused(self) -> None:
        assert not AdminPartialReleasePolicy().allows(_make_order(), 5000, CLIENT)

    def test_full_amount_is_not_partial(self) -> None:
        assert not AdminPartialReleasePolicy().allows(_make_order(), 11500, ADMIN)

    def test_respects_already_released(self) -> None:
        order = _make_order(released_amount_cents=10000)
        assert not AdminPartialReleasePolicy().allows(order, 2000, ADMIN)


class TestIdempotencyKey:
    def test_format(self) -> None:
        assert default_idempotency_key("ord_1", PaymentOperation.RELEASE, 2) == "ord_1:release:2"

    def test_epoch_changes_key(self) -> None:
        assert default_idempotency_key("ord_1", PaymentOperation.RELEASE, 1) != (
            default_idempotency_key("ord_1", PaymentOperation.RELEASE, 2)
        )


class TestPartyAuthorizer:
    auth = PartyAuthorizer()

    @pytest.mark.parametrize(
        "status,target",
        [
            (OrderStatus.CREATED, OrderStatus.CONFIRMED),
            (OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS),
            (OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED),
        ],
    )
    def test_provider_drives_work(self, status: OrderStatus, target: OrderStatus) -> None:
        order = _make_order(status=status)
        assert self.auth.can_transition(PROVIDER, order, target)
        assert not self.auth.can_transition(CLIENT, order, target)

    def test_client_completes(self) -> None:
        order = _make_order(status=OrderStatus.DELIVERED)
        assert self.auth.can_transition(CLIENT, order, OrderStatus.COMPLETED)
        assert not self.auth.can_transition(PROVIDER, order, OrderStatus.COMPLETED)

    def test_either_party_cancels_before_delivery(self) -> None:
        order = _make_order(status=OrderStatus.CONFIRMED)
        assert self.auth.can_transition(CLIENT, order, OrderStatus.CANCELLED)
        assert self.auth.can_transition(PROVIDER, order, OrderStatus.CANCELLED)

    def test_only_client_rejects_delivery(self) -> None:
        order = _make_order(status=OrderStatus.DELIVERED)
        assert self.auth.can_transition(CLIENT, order, OrderStatus.CANCELLED)
        assert not self.auth.can_transition(PROVIDER, order, OrderStatus.CANCELLED)

    def test_either_party_disputes(self) -> None:
        order = _make_order(status=OrderStatus.DELIVERED)
        assert self.auth.can_transition(CLIENT, order, OrderStatus.DISPUTED)
        assert self.auth.can_transition(PROVIDER, order, OrderStatus.DISPUTED)

    def test_only_admin_leaves_dispute(self) -> None:
        order = _make_order(status=OrderStatus.DISPUTED)
        assert not self.auth.can_transition(CLIENT, order, OrderStatus.COMPLETED)
        assert not self.auth.can_transition(PROVIDER, order, OrderStatus.CANCELLED)
        assert self.auth.can_transition(ADMIN, order, OrderStatus.COMPLETED)

    def test_stranger_can_do_nothing(self) -> None:
        order = _make_order(status=OrderStatus.CREATED)
        assert not self.auth.can_transition(STRANGER, order, OrderStatus.CANCELLED)
        assert not self.auth.can_view(STRANGER, order)
        assert not self.auth.can_manage_payment(STRANGER, order, PaymentOperation.REFUND)

    def test_payment_capabilities(self) -> None:
        order = _make_order()
        assert self.auth.can_manage_payment(CLIENT, order, PaymentOperation.AUTHORIZE)
        assert not self.auth.can_manage_payment(PROVIDER, order, PaymentOperation.AUTHORIZE)
        assert self.auth.can_manage_payment(CLIENT, order, PaymentOperation.RELEASE)
        assert not self.auth.can_manage_payment(PROVIDER, order, PaymentOperation.RELEASE)
        assert self.auth.can_manage_payment(PROVIDER, order, PaymentOperation.REFUND)
        assert self.auth.can_manage_payment(ADMIN, order, PaymentOperation.RELEASE)
