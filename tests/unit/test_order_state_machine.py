"""Tests for mp_order.domain.state_machine — both transition tables and their coupling."""

import pytest

from src.mp_common.enums import OrderStatus, PaymentStatus
from src.mp_common.errors import InvalidPaymentTransitionError, InvalidTransitionError
from src.mp_order.domain.state_machine import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    STATUS_DESCRIPTIONS,
    STATUS_EVENT_TYPES,
    check_order_edge,
    check_payment_edge,
    is_terminal,
)

_ALLOWED_ORDER_EDGES = {
    (OrderStatus.CREATED, OrderStatus.CONFIRMED),
    (OrderStatus.CREATED, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED),
    (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED),
    (OrderStatus.DELIVERED, OrderStatus.COMPLETED),
    (OrderStatus.DELIVERED, OrderStatus.DISPUTED),
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    (OrderStatus.COMPLETED, OrderStatus.DISPUTED),
    (OrderStatus.DISPUTED, OrderStatus.COMPLETED),
    (OrderStatus.DISPUTED, OrderStatus.CANCELLED),
}


class TestOrderTable:
    def test_every_status_has_an_entry(self) -> None:
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)
        assert set(STATUS_EVENT_TYPES) == set(OrderStatus)
        assert set(STATUS_DESCRIPTIONS) == set(OrderStatus)

    @pytest.mark.parametrize("current", list(OrderStatus))
    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_exhaustive(self, current: OrderStatus, target: OrderStatus) -> None:
        if (current, target) in _ALLOWED_ORDER_EDGES:
            check_order_edge(current, target)
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                check_order_edge(current, target)
            assert exc_info.value.from_status == current.value
            assert exc_info.value.to_status == target.value

    def test_created_to_completed_refused(self) -> None:
        with pytest.raises(InvalidTransitionError, match="CREATED -> COMPLETED"):
            check_order_edge(OrderStatus.CREATED, OrderStatus.COMPLETED)

    def test_only_cancelled_is_terminal(self) -> None:
        assert [s for s in OrderStatus if is_terminal(s)] == [OrderStatus.CANCELLED]

    def test_no_self_loops(self) -> None:
        for status, targets in ORDER_TRANSITIONS.items():
            assert status not in targets


class TestPaymentTable:
    def test_every_status_has_an_entry(self) -> None:
        assert set(PAYMENT_TRANSITIONS) == set(PaymentStatus)

    @pytest.mark.parametrize(
        "terminal", [PaymentStatus.RELEASED, PaymentStatus.REFUNDED, PaymentStatus.FAILED]
    )
    def test_terminal_payment_states(self, terminal: PaymentStatus) -> None:
        assert PAYMENT_TRANSITIONS[terminal] == frozenset()

    def test_hold_from_pending_while_created(self) -> None:
        check_payment_edge(PaymentStatus.PENDING, PaymentStatus.HELD, OrderStatus.CREATED)

    def test_hold_refused_once_delivered(self) -> None:
        with pytest.raises(InvalidPaymentTransitionError, match="order is DELIVERED"):
            check_payment_edge(PaymentStatus.PENDING, PaymentStatus.HELD, OrderStatus.DELIVERED)

    def test_release_needs_completed(self) -> None:
        check_payment_edge(PaymentStatus.HELD, PaymentStatus.RELEASED, OrderStatus.COMPLETED)
        with pytest.raises(InvalidPaymentTransitionError):
            check_payment_edge(PaymentStatus.HELD, PaymentStatus.RELEASED, OrderStatus.DELIVERED)

    def test_partial_release_in_dispute(self) -> None:
        check_payment_edge(
            PaymentStatus.HELD, PaymentStatus.PARTIALLY_RELEASED, OrderStatus.DISPUTED
        )
        check_payment_edge(
            PaymentStatus.PARTIALLY_RELEASED, PaymentStatus.PARTIALLY_RELEASED, OrderStatus.DISPUTED
        )

    def test_refund_needs_cancelled(self) -> None:
        check_payment_edge(PaymentStatus.HELD, PaymentStatus.REFUNDED, OrderStatus.CANCELLED)
        with pytest.raises(InvalidPaymentTransitionError, match="order is CONFIRMED"):
            check_payment_edge(PaymentStatus.HELD, PaymentStatus.REFUNDED, OrderStatus.CONFIRMED)

    def test_no_refund_after_partial_release(self) -> None:
        with pytest.raises(InvalidPaymentTransitionError):
            check_payment_edge(
                PaymentStatus.PARTIALLY_RELEASED, PaymentStatus.REFUNDED, OrderStatus.CANCELLED
            )

    def test_release_after_refund_refused(self) -> None:
        with pytest.raises(InvalidPaymentTransitionError, match="REFUNDED -> RELEASED"):
            check_payment_edge(PaymentStatus.REFUNDED, PaymentStatus.RELEASED, OrderStatus.COMPLETED)
