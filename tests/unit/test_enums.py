"""Tests for mp_common.enums — all enum values must match DB CHECK constraints."""

from src.mp_common.enums import (
    DisputeOutcome,
    DisputeStatus,
    EventType,
    OrderStatus,
    PaymentOperation,
    PaymentStatus,
)
from src.mp_order.domain.state_machine import STATUS_EVENT_TYPES


class TestAllEnumsAreStr:
    """All enums inherit from (str, Enum) for JSON serialization."""

    def test_order_status_is_str(self) -> None:
        assert isinstance(OrderStatus.IN_PROGRESS, str)
        assert OrderStatus.IN_PROGRESS == "IN_PROGRESS"

    def test_payment_status_is_str(self) -> None:
        assert PaymentStatus.PARTIALLY_RELEASED == "PARTIALLY_RELEASED"

    def test_dispute_enums(self) -> None:
        assert DisputeStatus.OPEN == "OPEN"
        assert DisputeOutcome("CLIENT") is DisputeOutcome.CLIENT


class TestDbCheckValues:
    def test_order_statuses(self) -> None:
        assert {s.value for s in OrderStatus} == {
            "CREATED", "CONFIRMED", "IN_PROGRESS", "DELIVERED",
            "COMPLETED", "CANCELLED", "DISPUTED",
        }

    def test_payment_statuses(self) -> None:
        assert {s.value for s in PaymentStatus} == {
            "PENDING", "HELD", "PARTIALLY_RELEASED", "RELEASED", "REFUNDED", "FAILED",
        }


class TestEventTypes:
    def test_every_status_has_an_event_type(self) -> None:
        assert set(STATUS_EVENT_TYPES) == set(OrderStatus)

    def test_event_type_names_are_lowercase(self) -> None:
        assert all(e.value == e.value.lower() for e in EventType)

    def test_payment_operations_are_idempotency_key_segments(self) -> None:
        assert all(":" not in op.value for op in PaymentOperation)
