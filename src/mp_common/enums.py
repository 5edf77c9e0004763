"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    HELD = "HELD"
    PARTIALLY_RELEASED = "PARTIALLY_RELEASED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class PartyRole(str, Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class DisputeOutcome(str, Enum):
    """Who the dispute was resolved for."""
    PROVIDER = "PROVIDER"  # order -> COMPLETED, funds released
    CLIENT = "CLIENT"      # order -> CANCELLED, funds refunded


class PaymentOperation(str, Enum):
    AUTHORIZE = "authorize"
    CAPTURE = "capture"
    RELEASE = "release"
    REFUND = "refund"


class EventType(str, Enum):
    # Order status axis
    ORDER_CREATED = "order_created"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_IN_PROGRESS = "order_in_progress"
    ORDER_DELIVERED = "order_delivered"
    ORDER_COMPLETED = "order_completed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_DISPUTED = "order_disputed"
    # Payment axis
    PAYMENT_CAPTURED = "payment_captured"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RELEASED = "payment_released"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_PENDING = "payment_pending"
    # Records
    DISPUTE_RESOLVED = "dispute_resolved"
    REVIEW_SUBMITTED = "review_submitted"
