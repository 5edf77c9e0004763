"""Order and payment state machines.

Both axes are closed transition tables; anything not listed is illegal.
The payment axis is additionally coupled to the order axis: which payment
edges are reachable depends on the order status (see `check_payment_edge`).
"""
from src.mp_common.enums import EventType, OrderStatus, PaymentStatus
from src.mp_common.errors import InvalidPaymentTransitionError, InvalidTransitionError

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(
        {OrderStatus.COMPLETED, OrderStatus.DISPUTED, OrderStatus.CANCELLED}
    ),
    OrderStatus.COMPLETED: frozenset({OrderStatus.DISPUTED}),
    OrderStatus.DISPUTED: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.HELD, PaymentStatus.FAILED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.HELD: frozenset(
        {PaymentStatus.PARTIALLY_RELEASED, PaymentStatus.RELEASED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.PARTIALLY_RELEASED: frozenset(
        {PaymentStatus.PARTIALLY_RELEASED, PaymentStatus.RELEASED}
    ),
    PaymentStatus.RELEASED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

# Order statuses in which escrow may be funded.
HOLDABLE_ORDER_STATUSES = frozenset(
    {OrderStatus.CREATED, OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS}
)
# Payment statuses meaning "money is sitting in escrow".
ESCROWED_PAYMENT_STATUSES = frozenset({PaymentStatus.HELD, PaymentStatus.PARTIALLY_RELEASED})
# Order statuses from which a delivery may be submitted.
DELIVERABLE_ORDER_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS})

STATUS_EVENT_TYPES: dict[OrderStatus, EventType] = {
    OrderStatus.CREATED: EventType.ORDER_CREATED,
    OrderStatus.CONFIRMED: EventType.ORDER_CONFIRMED,
    OrderStatus.IN_PROGRESS: EventType.ORDER_IN_PROGRESS,
    OrderStatus.DELIVERED: EventType.ORDER_DELIVERED,
    OrderStatus.COMPLETED: EventType.ORDER_COMPLETED,
    OrderStatus.CANCELLED: EventType.ORDER_CANCELLED,
    OrderStatus.DISPUTED: EventType.ORDER_DISPUTED,
}

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    OrderStatus.CREATED: "Order was placed",
    OrderStatus.CONFIRMED: "Provider has accepted the order",
    OrderStatus.IN_PROGRESS: "Provider has started work",
    OrderStatus.DELIVERED: "Provider has marked the order as delivered",
    OrderStatus.COMPLETED: "Client has accepted the delivery and marked the order as complete",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.DISPUTED: "A dispute has been raised on the order",
}


def is_terminal(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS[status]


def check_order_edge(current: OrderStatus, target: OrderStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is in the table."""
    if target not in ORDER_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def check_payment_edge(
    current: PaymentStatus, target: PaymentStatus, order_status: OrderStatus
) -> None:
    """Validate a payment edge against both its own table and the order status.

    HELD needs a fundable order, RELEASED needs COMPLETED, PARTIALLY_RELEASED
    needs COMPLETED or DISPUTED, REFUNDED needs CANCELLED. FAILED is only
    reachable while funding.
    """
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidPaymentTransitionError(current.value, target.value)

    if target in (PaymentStatus.HELD, PaymentStatus.FAILED):
        allowed = HOLDABLE_ORDER_STATUSES
    elif target == PaymentStatus.RELEASED:
        allowed = frozenset({OrderStatus.COMPLETED})
    elif target == PaymentStatus.PARTIALLY_RELEASED:
        allowed = frozenset({OrderStatus.COMPLETED, OrderStatus.DISPUTED})
    else:  # REFUNDED
        allowed = frozenset({OrderStatus.CANCELLED})

    if order_status not in allowed:
        raise InvalidPaymentTransitionError(
            current.value,
            target.value,
            f"order is {order_status.value}",
        )
