"""Injected policies: platform fee, partial release, idempotency keys, capabilities.

The engine never hardcodes any of these; callers pass their own or take
the defaults below.
"""
from typing import Protocol

from src.mp_common.cents import calculate_fee
from src.mp_common.enums import OrderStatus, PaymentOperation
from src.mp_order.domain.models import Actor, Order


class FeePolicy(Protocol):
    def platform_fee(self, order: Order, gross_cents: int) -> int: ...


class PercentageFeePolicy:
    """Fee = ceil(gross * bps / 10000); the platform never loses a cent to rounding."""

    def __init__(self, fee_bps: int) -> None:
        if not (0 <= fee_bps <= 10_000):
            raise ValueError(f"fee_bps must be 0-10000, got {fee_bps}")
        self.fee_bps = fee_bps

    def platform_fee(self, order: Order, gross_cents: int) -> int:
        return calculate_fee(gross_cents, self.fee_bps)


class PartialReleasePolicy(Protocol):
    def allows(self, order: Order, amount_cents: int, actor: Actor) -> bool: ...


class AdminPartialReleasePolicy:
    """Only an admin may release part of the escrow while a dispute is open."""

    def allows(self, order: Order, amount_cents: int, actor: Actor) -> bool:
        return actor.is_admin and 0 < amount_cents < order.releasable_cents


class IdempotencyKeyPolicy(Protocol):
    def __call__(self, order_id: str, operation: PaymentOperation, attempt_epoch: int) -> str: ...


def default_idempotency_key(order_id: str, operation: PaymentOperation, attempt_epoch: int) -> str:
    return f"{order_id}:{operation.value}:{attempt_epoch}"


class Authorizer(Protocol):
    def can_transition(self, actor: Actor, order: Order, target: OrderStatus) -> bool: ...

    def can_manage_payment(
        self, actor: Actor, order: Order, operation: PaymentOperation
    ) -> bool: ...

    def can_view(self, actor: Actor, order: Order) -> bool: ...


class PartyAuthorizer:
    """Default capability rules for client, provider and admin."""

    _PROVIDER_TARGETS = frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED}
    )
    _EITHER_CANCEL_FROM = frozenset(
        {OrderStatus.CREATED, OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS}
    )

    def can_transition(self, actor: Actor, order: Order, target: OrderStatus) -> bool:
        if actor.is_admin:
            return True
        if not order.is_party(actor.user_id):
            return False
        # Leaving a dispute is an arbitration decision.
        if order.status == OrderStatus.DISPUTED:
            return False
        is_client = actor.user_id == order.client_id
        if target == OrderStatus.DISPUTED:
            return True
        if target == OrderStatus.CANCELLED:
            if order.status in self._EITHER_CANCEL_FROM:
                return True
            return is_client  # DELIVERED -> CANCELLED is the client's rejection
        if target == OrderStatus.COMPLETED:
            return is_client
        if target in self._PROVIDER_TARGETS:
            return actor.user_id == order.provider_id
        return False

    def can_manage_payment(
        self, actor: Actor, order: Order, operation: PaymentOperation
    ) -> bool:
        if actor.is_admin:
            return True
        if operation in (PaymentOperation.AUTHORIZE, PaymentOperation.CAPTURE):
            return actor.user_id == order.client_id
        if operation == PaymentOperation.RELEASE:
            return actor.user_id == order.client_id
        return order.is_party(actor.user_id)

    def can_view(self, actor: Actor, order: Order) -> bool:
        return actor.is_admin or order.is_party(actor.user_id)
