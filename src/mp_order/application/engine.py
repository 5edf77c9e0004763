"""OrderLifecycleEngine — order and escrow payment state machines.

Every public mutating method is one unit of work: it loads the order, runs
the state-machine checks, talks to the payment port if needed, then saves
the order (compare-and-swap on version) and appends its timeline events
before a single commit. Any exception rolls the whole unit back.

Two outcomes are committed *and* raised: a payment decline (paymentStatus
FAILED is a real transition) and a payment-port timeout (a `payment_pending`
event records the unknown outcome; the retry reuses the same idempotency
key because `payment_epoch` has not moved).
"""
import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.datetime_utils import utc_now
from src.mp_common.enums import (
    DisputeOutcome,
    DisputeStatus,
    EventType,
    OrderStatus,
    PartyRole,
    PaymentOperation,
    PaymentStatus,
)
from src.mp_common.errors import (
    AppError,
    ConcurrentModificationError,
    DisputeAlreadyOpenError,
    DisputeNotFoundError,
    InternalError,
    InvalidOrderError,
    InvalidPaymentTransitionError,
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentAmountMismatchError,
    PaymentFailedError,
    PaymentPortTimeoutError,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
    UnauthorizedError,
)
from src.mp_common.id_generator import generate_id
from src.mp_order.application.timeline import OrderTimeline
from src.mp_order.domain.models import (
    Actor,
    DeliveryFile,
    Order,
    OrderDelivery,
    OrderDispute,
    OrderEvent,
    OrderFilters,
    OrderReview,
    PriceBreakdown,
)
from src.mp_order.domain.policies import (
    AdminPartialReleasePolicy,
    Authorizer,
    FeePolicy,
    IdempotencyKeyPolicy,
    PartialReleasePolicy,
    PartyAuthorizer,
    PercentageFeePolicy,
    default_idempotency_key,
)
from src.mp_order.domain.repository import OrderRepositoryProtocol
from src.mp_order.domain.state_machine import (
    DELIVERABLE_ORDER_STATUSES,
    ESCROWED_PAYMENT_STATUSES,
    STATUS_DESCRIPTIONS,
    STATUS_EVENT_TYPES,
    check_order_edge,
    check_payment_edge,
)
from src.mp_payment.domain.gateway import (
    PaymentDeclined,
    PaymentGatewayError,
    PaymentGatewayProtocol,
    PaymentGatewayTimeout,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_RATING = 1
MAX_RATING = 5


def provider_destination(order: Order) -> str:
    """Payout destination: the provider's connected account is keyed by provider id."""
    return order.provider_id


class OrderLifecycleEngine:
    def __init__(
        self,
        repo: OrderRepositoryProtocol,
        gateway: PaymentGatewayProtocol,
        authorizer: Authorizer | None = None,
        fee_policy: FeePolicy | None = None,
        partial_release_policy: PartialReleasePolicy | None = None,
        idempotency_key: IdempotencyKeyPolicy = default_idempotency_key,
        payout_destination: Callable[[Order], str] = provider_destination,
        payment_timeout: float = 10.0,
    ) -> None:
        self._repo = repo
        self._gateway = gateway
        self._authorizer: Authorizer = authorizer or PartyAuthorizer()
        self._fee_policy: FeePolicy = fee_policy or PercentageFeePolicy(fee_bps=1000)
        self._partial_release: PartialReleasePolicy = (
            partial_release_policy or AdminPartialReleasePolicy()
        )
        self._idempotency_key = idempotency_key
        self._payout_destination = payout_destination
        self._payment_timeout = payment_timeout
        # An entry lives only while some coroutine holds or awaits its lock
        self._order_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock
        return lock

    @asynccontextmanager
    async def _unit_of_work(self, db: AsyncSession) -> AsyncIterator[None]:
        try:
            yield
            await db.commit()
        except ConcurrentModificationError as exc:
            await db.rollback()
            logger.warning("Conflict: %s", exc.message)
            raise
        except Exception:
            await db.rollback()
            raise

    async def _load(self, db: AsyncSession, order_id: str, for_update: bool = False) -> Order:
        order = await self._repo.load_order(db, order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _persist(
        self,
        db: AsyncSession,
        order: Order,
        expected_version: int,
        events: list[OrderEvent],
    ) -> None:
        await self._repo.save_order(db, order, expected_version)
        for event in events:
            await self._repo.append_event(db, event)

    def _event(
        self,
        order: Order,
        event_type: EventType | str,
        description: str,
        actor_id: str,
        metadata: dict[str, Any] | None = None,
        at: datetime | None = None,
    ) -> OrderEvent:
        return OrderEvent(
            id=generate_id("evt_"),
            order_id=order.id,
            type=event_type.value if isinstance(event_type, EventType) else event_type,
            description=description,
            created_by=actor_id,
            created_at=at or utc_now(),
            metadata=metadata or {},
        )

    def _require_view(self, actor: Actor, order: Order) -> None:
        if not self._authorizer.can_view(actor, order):
            raise UnauthorizedError(actor.user_id, f"view order {order.id}")

    def _require_payment(self, actor: Actor, order: Order, operation: PaymentOperation) -> None:
        if not self._authorizer.can_manage_payment(actor, order, operation):
            raise UnauthorizedError(actor.user_id, f"{operation.value} payment of order {order.id}")

    def _move(
        self,
        order: Order,
        target: OrderStatus,
        actor: Actor,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OrderEvent:
        """Apply one order-status edge in memory and return its event."""
        current = order.status
        check_order_edge(current, target)
        if not self._authorizer.can_transition(actor, order, target):
            raise UnauthorizedError(
                actor.user_id, f"move order {order.id} from {current.value} to {target.value}"
            )
        if target == OrderStatus.COMPLETED and order.payment_status not in ESCROWED_PAYMENT_STATUSES:
            raise InvalidTransitionError(
                current.value, target.value, f"payment is {order.payment_status.value}, not in escrow"
            )
        if current == OrderStatus.COMPLETED and target == OrderStatus.DISPUTED and (
            order.payment_status in (PaymentStatus.RELEASED, PaymentStatus.PARTIALLY_RELEASED)
        ):
            raise InvalidTransitionError(
                current.value, target.value, "funds were already released"
            )
        if target == OrderStatus.CANCELLED and (
            order.payment_status in (PaymentStatus.RELEASED, PaymentStatus.PARTIALLY_RELEASED)
        ):
            raise InvalidTransitionError(
                current.value, target.value, "funds were already released"
            )

        now = utc_now()
        order.status = target
        order.updated_at = now
        event_metadata: dict[str, Any] = {"from": current.value, "to": target.value}
        if notes:
            event_metadata["notes"] = notes
        event_metadata.update(metadata or {})
        return self._event(
            order, STATUS_EVENT_TYPES[target], STATUS_DESCRIPTIONS[target],
            actor.user_id, event_metadata, at=now,
        )

    def _move_payment(
        self,
        order: Order,
        target: PaymentStatus,
        actor: Actor,
        event_type: EventType,
        description: str,
        metadata: dict[str, Any],
    ) -> OrderEvent:
        """Apply one payment-status edge in memory and return its event."""
        current = order.payment_status
        check_payment_edge(current, target, order.status)
        now = utc_now()
        order.payment_status = target
        order.payment_epoch += 1
        order.updated_at = now
        return self._event(
            order, event_type, description, actor.user_id,
            {"from": current.value, "to": target.value, **metadata}, at=now,
        )

    @staticmethod
    def _needs_refund(order: Order) -> bool:
        return order.payment_status == PaymentStatus.HELD or (
            order.payment_status == PaymentStatus.PENDING and order.payment_intent_id is not None
        )

    def _key(self, order: Order, operation: PaymentOperation) -> str:
        return self._idempotency_key(order.id, operation, order.payment_epoch)

    async def _call_port(
        self, operation: PaymentOperation, call: Awaitable[T], timeout: float | None
    ) -> T:
        bound = self._payment_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(call, timeout=bound)
        except asyncio.TimeoutError:
            raise PaymentGatewayTimeout(f"{operation.value} exceeded {bound}s") from None

    def _pending_event(
        self, order: Order, actor: Actor, operation: PaymentOperation, key: str, detail: str
    ) -> OrderEvent:
        logger.warning(
            "Payment %s for order %s timed out (key=%s): %s",
            operation.value, order.id, key, detail,
        )
        return self._event(
            order,
            EventType.PAYMENT_PENDING,
            f"Payment {operation.value} outcome unknown; it will be retried",
            actor.user_id,
            {"operation": operation.value, "idempotency_key": key, "outcome": "unknown"},
        )

    # ------------------------------------------------------------------
    # Order status axis
    # ------------------------------------------------------------------

    async def create_order(
        self,
        db: AsyncSession,
        actor: Actor,
        provider_id: str,
        service_id: str,
        title: str,
        description: str,
        price: PriceBreakdown,
        deadline: datetime | None = None,
    ) -> Order:
        """Place an order as the client. Starts CREATED / PENDING."""
        if provider_id == actor.user_id:
            raise InvalidOrderError("client and provider must differ")
        if price.total <= 0:
            raise InvalidOrderError("order total must be positive")
        now = utc_now()
        order = Order(
            id=generate_id("ord_"),
            client_id=actor.user_id,
            provider_id=provider_id,
            service_id=service_id,
            title=title,
            description=description,
            price=price,
            deadline=deadline,
            created_at=now,
            updated_at=now,
        )
        event = self._event(
            order,
            EventType.ORDER_CREATED,
            STATUS_DESCRIPTIONS[OrderStatus.CREATED],
            actor.user_id,
            {"to": OrderStatus.CREATED.value, "total_cents": price.total_cents,
             "currency": price.currency},
            at=now,
        )
        async with self._unit_of_work(db):
            await self._repo.insert_order(db, order)
            await self._repo.append_event(db, event)
        logger.info("Order %s created by %s for provider %s", order.id, actor.user_id, provider_id)
        return order

    async def get_order(self, db: AsyncSession, order_id: str, actor: Actor) -> Order:
        order = await self._load(db, order_id)
        self._require_view(actor, order)
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        actor: Actor,
        role: PartyRole,
        filters: OrderFilters,
        user_id: str | None = None,
    ) -> list[Order]:
        """Orders where `user_id` (default: the actor) is the client or provider."""
        party = user_id or actor.user_id
        if party != actor.user_id and not actor.is_admin:
            raise UnauthorizedError(actor.user_id, f"list orders of {party}")
        return await self._repo.list_orders_by_party(db, party, role, filters)

    async def transition(
        self,
        db: AsyncSession,
        order_id: str,
        target: OrderStatus,
        actor: Actor,
        notes: str | None = None,
    ) -> Order:
        """Move the order along one edge of the status table.

        CANCELLED always goes through `cancel`, so escrow is refunded in the
        same unit. Entering or leaving DISPUTED is refused here: disputes are
        opened with `open_dispute` and closed with `resolve_dispute`.
        """
        if target == OrderStatus.CANCELLED:
            return await self.cancel(db, order_id, actor, notes or "")
        async with self._unit_of_work(db):
            order = await self._load(db, order_id)
            expected = order.version
            previous = order.status
            try:
                if OrderStatus.DISPUTED in (previous, target):
                    raise InvalidTransitionError(
                        previous.value, target.value,
                        "disputes are opened and resolved through the dispute operations",
                    )
                event = self._move(order, target, actor, notes)
            except AppError:
                logger.warning(
                    "Refused transition %s -> %s on order %s by %s",
                    previous.value, target.value, order_id, actor.user_id,
                )
                raise
            await self._persist(db, order, expected, [event])
        logger.info(
            "Order %s: %s -> %s by %s", order_id, previous.value, target.value, actor.user_id
        )
        return order

    async def add_delivery(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        description: str,
        files: list[DeliveryFile],
        notes: str = "",
    ) -> OrderDelivery:
        """Record the provider's delivery and move the order to DELIVERED.

        From CONFIRMED the order passes through IN_PROGRESS first, so the
        status history only ever follows table edges.
        """
        async with self._unit_of_work(db):
            order = await self._load(db, order_id)
            expected = order.version
            if order.status not in DELIVERABLE_ORDER_STATUSES:
                raise InvalidTransitionError(
                    order.status.value, OrderStatus.DELIVERED.value, "order is not deliverable"
                )
            now = utc_now()
            delivery = OrderDelivery(
                id=generate_id("dlv_"),
                order_id=order.id,
                description=description,
                files=files,
                delivered_at=now,
                notes=notes,
            )
            events = []
            if order.status == OrderStatus.CONFIRMED:
                events.append(self._move(order, OrderStatus.IN_PROGRESS, actor))
            events.append(
                self._move(
                    order, OrderStatus.DELIVERED, actor, notes or None,
                    {"delivery_id": delivery.id, "file_count": len(files)},
                )
            )
            await self._persist(db, order, expected, events)
            await self._repo.insert_delivery(db, delivery)
        logger.info("Order %s delivered by %s (delivery %s)", order_id, actor.user_id, delivery.id)
        return delivery

    async def list_deliveries(
        self, db: AsyncSession, order_id: str, actor: Actor
    ) -> list[OrderDelivery]:
        await self.get_order(db, order_id, actor)
        return await self._repo.list_deliveries(db, order_id)

    async def get_timeline(
        self, db: AsyncSession, order_id: str, actor: Actor, page_size: int = 100
    ) -> OrderTimeline:
        await self.get_order(db, order_id, actor)
        return OrderTimeline(self._repo, db, order_id, page_size=page_size)

    # ------------------------------------------------------------------
    # Payment axis
    # ------------------------------------------------------------------

    async def authorize_and_hold(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        amount_cents: int,
        currency: str,
        timeout: float | None = None,
        payment_method: str | None = None,
    ) -> Order:
        """Authorize and capture the order total into escrow (PENDING -> HELD)."""
        failure: AppError | None = None
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            self._require_payment(actor, order, PaymentOperation.AUTHORIZE)
            check_payment_edge(order.payment_status, PaymentStatus.HELD, order.status)
            if currency.upper() != order.price.currency:
                raise PaymentAmountMismatchError(
                    f"currency {currency.upper()} != order currency {order.price.currency}"
                )
            if amount_cents != order.price.total_cents:
                raise PaymentAmountMismatchError(
                    f"{amount_cents} cents != order total {order.price.total_cents} cents"
                )

            metadata: dict[str, Any] = {"order_id": order.id, "client_id": order.client_id}
            if payment_method:
                metadata["payment_method"] = payment_method
            operation = PaymentOperation.AUTHORIZE
            key = self._key(order, operation)
            try:
                logger.debug("Authorizing %d %s for order %s key=%s",
                             amount_cents, currency, order.id, key)
                intent = await self._call_port(
                    operation,
                    self._gateway.authorize(amount_cents, order.price.currency, metadata, key),
                    timeout,
                )
                order.payment_intent_id = intent.id
                operation = PaymentOperation.CAPTURE
                key = self._key(order, operation)
                await self._call_port(operation, self._gateway.capture(intent.id, key), timeout)
            except PaymentDeclined as exc:
                logger.warning("Payment declined for order %s: %s", order.id, exc.reason)
                events = [
                    self._move_payment(
                        order, PaymentStatus.FAILED, actor, EventType.PAYMENT_FAILED,
                        "Payment was declined", {"reason": exc.reason, "operation": operation.value},
                    )
                ]
                failure = PaymentFailedError(order.id, exc.reason)
            except PaymentGatewayTimeout as exc:
                events = [self._pending_event(order, actor, operation, key, str(exc))]
                failure = PaymentPortTimeoutError(order.id, operation.value)
            except PaymentGatewayError as exc:
                raise InternalError(f"Payment processor error: {exc}") from exc
            else:
                order.held_amount_cents = amount_cents
                events = [
                    self._move_payment(
                        order, PaymentStatus.HELD, actor, EventType.PAYMENT_CAPTURED,
                        "Payment was successfully captured and is being held in escrow",
                        {"amount_cents": amount_cents, "currency": order.price.currency,
                         "payment_intent_id": intent.id},
                    )
                ]
            await self._persist(db, order, expected, events)

        if failure is not None:
            raise failure
        logger.info("Order %s: %d cents held in escrow", order_id, amount_cents)
        return order

    async def _release(
        self,
        order: Order,
        actor: Actor,
        amount_cents: int | None,
        timeout: float | None,
    ) -> tuple[list[OrderEvent], AppError | None]:
        current = order.payment_status
        if current not in ESCROWED_PAYMENT_STATUSES:
            raise InvalidPaymentTransitionError(
                current.value, PaymentStatus.RELEASED.value, "no funds in escrow"
            )
        releasable = order.releasable_cents
        amount = releasable if amount_cents is None else amount_cents
        if amount <= 0 or amount > releasable:
            raise PaymentAmountMismatchError(
                f"release of {amount} cents, {releasable} cents releasable"
            )
        target = PaymentStatus.RELEASED if amount == releasable else PaymentStatus.PARTIALLY_RELEASED
        if order.status == OrderStatus.DISPUTED and (
            target == PaymentStatus.RELEASED
            or not self._partial_release.allows(order, amount, actor)
        ):
            raise InvalidPaymentTransitionError(
                current.value, target.value, "partial release during a dispute was not approved"
            )
        check_payment_edge(current, target, order.status)

        fee = self._fee_policy.platform_fee(order, amount)
        payout = amount - fee
        key = self._key(order, PaymentOperation.RELEASE)
        transfer_id: str | None = None
        if payout > 0:
            try:
                logger.debug("Releasing %d cents (fee %d) for order %s key=%s",
                             payout, fee, order.id, key)
                transfer = await self._call_port(
                    PaymentOperation.RELEASE,
                    self._gateway.release(
                        order.payment_intent_id or "",
                        payout,
                        order.price.currency,
                        self._payout_destination(order),
                        key,
                    ),
                    timeout,
                )
                transfer_id = transfer.id
            except PaymentGatewayTimeout as exc:
                event = self._pending_event(order, actor, PaymentOperation.RELEASE, key, str(exc))
                return [event], PaymentPortTimeoutError(order.id, PaymentOperation.RELEASE.value)
            except PaymentGatewayError as exc:
                raise InternalError(f"Payment processor error: {exc}") from exc

        order.released_amount_cents += amount
        event = self._move_payment(
            order, target, actor, EventType.PAYMENT_RELEASED,
            "Payment has been released to the provider",
            {"gross_cents": amount, "platform_fee_cents": fee, "payout_cents": payout,
             "transfer_id": transfer_id},
        )
        return [event], None

    async def _refund(
        self,
        order: Order,
        actor: Actor,
        amount_cents: int | None,
        reason: str | None,
        timeout: float | None,
    ) -> tuple[list[OrderEvent], AppError | None]:
        check_payment_edge(order.payment_status, PaymentStatus.REFUNDED, order.status)
        refundable = order.held_amount_cents - order.released_amount_cents
        if amount_cents is not None and not (0 < amount_cents <= refundable):
            raise PaymentAmountMismatchError(
                f"refund of {amount_cents} cents, {refundable} cents refundable"
            )
        key = self._key(order, PaymentOperation.REFUND)
        refund_id: str | None = None
        if order.payment_intent_id:
            try:
                logger.debug("Refunding order %s key=%s", order.id, key)
                result = await self._call_port(
                    PaymentOperation.REFUND,
                    self._gateway.refund(order.payment_intent_id, amount_cents, reason, key),
                    timeout,
                )
                refund_id = result.id
            except PaymentGatewayTimeout as exc:
                event = self._pending_event(order, actor, PaymentOperation.REFUND, key, str(exc))
                return [event], PaymentPortTimeoutError(order.id, PaymentOperation.REFUND.value)
            except PaymentGatewayError as exc:
                raise InternalError(f"Payment processor error: {exc}") from exc

        refunded = refundable if amount_cents is None else amount_cents
        order.refunded_amount_cents += refunded
        event = self._move_payment(
            order, PaymentStatus.REFUNDED, actor, EventType.PAYMENT_REFUNDED,
            "Payment has been refunded to the client",
            {"amount_cents": refunded, "reason": reason, "refund_id": refund_id},
        )
        return [event], None

    async def release_funds(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        amount_cents: int | None = None,
        timeout: float | None = None,
    ) -> Order:
        """Release escrow to the provider, minus the platform fee."""
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            self._require_payment(actor, order, PaymentOperation.RELEASE)
            events, failure = await self._release(order, actor, amount_cents, timeout)
            await self._persist(db, order, expected, events)
        if failure is not None:
            raise failure
        logger.info("Order %s: funds released, payment %s", order_id, order.payment_status.value)
        return order

    async def refund(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        amount_cents: int | None = None,
        reason: str | None = None,
        timeout: float | None = None,
    ) -> Order:
        """Refund escrow of a cancelled order back to the client."""
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            self._require_payment(actor, order, PaymentOperation.REFUND)
            events, failure = await self._refund(order, actor, amount_cents, reason, timeout)
            await self._persist(db, order, expected, events)
        if failure is not None:
            raise failure
        logger.info("Order %s: payment refunded", order_id)
        return order

    # ------------------------------------------------------------------
    # Coupled operations
    # ------------------------------------------------------------------

    async def cancel(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        reason: str,
        timeout: float | None = None,
    ) -> Order:
        """Cancel the order and refund whatever is in escrow, as one unit."""
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            if order.status == OrderStatus.DISPUTED:
                raise InvalidTransitionError(
                    order.status.value, OrderStatus.CANCELLED.value,
                    "an open dispute is closed with resolve_dispute",
                )
            events = [self._move(order, OrderStatus.CANCELLED, actor, reason or None)]
            failure = None
            if self._needs_refund(order):
                self._require_payment(actor, order, PaymentOperation.REFUND)
                refund_events, failure = await self._refund(
                    order, actor, None, "requested_by_customer", timeout
                )
                events.extend(refund_events)
            await self._persist(db, order, expected, events)
        if failure is not None:
            raise failure
        logger.info("Order %s cancelled by %s: %s", order_id, actor.user_id, reason)
        return order

    async def accept_delivery(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        notes: str | None = None,
        timeout: float | None = None,
    ) -> Order:
        """Client accepts the delivery: DELIVERED -> COMPLETED and full release."""
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            events = [self._move(order, OrderStatus.COMPLETED, actor, notes)]
            self._require_payment(actor, order, PaymentOperation.RELEASE)
            release_events, failure = await self._release(order, actor, None, timeout)
            events.extend(release_events)
            await self._persist(db, order, expected, events)
        if failure is not None:
            raise failure
        logger.info("Order %s completed and released by %s", order_id, actor.user_id)
        return order

    async def open_dispute(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        reason: str,
        description: str,
    ) -> OrderDispute:
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            if await self._repo.get_open_dispute(db, order_id) is not None:
                raise DisputeAlreadyOpenError(order_id)
            now = utc_now()
            dispute = OrderDispute(
                id=generate_id("dsp_"),
                order_id=order.id,
                reason=reason,
                description=description,
                created_by=actor.user_id,
                created_at=now,
            )
            event = self._move(
                order, OrderStatus.DISPUTED, actor, reason, {"dispute_id": dispute.id}
            )
            await self._persist(db, order, expected, [event])
            await self._repo.insert_dispute(db, dispute)
        logger.info("Dispute %s opened on order %s by %s", dispute.id, order_id, actor.user_id)
        return dispute

    async def resolve_dispute(
        self,
        db: AsyncSession,
        order_id: str,
        dispute_id: str,
        actor: Actor,
        outcome: DisputeOutcome,
        resolution: str,
        timeout: float | None = None,
    ) -> Order:
        """Arbitrate an open dispute.

        PROVIDER: order -> COMPLETED, remaining escrow released.
        CLIENT:   order -> CANCELLED, escrow refunded. A FAILED payment has
                  nothing to refund and is cancelled as is. Refused up front
                  when part of the escrow was already paid out.
        """
        async with self._lock_for(order_id), self._unit_of_work(db):
            order = await self._load(db, order_id, for_update=True)
            expected = order.version
            dispute = await self._repo.get_dispute(db, dispute_id)
            if dispute is None or dispute.order_id != order.id:
                raise DisputeNotFoundError(dispute_id)
            if dispute.status != DisputeStatus.OPEN:
                raise InvalidTransitionError(
                    dispute.status.value, DisputeStatus.RESOLVED.value, "dispute already resolved"
                )

            failure: AppError | None = None
            if outcome == DisputeOutcome.PROVIDER:
                events = [self._move(order, OrderStatus.COMPLETED, actor, resolution)]
                self._require_payment(actor, order, PaymentOperation.RELEASE)
                payment_events, failure = await self._release(order, actor, None, timeout)
            else:
                if order.payment_status not in (
                    PaymentStatus.PENDING, PaymentStatus.HELD, PaymentStatus.FAILED
                ):
                    raise InvalidPaymentTransitionError(
                        order.payment_status.value,
                        PaymentStatus.REFUNDED.value,
                        "escrow can no longer be refunded",
                    )
                events = [self._move(order, OrderStatus.CANCELLED, actor, resolution)]
                payment_events = []
                if self._needs_refund(order):
                    self._require_payment(actor, order, PaymentOperation.REFUND)
                    payment_events, failure = await self._refund(
                        order, actor, None, "dispute_resolved_for_client", timeout
                    )
            events.extend(payment_events)

            now = utc_now()
            dispute.status = DisputeStatus.RESOLVED
            dispute.resolved_at = now
            dispute.resolution = resolution
            events.append(
                self._event(
                    order, EventType.DISPUTE_RESOLVED,
                    f"Dispute resolved in favor of the {outcome.value.lower()}",
                    actor.user_id,
                    {"dispute_id": dispute.id, "outcome": outcome.value, "resolution": resolution},
                    at=now,
                )
            )
            await self._persist(db, order, expected, events)
            await self._repo.update_dispute(db, dispute)
        if failure is not None:
            raise failure
        logger.info("Dispute %s on order %s resolved for %s", dispute_id, order_id, outcome.value)
        return order

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def add_review(
        self,
        db: AsyncSession,
        order_id: str,
        actor: Actor,
        rating: int,
        comment: str,
    ) -> OrderReview:
        async with self._unit_of_work(db):
            order = await self._load(db, order_id)
            if not order.is_party(actor.user_id):
                raise UnauthorizedError(actor.user_id, f"review order {order_id}")
            if order.status != OrderStatus.COMPLETED:
                raise ReviewNotAllowedError(f"order is {order.status.value}, not COMPLETED")
            if not (MIN_RATING <= rating <= MAX_RATING):
                raise ReviewNotAllowedError(
                    f"rating must be {MIN_RATING}-{MAX_RATING}, got {rating}"
                )
            if await self._repo.get_review(db, order_id, actor.user_id) is not None:
                raise ReviewAlreadyExistsError(order_id, actor.user_id)
            review = OrderReview(
                id=generate_id("rev_"),
                order_id=order.id,
                reviewer_id=actor.user_id,
                recipient_id=order.counterparty_of(actor.user_id),
                rating=rating,
                comment=comment,
                created_at=utc_now(),
            )
            await self._repo.insert_review(db, review)
            await self._repo.append_event(
                db,
                self._event(
                    order, EventType.REVIEW_SUBMITTED, "A review was submitted",
                    actor.user_id,
                    {"review_id": review.id, "rating": rating, "recipient_id": review.recipient_id},
                    at=review.created_at,
                ),
            )
        return review

    async def list_reviews(
        self, db: AsyncSession, order_id: str, actor: Actor
    ) -> list[OrderReview]:
        await self.get_order(db, order_id, actor)
        return await self._repo.list_reviews(db, order_id)
