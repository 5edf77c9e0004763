"""PaymentWebhookService — records processor notifications on the order timeline.

Webhooks are informational only: payment state moves exclusively through the
order-coupled engine operations, so a late or replayed notification can never
push an order's escrow out of step with its status.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.datetime_utils import utc_now
from src.mp_order.domain.models import OrderEvent
from src.mp_order.domain.repository import OrderRepositoryProtocol
from src.mp_payment.domain.gateway import PaymentGatewayProtocol

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "payment-processor"


class PaymentWebhookService:
    def __init__(
        self,
        repo: OrderRepositoryProtocol,
        gateway: PaymentGatewayProtocol,
        webhook_secret: str,
    ) -> None:
        self._repo = repo
        self._gateway = gateway
        self._secret = webhook_secret

    async def handle_webhook(self, db: AsyncSession, payload: bytes, signature: str) -> bool:
        """Verify and record one notification.

        Returns True when a timeline event was written, False when the
        notification was acknowledged but ignored (unknown order or replay).
        Raises WebhookSignatureError on a bad signature.
        """
        event = self._gateway.construct_webhook_event(payload, signature, self._secret)
        order_id = event.order_id
        if not order_id:
            logger.info("Webhook %s (%s) carries no order id, ignored", event.id, event.type)
            return False

        try:
            order = await self._repo.load_order(db, order_id)
            if order is None:
                logger.warning("Webhook %s names unknown order %s", event.id, order_id)
                return False
            obj = event.data.get("object", {})
            await self._repo.append_event(
                db,
                OrderEvent(
                    id=f"whk_{event.id}",
                    order_id=order.id,
                    type=f"webhook_{event.type}",
                    description=f"Payment processor reported {event.type}",
                    created_by=WEBHOOK_ACTOR,
                    created_at=utc_now(),
                    metadata={
                        "processor_event_id": event.id,
                        "object_id": obj.get("id"),
                        "object_status": obj.get("status"),
                    },
                ),
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Webhook %s already recorded for order %s", event.id, order_id)
            return False
        except Exception:
            await db.rollback()
            raise
        logger.info("Webhook %s (%s) recorded on order %s", event.id, event.type, order_id)
        return True
