import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from sqlalchemy.orm import Session, joinedload, selectinload
from starlette.concurrency import run_in_threadpool

from storefront.models import Order, OrderStatus
from storefront.notifications import NotificationDispatcher
from storefront.retry import NotFoundAfterRetries, RetryPolicy
from storefront.schemas import OrderDto, PaymentIntent

logger = logging.getLogger(__name__)

# Statuses a succeeded payment may (re)settle; anything else is left alone
RECONCILABLE_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.PAYMENT_MISMATCH,
})


def to_minor_units(amount: Decimal) -> int:
    """Currency units to cents, rounding half away from zero."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Reconciled:
    order_id: int
    status: OrderStatus
    expected_amount: int
    received_amount: int
    updated: bool

    @property
    def matched(self) -> bool:
        return self.expected_amount == self.received_amount


ReconcileResult = Union[Reconciled, NotFoundAfterRetries]


class OrderReconciler:
    """Settles the order behind a succeeded payment intent."""

    def __init__(self, db: Session, retry_policy: RetryPolicy, dispatcher: NotificationDispatcher):
        self.db = db
        self.retry_policy = retry_policy
        self.dispatcher = dispatcher

    def find_order(self, payment_intent_id: str) -> Optional[Order]:
        order = (
            self.db.query(Order)
            .options(selectinload(Order.order_items), joinedload(Order.delivery_method))
            .filter_by(payment_intent_id=payment_intent_id)
            .first()
        )
        if order is None:
            # End the read transaction so the next attempt gets a fresh snapshot
            self.db.rollback()
        return order

    async def reconcile(self, intent: PaymentIntent) -> ReconcileResult:
        logger.info("Processing payment intent: %s, Status: %s", intent.id, intent.status)

        # The checkout transaction that creates the order may not have committed yet
        lookup = await self.retry_policy.run(
            lambda: run_in_threadpool(self.find_order, intent.id),
            label=f"Order for payment intent {intent.id}",
        )
        if isinstance(lookup, NotFoundAfterRetries):
            logger.error(
                "Order not found for payment intent: %s after %d attempts",
                intent.id, lookup.attempts,
            )
            return lookup

        order = lookup.value
        expected = to_minor_units(order.get_total())
        logger.info("Found order: %s, Total: %s", order.id, order.get_total())

        if order.status not in RECONCILABLE_STATUSES:
            logger.warning(
                "Order %s is %s, not applying payment intent %s",
                order.id, order.status.value, intent.id,
            )
            return Reconciled(order.id, order.status, expected, intent.amount, updated=False)

        if expected == intent.amount:
            logger.info("Payment successful for order: %s", order.id)
            new_status = OrderStatus.PAYMENT_RECEIVED
        else:
            logger.warning(
                "Payment mismatch - Order total: %s, Intent amount: %s",
                expected, intent.amount,
            )
            new_status = OrderStatus.PAYMENT_MISMATCH

        updated = order.status != new_status
        if updated:
            order.status = new_status
            try:
                await run_in_threadpool(self.db.commit)
            except Exception:
                self.db.rollback()
                raise
            logger.info("Order %s status updated to %s", order.id, new_status.value)

        await self._notify_buyer(order)
        return Reconciled(order.id, new_status, expected, intent.amount, updated=updated)

    async def _notify_buyer(self, order: Order) -> None:
        try:
            payload = OrderDto.from_order(order).model_dump(mode="json")
        except Exception:
            logger.exception("Could not build notification for order %s", order.id)
            return
        await self.dispatcher.notify(order.buyer_email, payload)
