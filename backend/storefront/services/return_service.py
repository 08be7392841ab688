import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.adapters.notifier import LoggingNotifier
from storefront.config import settings
from storefront.errors import (
    Forbidden,
    InvalidStateTransition,
    NotEligibleForReturn,
    OrderNotFound,
    ReturnAlreadyPending,
    ValidationError,
)
from storefront.models.order import (
    RETURN_APPROVED,
    RETURN_NONE,
    RETURN_PENDING,
    RETURN_REJECTED,
    Order,
)
from storefront.repositories.order_repo import OrderRepository
from storefront.services import order_state
from storefront.services.inventory_service import InventoryService
from storefront.utils.clock import as_utc, utcnow
from storefront.utils.transactions import committed
from storefront.utils.validation import validate_refund_destination

log = logging.getLogger(__name__)

DECISIONS = (RETURN_APPROVED, RETURN_REJECTED)


class ReturnService:
    def __init__(self, db: Session, notifier: Optional[LoggingNotifier] = None):
        self.db = db
        self.orders = OrderRepository(db)
        self.inventory = InventoryService(db)
        self.notifier = notifier or LoggingNotifier()

    def _load(self, order_id: int) -> Order:
        order = self.orders.get(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def request_return(
        self,
        order_id: int,
        customer_id: str,
        reason: str,
        refund_method: str,
        refund_destination: Optional[Dict],
        photo_url: Optional[str] = None,
        now=None,
    ) -> Order:
        """File a return for a delivered order; nothing is written unless every check passes."""
        order = self._load(order_id)
        if order.customer_id != customer_id:
            raise Forbidden("Order belongs to another customer")

        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "Return reason is required")
        if order.status != order_state.DELIVERED:
            raise NotEligibleForReturn(
                f"Only delivered orders can be returned (order is {order.status})",
                order_id=order.id,
            )
        delivered_at = as_utc(order.delivered_at)
        if delivered_at is None:
            raise NotEligibleForReturn("Delivery date is unknown", order_id=order.id)
        now = now or utcnow()
        window = timedelta(days=settings.RETURN_WINDOW_DAYS)
        if now - delivered_at > window:
            raise NotEligibleForReturn(
                f"Return window expired ({settings.RETURN_WINDOW_DAYS} days from delivery)",
                order_id=order.id,
            )
        if order.return_status == RETURN_PENDING:
            raise ReturnAlreadyPending("A return request is already pending", order_id=order.id)
        if order.return_status not in (RETURN_NONE, RETURN_REJECTED):
            raise NotEligibleForReturn(
                f"Return already {order.return_status.lower()}", order_id=order.id
            )
        method, destination = validate_refund_destination(refund_method, refund_destination)

        with committed(self.db):
            ok = self.orders.compare_and_set(
                order,
                order.status,
                return_status=RETURN_PENDING,
                return_reason=reason,
                refund_method=method,
                refund_destination=destination,
                return_photo_url=(photo_url or "").strip() or None,
                return_requested_at=now,
                return_decided_at=None,
                refund_amount_cents=order.total_cents,
            )
            if not ok:
                raise ReturnAlreadyPending("Order changed while filing the return; reload it")
            self.orders.add_event(order.id, "return_requested", note=reason[:500])

        log.info("return requested for order %s via %s", order.order_number, method)
        return self._load(order.id)

    def decide(self, order_id: int, decision: str) -> Order:
        decision = (decision or "").strip().capitalize()
        if decision not in DECISIONS:
            raise ValidationError("decision", "Decision must be Approved or Rejected")
        order = self._load(order_id)

        if order.return_status == RETURN_APPROVED:
            if decision == RETURN_APPROVED:
                return order
            raise InvalidStateTransition(
                "Return was already approved", current=order.return_status, target=decision
            )
        if order.return_status != RETURN_PENDING:
            raise InvalidStateTransition(
                "No pending return request for this order",
                current=order.return_status,
                target=decision,
            )

        now = utcnow()
        with committed(self.db):
            if decision == RETURN_APPROVED:
                order_state.assert_transition(order.status, order_state.RETURNED)
                ok = self.orders.compare_and_set(
                    order,
                    order_state.DELIVERED,
                    status=order_state.RETURNED,
                    return_status=RETURN_APPROVED,
                    return_decided_at=now,
                )
                if ok:
                    self.inventory.restore(order.reservation_entries())
            else:
                ok = self.orders.compare_and_set(
                    order, order.status, return_status=RETURN_REJECTED, return_decided_at=now
                )
            if not ok:
                raise InvalidStateTransition("Order was modified concurrently; retry")
            self.orders.add_event(
                order.id,
                order_state.RETURNED if decision == RETURN_APPROVED else "return_rejected",
            )

        order = self._load(order.id)
        log.info("return for order %s %s", order.order_number, decision.lower())
        if decision == RETURN_APPROVED:
            self.notifier.notify(
                "refund_initiated", order, {"refund_amount_cents": order.refund_amount_cents}
            )
        else:
            self.notifier.notify("return_rejected", order)
        return order

    def list_returns(self, customer_id: Optional[str] = None) -> List[Order]:
        return self.orders.list_with_returns(customer_id=customer_id)
