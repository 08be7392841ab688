import logging
import os
import re
import tempfile
import time
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from filelock import FileLock, Timeout
from sqlalchemy.orm import Session

from storefront.adapters.notifier import LoggingNotifier
from storefront.adapters.payments import (
    METHOD_GATEWAY,
    METHOD_MANUAL,
    PaymentAdapter,
    PaymentHandle,
    build_payment_adapters,
    normalize_method,
)
from storefront.config import settings
from storefront.errors import (
    CouponAlreadyUsed,
    Forbidden,
    InvalidStateTransition,
    OrderNotFound,
    ShopError,
    ValidationError,
)
from storefront.models.idempotency import IdempotencyStatus
from storefront.models.order import Order, OrderLine
from storefront.models.order_event import OrderEvent
from storefront.models.product import Product
from storefront.repositories.idempotency_repo import IdempotencyRepository
from storefront.repositories.order_repo import OrderRepository
from storefront.services import order_state
from storefront.services.coupon_service import (
    MARK_ALREADY_USED,
    CouponQuote,
    CouponService,
    discount_for,
)
from storefront.services.inventory_service import CartLine, InventoryService, Reservation
from storefront.utils.clock import as_utc, utcnow
from storefront.utils.transactions import committed
from storefront.utils.validation import validate_shipping_address

log = logging.getLogger(__name__)

_LOCK_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _locks_dir() -> str:
    path = settings.LOCKS_DIR or os.path.join(tempfile.gettempdir(), "storefront_locks")
    os.makedirs(path, exist_ok=True)
    return path


class OrderService:
    """
    Checkout orchestration and the order state machine.

    create_order reserves stock first, then persists, then starts payment; any
    failure after the reservation gives the stock back before the error
    reaches the caller, so no half-created order is ever visible.
    """

    def __init__(
        self,
        db: Session,
        adapters: Optional[Dict[str, PaymentAdapter]] = None,
        notifier: Optional[LoggingNotifier] = None,
    ):
        self.db = db
        self.orders = OrderRepository(db)
        self.inventory = InventoryService(db)
        self.coupons = CouponService(db)
        self.idem_repo = IdempotencyRepository(db)
        self.adapters = adapters or build_payment_adapters(settings)
        self.notifier = notifier or LoggingNotifier()

    def _gen_order_number(self) -> str:
        return f"ORD-{uuid4().hex[:10].upper()}"

    def _adapter(self, method: str) -> PaymentAdapter:
        return self.adapters[normalize_method(method)]

    # ------------------------------------------------------------------ checkout

    def _parse_lines(self, items: List[Dict]) -> List[CartLine]:
        if not items:
            raise ValidationError("items", "Cart is empty")
        lines = []
        for idx, it in enumerate(items):
            try:
                product_id = int(it["product_id"])
                qty = int(it.get("qty", 1))
            except (KeyError, TypeError, ValueError):
                raise ValidationError(f"items[{idx}]", "Each item needs a product_id and an integer qty")
            if qty < 1:
                raise ValidationError(f"items[{idx}].qty", "Quantity must be at least 1")
            size = (it.get("size") or "").strip() or None
            color = (it.get("color") or "").strip() or None
            lines.append(CartLine(product_id=product_id, qty=qty, size=size, color=color))
        return lines

    def _snapshot_products(self, lines: List[CartLine]) -> List[Product]:
        products = []
        for idx, line in enumerate(lines):
            product = self.inventory.products.get_active(line.product_id)
            if not product:
                raise ValidationError(
                    f"items[{idx}].product_id", f"Product {line.product_id} not found"
                )
            products.append(product)
        return products

    def _shipping_for(self, amount_cents: int) -> int:
        threshold = settings.FREE_SHIPPING_THRESHOLD_CENTS
        if threshold is not None and amount_cents >= threshold:
            return 0
        return settings.SHIPPING_FLAT_CENTS

    def create_order(
        self,
        customer_id: str,
        items: List[Dict],
        shipping_address: Dict,
        payment_method: str,
        coupon_code: Optional[str] = None,
        transaction_ref: Optional[str] = None,
    ) -> Tuple[Order, PaymentHandle]:
        """
        items: list of {product_id: int, qty: int, size?: str, color?: str}
        Returns the persisted order and the handle the client pays with.
        """
        if not customer_id:
            raise ValidationError("customer_id", "A verified customer is required")
        lines = self._parse_lines(items)
        address = validate_shipping_address(shipping_address)
        adapter = self._adapter(payment_method)

        quote: Optional[CouponQuote] = None
        if coupon_code and coupon_code.strip():
            quote = self.coupons.validate(coupon_code, customer_id)

        products = self._snapshot_products(lines)

        reservation = self.inventory.try_reserve(lines)

        order_id = None
        try:
            subtotal = sum(p.price_cents * l.qty for p, l in zip(products, lines))
            discount = discount_for(subtotal, quote.discount_percent) if quote else 0
            shipping = self._shipping_for(subtotal - discount)
            total = max(0, subtotal - discount + shipping)

            order = Order(
                order_number=self._gen_order_number(),
                customer_id=customer_id,
                status=adapter.initial_status,
                payment_method=adapter.method,
                subtotal_cents=subtotal,
                discount_cents=discount,
                shipping_cents=shipping,
                total_cents=total,
                currency=settings.CURRENCY,
                coupon_code=quote.code if quote else None,
                discount_percent=quote.discount_percent if quote else None,
                ship_name=address["name"],
                ship_phone=address["phone"],
                ship_address=address["address"],
                ship_street=address["street_address"] or None,
                ship_city=address["city"],
                ship_state=address["state"],
                ship_pincode=address["pincode"],
                ship_landmark=address["landmark"] or None,
            )
            for pos, (product, line, (counter_id, _)) in enumerate(
                zip(products, lines, reservation.entries)
            ):
                order.lines.append(
                    OrderLine(
                        position=pos,
                        product_id=product.id,
                        sku=product.sku,
                        title=product.title,
                        size=line.size,
                        color=line.color,
                        qty=line.qty,
                        unit_price_cents=product.price_cents,
                        counter_id=counter_id,
                    )
                )
            with committed(self.db):
                self.db.add(order)
                self.db.flush()
                self.orders.add_event(order.id, "created", note=f"payment: {adapter.method}")
            order_id = order.id

            if quote:
                claim = self.coupons.mark_applied(quote.code, customer_id, order_id=order.id)
                if claim.status == MARK_ALREADY_USED and claim.order_id != order.id:
                    raise CouponAlreadyUsed(f"Coupon {quote.code} already used", coupon_code=quote.code)
                if not claim.applied and claim.status != MARK_ALREADY_USED:
                    # best-effort: the order stands even if the ledger write failed
                    log.warning("coupon %s not recorded for order %s: %s", quote.code, order.id, claim.message)

            handle = adapter.initiate(order)
            with committed(self.db):
                if handle.reference:
                    order.payment_reference = handle.reference
                if adapter.method == METHOD_MANUAL and transaction_ref:
                    outcome = adapter.confirm(order, {"transaction_ref": transaction_ref})
                    order.transaction_ref = outcome.values["transaction_ref"]
        except Exception:
            self._discard(order_id, customer_id, reservation)
            raise

        log.info(
            "order %s created status=%s total=%s method=%s",
            order.order_number,
            order.status,
            order.total_cents,
            order.payment_method,
        )
        if adapter.method != METHOD_GATEWAY:
            self.notifier.notify("order_placed", order)
        return order, handle

    def _discard(
        self, order_id: Optional[int], customer_id: str, reservation: Reservation
    ) -> None:
        """Compensating action: drop the half-built order and put the stock back."""
        self.db.rollback()
        try:
            with committed(self.db):
                if order_id is not None:
                    self.coupons.release(order_id, customer_id)
                    for model in (OrderEvent, OrderLine):
                        self.db.query(model).filter(model.order_id == order_id).delete(
                            synchronize_session=False
                        )
                    self.db.query(Order).filter(Order.id == order_id).delete(
                        synchronize_session=False
                    )
                self.inventory.restore(reservation.entries)
            log.info("reservation %s restored after failed checkout", reservation.id)
        except Exception:
            log.exception("failed to restore reservation %s", reservation.id)

    # ------------------------------------------------------------------ reads

    def get_order(
        self, order_id: int, customer_id: Optional[str] = None, admin: bool = False
    ) -> Order:
        order = self.orders.get(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        if not admin and order.customer_id != customer_id:
            raise Forbidden("Order belongs to another customer")
        return order

    def list_for_customer(self, customer_id: str) -> List[Order]:
        return self.orders.list_for_customer(customer_id)

    def list_all(self, status: Optional[str] = None) -> List[Order]:
        return self.orders.list_all(status=status)

    def status_counts(self) -> Dict[str, int]:
        counts = {s: 0 for s in order_state.ALL_STATUSES}
        counts.update(self.orders.status_counts())
        counts["total"] = sum(v for k, v in counts.items() if k in order_state.ALL_STATUSES)
        return counts

    # ------------------------------------------------------------------ payments

    def submit_manual_proof(self, order_id: int, customer_id: str, transaction_ref: str) -> Order:
        order = self.get_order(order_id, customer_id)
        if order.payment_method != METHOD_MANUAL:
            raise InvalidStateTransition("Order is not paid by manual transfer", current=order.status)
        if order.status != order_state.PENDING_VERIFICATION:
            raise InvalidStateTransition(
                f"Payment proof cannot be submitted while order is {order.status}",
                current=order.status,
            )
        outcome = self.adapters[METHOD_MANUAL].confirm(order, {"transaction_ref": transaction_ref})
        with committed(self.db):
            if not self.orders.compare_and_set(order, order.status, **outcome.values):
                raise InvalidStateTransition("Order was modified concurrently; retry")
            self.orders.add_event(order.id, "payment_submitted", note=outcome.values["transaction_ref"])
        return self.orders.get(order.id)

    def create_payment_intent(self, order_id: int, customer_id: str) -> PaymentHandle:
        """
        Hand out gateway credentials for an unpaid gateway order. The existing
        remote order is reused so a retry never reserves stock twice.
        """
        order = self.get_order(order_id, customer_id)
        if order.payment_method != METHOD_GATEWAY:
            raise InvalidStateTransition("Order is not paid through the gateway", current=order.status)
        if order.status != order_state.AWAITING_PAYMENT:
            raise InvalidStateTransition(
                f"Order is {order.status}; no payment is outstanding", current=order.status
            )
        adapter = self.adapters[METHOD_GATEWAY]
        if order.payment_reference:
            return PaymentHandle(
                method=adapter.method,
                amount_cents=order.total_cents,
                currency=order.currency,
                reference=order.payment_reference,
                details={"key_id": adapter.client.key_id, "gateway_order_id": order.payment_reference},
            )
        handle = adapter.initiate(order)
        with committed(self.db):
            if not self.orders.compare_and_set(
                order, order_state.AWAITING_PAYMENT, payment_reference=handle.reference
            ):
                raise InvalidStateTransition("Order was modified concurrently; retry")
        return handle

    def _wait_for_completed(self, key: str, timeout: float = 5.0):
        start = time.time()
        while time.time() - start < timeout:
            rec = self.idem_repo.get(key)
            if rec and rec.status == IdempotencyStatus.COMPLETED and rec.response_body:
                return rec
            time.sleep(0.05)
        return None

    def confirm_gateway_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> Dict:
        """
        Verify a signed gateway callback and mark the order paid.

        Keyed by the remote payment id: a repeated or concurrent callback for
        the same payment returns the first result and changes nothing.
        """
        payment_id = (payment_id or "").strip()
        gateway_order_id = (gateway_order_id or "").strip()
        if not payment_id:
            raise ValidationError("payment_id", "Missing or invalid payment id")
        order = self.orders.get_by_payment_reference(gateway_order_id) if gateway_order_id else None
        if not order:
            raise OrderNotFound(f"No order for payment reference {gateway_order_id!r}")
        # unsigned callbacks never touch the idempotency table
        adapter = self.adapters[METHOD_GATEWAY]
        proof = {"gateway_order_id": gateway_order_id, "payment_id": payment_id, "signature": signature}
        adapter.verify(proof, order_id=order.id)

        key = f"payment.confirm:{payment_id}"
        rec, owner = self.idem_repo.begin(key, "payment_confirm", order_id=order.id)
        if not owner:
            if not (rec and rec.status == IdempotencyStatus.COMPLETED):
                rec = self._wait_for_completed(key)
            if rec is None:
                raise InvalidStateTransition(f"Confirmation for payment {payment_id} is already in progress")
            log.info("duplicate gateway callback for payment %s ignored", payment_id)
            return dict(rec.response_body, duplicate=True)

        lock_name = _LOCK_NAME_RE.sub("_", gateway_order_id)
        lock = FileLock(os.path.join(_locks_dir(), f"payment_{lock_name}.lock"))
        try:
            with lock.acquire(timeout=10):
                order = self.orders.get(order.id)
                if order.status != order_state.AWAITING_PAYMENT:
                    log.error(
                        "payment %s captured for order %s in status %s; needs reconciliation",
                        payment_id,
                        order.order_number,
                        order.status,
                    )
                    raise InvalidStateTransition(
                        f"Order is {order.status}; payment cannot be applied", current=order.status
                    )
                outcome = adapter.confirm(order, proof)
                order_state.assert_transition(order.status, outcome.status)
                with committed(self.db):
                    if not self.orders.compare_and_set(
                        order, order_state.AWAITING_PAYMENT, status=outcome.status, **outcome.values
                    ):
                        raise InvalidStateTransition("Order was modified concurrently; retry")
                    self.orders.add_event(order.id, outcome.status, note=f"payment {payment_id}")
        except Timeout:
            self.idem_repo.mark_failed(key, "lock timeout")
            raise InvalidStateTransition("Could not acquire payment lock; try again")
        except ShopError as e:
            self.idem_repo.mark_failed(key, e.message)
            raise
        except Exception as e:
            self.idem_repo.mark_failed(key, str(e) or type(e).__name__)
            log.exception("confirmation of payment %s failed", payment_id)
            raise

        order = self.orders.get(order.id)
        resp = {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "payment_id": payment_id,
        }
        self.idem_repo.mark_completed(key, resp)
        log.info("order %s paid via gateway payment %s", order.order_number, payment_id)
        self.notifier.notify("order_placed", order)
        return dict(resp, duplicate=False)

    # ------------------------------------------------------------------ transitions

    def _cancel(self, order: Order, reason: str, allowed, actor: str) -> Order:
        if order.status not in allowed:
            raise InvalidStateTransition(
                f"Order cannot be cancelled once {order.status}",
                current=order.status,
                target=order_state.CANCELLED,
            )
        entries = order.reservation_entries()
        with committed(self.db):
            if not self.orders.compare_and_set(
                order, order.status, status=order_state.CANCELLED, cancellation_reason=reason
            ):
                raise InvalidStateTransition("Order was modified concurrently; retry")
            self.inventory.restore(entries)
            self.coupons.release(order.id, order.customer_id)
            self.orders.add_event(order.id, order_state.CANCELLED, note=f"{actor}: {reason}")
        order = self.orders.get(order.id)
        log.info("order %s cancelled by %s", order.order_number, actor)
        self.notifier.notify("order_cancelled", order, {"reason": reason})
        return order

    def cancel(
        self, order_id: int, customer_id: Optional[str], reason: str, by_admin: bool = False
    ) -> Order:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "A cancellation reason is required")
        order = self.get_order(order_id, customer_id, admin=by_admin)
        allowed = order_state.ADMIN_CANCELLABLE if by_admin else order_state.CUSTOMER_CANCELLABLE
        return self._cancel(order, reason, allowed, "admin" if by_admin else "customer")

    def admin_transition(
        self,
        order_id: int,
        target: str,
        tracking_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        target = (target or "").strip().lower()
        if target == order_state.RETURNED:
            raise InvalidStateTransition(
                "Orders are marked returned only by approving a return request", target=target
            )
        if target not in order_state.ADMIN_TARGETS:
            raise ValidationError("status", f"Invalid status {target!r}")
        if target == order_state.CANCELLED:
            return self.cancel(order_id, None, reason or "", by_admin=True)

        order = self.get_order(order_id, admin=True)
        order_state.assert_transition(order.status, target)

        values = {"status": target}
        note = None
        if target == order_state.PAID and order.payment_method != METHOD_MANUAL:
            raise InvalidStateTransition(
                "Only manual transfers are verified by an admin",
                current=order.status,
                target=target,
            )
        if target == order_state.SHIPPED:
            tracking_id = (tracking_id or "").strip()
            if not tracking_id:
                raise ValidationError("tracking_id", "Tracking ID is required when marking an order shipped")
            values["tracking_id"] = tracking_id
            note = f"tracking {tracking_id}"
        if target == order_state.DELIVERED:
            values["delivered_at"] = utcnow()

        with committed(self.db):
            if not self.orders.compare_and_set(order, order.status, **values):
                raise InvalidStateTransition("Order was modified concurrently; retry")
            self.orders.add_event(order.id, target, note=note)

        order = self.orders.get(order.id)
        log.info("order %s moved to %s", order.order_number, target)
        if target in (order_state.SHIPPED, order_state.DELIVERED):
            self.notifier.notify("status_changed", order)
        elif target == order_state.PAID:
            self.notifier.notify("payment_verified", order)
        return order

    def expire_abandoned(self, now=None) -> List[int]:
        """
        Cancel gateway orders whose payment was never completed within the TTL
        and give their stock back. Returns the ids of cancelled orders.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=settings.PAYMENT_PENDING_TTL_SECONDS)
        expired = []
        for order in self.orders.list_stale(order_state.AWAITING_PAYMENT, cutoff):
            if as_utc(order.created_at) >= cutoff:
                continue
            try:
                self._cancel(
                    order, "payment not completed", {order_state.AWAITING_PAYMENT}, "system"
                )
                expired.append(order.id)
            except InvalidStateTransition:
                # paid or cancelled while we were looking
                log.info("order %s changed before expiry; skipped", order.id)
        return expired
