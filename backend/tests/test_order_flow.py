import threading
from datetime import timedelta

import pytest

from storefront.adapters.gateway_client import MockGatewayClient
from storefront.adapters.notifier import LoggingNotifier
from storefront.adapters.payments import build_payment_adapters
from storefront.config import settings
from storefront.db import SessionLocal
from storefront.errors import (
    CouponAlreadyUsed,
    Forbidden,
    InsufficientStock,
    InvalidStateTransition,
    PaymentGatewayError,
    ValidationError,
)
from storefront.models.coupon import CouponRedemption
from storefront.models.inventory import InventoryCounter
from storefront.models.order import Order
from storefront.services import order_state
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import OrderService
from storefront.utils.clock import utcnow


def test_checkout_with_size_and_coupon(db, svc, make_product, make_coupon, address):
    p = make_product(sku="TEE-M", title="Tee", price_cents=49900, stock=10, sizes={"M": 2})
    make_coupon("SAVE10", 10)

    order, handle = svc.create_order(
        "cust-1",
        [{"product_id": p.id, "qty": 2, "size": "M"}],
        address,
        "cod",
        coupon_code="save10",
    )

    assert order.status == order_state.PENDING
    assert order.subtotal_cents == 99800
    assert order.discount_cents == 9980
    assert order.total_cents == 99800 - 9980
    assert order.coupon_code == "SAVE10"
    assert order.ship_phone == "9876543210"
    assert handle.details == {"collect_on_delivery": True}
    assert InventoryService(db).available(p.id, size="M") == 0
    assert (
        db.query(CouponRedemption).filter_by(customer_id="cust-1", order_id=order.id).count()
        == 1
    )

    # same cart again right after
    with pytest.raises(InsufficientStock) as exc:
        svc.create_order("cust-1", [{"product_id": p.id, "qty": 2, "size": "M"}], address, "cod")
    assert "Tee size M out of stock (available: 0)" == exc.value.message
    assert db.query(Order).count() == 1


def test_coupon_reuse_is_rejected_before_reserving(db, svc, make_product, make_coupon, address):
    p = make_product(stock=5)
    make_coupon("ONCE", 20)
    svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod", coupon_code="ONCE")

    with pytest.raises(CouponAlreadyUsed):
        svc.create_order(
            "cust-1", [{"product_id": p.id, "qty": 1}], address, "cod", coupon_code="ONCE"
        )
    assert InventoryService(db).available(p.id) == 4


def test_shipping_fee_waived_over_threshold(db, svc, make_product, address, monkeypatch):
    monkeypatch.setattr(settings, "SHIPPING_FLAT_CENTS", 5000)
    monkeypatch.setattr(settings, "FREE_SHIPPING_THRESHOLD_CENTS", 100000)
    cheap = make_product(sku="SOCK", title="Socks", price_cents=20000, stock=5)
    dear = make_product(sku="COAT", title="Coat", price_cents=150000, stock=5)

    o1, _ = svc.create_order("cust-1", [{"product_id": cheap.id, "qty": 1}], address, "cod")
    o2, _ = svc.create_order("cust-1", [{"product_id": dear.id, "qty": 1}], address, "cod")

    assert (o1.shipping_cents, o1.total_cents) == (5000, 25000)
    assert (o2.shipping_cents, o2.total_cents) == (0, 150000)


@pytest.mark.parametrize(
    "field,value,error_field",
    [
        ("phone", "12345", "shipping_address.phone"),
        ("pincode", "12", "shipping_address.pincode"),
        ("city", "", "shipping_address.city"),
    ],
)
def test_invalid_address_reserves_nothing(db, svc, make_product, address, field, value, error_field):
    p = make_product(stock=2)
    address[field] = value

    with pytest.raises(ValidationError) as exc:
        svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod")

    assert exc.value.field == error_field
    assert InventoryService(db).available(p.id) == 2


def test_unknown_payment_method(svc, make_product, address):
    p = make_product()
    with pytest.raises(ValidationError) as exc:
        svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "bitcoin")
    assert exc.value.field == "payment_method"


def test_gateway_outage_restores_stock_and_coupon(db, make_product, make_coupon, address):
    p = make_product(stock=3)
    make_coupon("SAVE10", 10)
    adapters = build_payment_adapters(settings, gateway_client=MockGatewayClient(fail=True))
    svc = OrderService(db, adapters=adapters, notifier=LoggingNotifier())

    with pytest.raises(PaymentGatewayError):
        svc.create_order(
            "cust-1", [{"product_id": p.id, "qty": 2}], address, "gateway", coupon_code="SAVE10"
        )

    assert InventoryService(db).available(p.id) == 3
    assert db.query(Order).count() == 0
    assert db.query(CouponRedemption).count() == 0


def test_notification_failure_does_not_fail_checkout(db, make_product, address):
    p = make_product(stock=1)
    adapters = build_payment_adapters(settings, gateway_client=MockGatewayClient())
    svc = OrderService(db, adapters=adapters, notifier=LoggingNotifier(fail=True))

    order, _ = svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod")

    assert order.id is not None


def test_concurrent_checkouts_never_oversell(make_product, adapters, address):
    p = make_product(stock=3)
    product_id = p.id
    results = []
    lock = threading.Lock()

    def worker(n):
        s = SessionLocal()
        try:
            OrderService(s, adapters=adapters, notifier=LoggingNotifier()).create_order(
                f"cust-{n}", [{"product_id": product_id, "qty": 1}], dict(address), "cod"
            )
            outcome = "ok"
        except InsufficientStock:
            outcome = "out"
        finally:
            s.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 3
    assert results.count("out") == 3
    check = SessionLocal()
    try:
        assert check.query(Order).count() == 3
        assert check.query(InventoryCounter).filter_by(product_id=product_id).one().qty == 0
    finally:
        check.close()


def test_customer_cancel_restores_stock_and_releases_coupon(
    db, svc, notifier, make_product, make_coupon, address
):
    p = make_product(stock=2)
    make_coupon("SAVE10", 10)
    order, _ = svc.create_order(
        "cust-1", [{"product_id": p.id, "qty": 2}], address, "manual", coupon_code="SAVE10"
    )
    assert order.status == order_state.PENDING_VERIFICATION

    with pytest.raises(ValidationError):
        svc.cancel(order.id, "cust-1", "  ")
    with pytest.raises(Forbidden):
        svc.cancel(order.id, "cust-2", "changed my mind")

    cancelled = svc.cancel(order.id, "cust-1", "changed my mind")

    assert cancelled.status == order_state.CANCELLED
    assert cancelled.cancellation_reason == "changed my mind"
    assert InventoryService(db).available(p.id) == 2
    assert db.query(CouponRedemption).count() == 0
    assert notifier.sent[-1]["event"] == "order_cancelled"

    # the restored units can be bought again
    again, _ = svc.create_order("cust-1", [{"product_id": p.id, "qty": 2}], address, "cod")
    assert again.status == order_state.PENDING

    with pytest.raises(InvalidStateTransition):
        svc.cancel(order.id, "cust-1", "twice")


def test_customer_cannot_cancel_paid_but_admin_can(db, svc, make_product, address):
    p = make_product(stock=2)
    order, _ = svc.create_order(
        "cust-1", [{"product_id": p.id, "qty": 1}], address, "manual", transaction_ref="UTR123"
    )
    assert order.transaction_ref == "UTR123"
    paid = svc.admin_transition(order.id, "paid")
    assert paid.status == order_state.PAID

    with pytest.raises(InvalidStateTransition):
        svc.cancel(order.id, "cust-1", "too late")

    cancelled = svc.admin_transition(order.id, "cancelled", reason="fraud check")
    assert cancelled.status == order_state.CANCELLED
    assert InventoryService(db).available(p.id) == 2


def test_admin_ship_requires_tracking_id(db, svc, make_product, address):
    p = make_product(stock=2)
    order, _ = svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "manual")
    svc.submit_manual_proof(order.id, "cust-1", "UTR-9")
    svc.admin_transition(order.id, "paid")

    with pytest.raises(ValidationError) as exc:
        svc.admin_transition(order.id, "shipped")
    assert exc.value.field == "tracking_id"
    assert svc.get_order(order.id, admin=True).status == order_state.PAID

    shipped = svc.admin_transition(order.id, "shipped", tracking_id="SR123")

    assert shipped.status == order_state.SHIPPED
    assert shipped.tracking_id == "SR123"
    assert [e.status for e in shipped.events][-1] == order_state.SHIPPED


def test_cod_ships_without_payment_and_cannot_skip_states(svc, make_product, address):
    p = make_product(stock=2)
    order, _ = svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod")

    with pytest.raises(InvalidStateTransition):
        svc.admin_transition(order.id, "delivered")
    with pytest.raises(InvalidStateTransition):
        svc.admin_transition(order.id, "paid")
    with pytest.raises(InvalidStateTransition):
        svc.admin_transition(order.id, "returned")

    svc.admin_transition(order.id, "shipped", tracking_id="T-1")
    delivered = svc.admin_transition(order.id, "delivered")
    assert delivered.delivered_at is not None

    with pytest.raises(InvalidStateTransition):
        svc.admin_transition(order.id, "cancelled", reason="late")


def test_expire_abandoned_gateway_orders(db, svc, make_product, address):
    p = make_product(stock=2)
    order, handle = svc.create_order("cust-1", [{"product_id": p.id, "qty": 2}], address, "gateway")
    cod, _ = svc.create_order("cust-1", [{"product_id": make_product(sku="X").id, "qty": 1}], address, "cod")
    assert order.status == order_state.AWAITING_PAYMENT
    assert handle.reference.startswith("order_")

    assert svc.expire_abandoned() == []

    later = utcnow() + timedelta(seconds=settings.PAYMENT_PENDING_TTL_SECONDS + 60)
    expired = svc.expire_abandoned(now=later)

    assert expired == [order.id]
    assert svc.get_order(order.id, admin=True).status == order_state.CANCELLED
    assert svc.get_order(cod.id, admin=True).status == order_state.PENDING
    assert InventoryService(db).available(p.id) == 2


def test_status_counts(svc, make_product, address):
    p = make_product(stock=5)
    svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod")
    svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "manual")

    counts = svc.status_counts()

    assert counts[order_state.PENDING] == 1
    assert counts[order_state.PENDING_VERIFICATION] == 1
    assert counts[order_state.PAID] == 0
    assert counts["total"] == 2
