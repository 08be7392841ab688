import threading

import pytest
from sqlalchemy.exc import OperationalError

from storefront.adapters.gateway_client import sign_payment, verify_signature
from storefront.adapters.notifier import LoggingNotifier
from storefront.config import settings
from storefront.db import SessionLocal
from storefront.errors import (
    InvalidStateTransition,
    OrderNotFound,
    PaymentVerificationFailed,
    ValidationError,
)
from storefront.models.idempotency import IdempotencyStatus
from storefront.models.order import Order
from storefront.repositories.order_repo import OrderRepository
from storefront.services import order_state
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import OrderService


def _gateway_order(svc, make_product, address, stock=2, qty=1):
    p = make_product(stock=stock)
    order, handle = svc.create_order(
        "cust-1", [{"product_id": p.id, "qty": qty}], address, "gateway"
    )
    return p, order, handle


def test_signature_helpers():
    sig = sign_payment("secret", "order_1", "pay_1")
    assert verify_signature("secret", "order_1", "pay_1", sig)
    assert not verify_signature("secret", "order_1", "pay_2", sig)
    assert not verify_signature("other", "order_1", "pay_1", sig)


def test_gateway_order_waits_for_payment(svc, make_product, address, notifier):
    _, order, handle = _gateway_order(svc, make_product, address)

    assert order.status == order_state.AWAITING_PAYMENT
    assert order.payment_reference == handle.reference
    assert handle.details["key_id"] == "rzp_test_mock"
    assert handle.amount_cents == order.total_cents
    # customers are told about gateway orders once the payment lands
    assert notifier.sent == []


def test_confirm_marks_paid(db, svc, make_product, address, notifier):
    p, order, handle = _gateway_order(svc, make_product, address)
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_001")

    resp = svc.confirm_gateway_payment(handle.reference, "pay_001", sig)

    assert resp["status"] == order_state.PAID
    assert resp["duplicate"] is False
    paid = svc.get_order(order.id, admin=True)
    assert paid.status == order_state.PAID
    assert paid.payment_id == "pay_001"
    assert InventoryService(db).available(p.id) == 1
    assert notifier.sent[-1]["event"] == "order_placed"


def test_duplicate_callback_applies_once(db, svc, make_product, address):
    p, order, handle = _gateway_order(svc, make_product, address)
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_dup")

    first = svc.confirm_gateway_payment(handle.reference, "pay_dup", sig)
    second = svc.confirm_gateway_payment(handle.reference, "pay_dup", sig)

    assert first["duplicate"] is False
    assert second["duplicate"] is True
    assert second["status"] == order_state.PAID
    assert svc.get_order(order.id, admin=True).version == 2
    assert InventoryService(db).available(p.id) == 1


def test_concurrent_duplicate_callbacks(make_product, adapters, address):
    setup = SessionLocal()
    try:
        svc = OrderService(setup, adapters=adapters, notifier=LoggingNotifier())
        p, order, handle = _gateway_order(svc, make_product, address)
        order_id, product_id, reference = order.id, p.id, handle.reference
    finally:
        setup.close()
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, reference, "pay_race")
    results = []
    lock = threading.Lock()

    def worker():
        s = SessionLocal()
        try:
            r = OrderService(s, adapters=adapters, notifier=LoggingNotifier()).confirm_gateway_payment(
                reference, "pay_race", sig
            )
        finally:
            s.close()
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4
    assert [r["duplicate"] for r in results].count(False) == 1
    assert all(r["status"] == order_state.PAID for r in results)
    check = SessionLocal()
    try:
        assert check.get(Order, order_id).version == 2
        assert InventoryService(check).available(product_id) == 1
    finally:
        check.close()


def test_bad_signature_leaves_order_awaiting(svc, make_product, address):
    _, order, handle = _gateway_order(svc, make_product, address)

    with pytest.raises(PaymentVerificationFailed):
        svc.confirm_gateway_payment(handle.reference, "pay_bad", "deadbeef")

    assert svc.get_order(order.id, admin=True).status == order_state.AWAITING_PAYMENT
    assert svc.idem_repo.get("payment.confirm:pay_bad") is None

    # a correctly signed retry with the same payment id is accepted
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_bad")
    resp = svc.confirm_gateway_payment(handle.reference, "pay_bad", sig)
    assert resp["status"] == order_state.PAID
    rec = svc.idem_repo.get("payment.confirm:pay_bad")
    assert rec.attempts == 1
    assert rec.order_id == order.id


def test_unsigned_repeat_gets_no_stored_result(svc, make_product, address):
    _, order, handle = _gateway_order(svc, make_product, address)
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_known")
    svc.confirm_gateway_payment(handle.reference, "pay_known", sig)

    with pytest.raises(PaymentVerificationFailed):
        svc.confirm_gateway_payment(handle.reference, "pay_known", "forged")
    with pytest.raises(PaymentVerificationFailed):
        svc.confirm_gateway_payment(handle.reference, "pay_forged", "forged")

    assert svc.idem_repo.get("payment.confirm:pay_forged") is None
    assert svc.get_order(order.id, admin=True).version == 2


def test_callback_retried_after_database_error(db, svc, make_product, address, monkeypatch):
    p, order, handle = _gateway_order(svc, make_product, address)
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_flaky")
    real_cas = OrderRepository.compare_and_set
    calls = []

    def flaky_cas(self, *args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE orders", {}, Exception("database is locked"))
        return real_cas(self, *args, **kwargs)

    monkeypatch.setattr(OrderRepository, "compare_and_set", flaky_cas)

    with pytest.raises(OperationalError):
        svc.confirm_gateway_payment(handle.reference, "pay_flaky", sig)

    rec = svc.idem_repo.get("payment.confirm:pay_flaky")
    assert rec.status == IdempotencyStatus.FAILED
    assert "database is locked" in rec.last_error
    assert svc.get_order(order.id, admin=True).status == order_state.AWAITING_PAYMENT

    resp = svc.confirm_gateway_payment(handle.reference, "pay_flaky", sig)

    assert resp["status"] == order_state.PAID
    assert resp["duplicate"] is False
    rec = svc.idem_repo.get("payment.confirm:pay_flaky")
    assert rec.status == IdempotencyStatus.COMPLETED
    assert rec.attempts == 2
    assert InventoryService(db).available(p.id) == 1


def test_confirm_unknown_reference(svc):
    with pytest.raises(OrderNotFound):
        svc.confirm_gateway_payment("order_nope", "pay_1", "sig")
    with pytest.raises(ValidationError):
        svc.confirm_gateway_payment("order_nope", "", "sig")


def test_payment_on_cancelled_order_is_refused(svc, make_product, address):
    _, order, handle = _gateway_order(svc, make_product, address)
    svc.cancel(order.id, "cust-1", "found it cheaper")
    sig = sign_payment(settings.GATEWAY_KEY_SECRET, handle.reference, "pay_late")

    with pytest.raises(InvalidStateTransition):
        svc.confirm_gateway_payment(handle.reference, "pay_late", sig)


def test_payment_intent_reuses_remote_order(svc, gateway, make_product, address):
    _, order, handle = _gateway_order(svc, make_product, address)

    again = svc.create_payment_intent(order.id, "cust-1")

    assert again.reference == handle.reference
    assert len(gateway.created) == 1


def test_payment_intent_rejects_non_gateway(svc, make_product, address):
    p = make_product(stock=1)
    order, _ = svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "cod")
    with pytest.raises(InvalidStateTransition):
        svc.create_payment_intent(order.id, "cust-1")


def test_admin_cannot_mark_gateway_order_paid(svc, make_product, address):
    _, order, _ = _gateway_order(svc, make_product, address)
    with pytest.raises(InvalidStateTransition):
        svc.admin_transition(order.id, "paid")


def test_manual_proof(svc, make_product, address):
    p = make_product(stock=1)
    order, handle = svc.create_order("cust-1", [{"product_id": p.id, "qty": 1}], address, "upi")

    assert handle.method == "manual"
    assert handle.details["payee_vpa"] == settings.MANUAL_PAYEE_VPA
    with pytest.raises(ValidationError) as exc:
        svc.submit_manual_proof(order.id, "cust-1", "   ")
    assert exc.value.field == "transaction_ref"

    updated = svc.submit_manual_proof(order.id, "cust-1", "UTR778899")

    assert updated.transaction_ref == "UTR778899"
    assert updated.status == order_state.PENDING_VERIFICATION
