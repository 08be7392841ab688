import os
import tempfile

# point the app at a throwaway database before storefront.config is imported
_TMP = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["LOCKS_DIR"] = os.path.join(_TMP, "locks")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("GATEWAY_KEY_SECRET", "test-gateway-secret")
os.environ.setdefault("GATEWAY_BACKEND", "mock")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront.adapters.gateway_client import MockGatewayClient  # noqa: E402
from storefront.adapters.notifier import LoggingNotifier  # noqa: E402
from storefront.adapters.payments import build_payment_adapters  # noqa: E402
from storefront.api.deps import get_notifier, get_payment_adapters  # noqa: E402
from storefront.config import settings  # noqa: E402
from storefront.db import SessionLocal, init_db  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.repositories.product_repo import ProductRepository  # noqa: E402
from storefront.services.coupon_service import CouponService  # noqa: E402
from storefront.services.order_service import OrderService  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    init_db(reset=True)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return MockGatewayClient(key_id="rzp_test_mock")


@pytest.fixture
def adapters(gateway):
    return build_payment_adapters(settings, gateway_client=gateway)


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def svc(db, adapters, notifier):
    return OrderService(db, adapters=adapters, notifier=notifier)


@pytest.fixture
def address():
    return {
        "name": "Asha Rao",
        "phone": "98765 43210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }


@pytest.fixture
def make_product(db):
    def _make(sku="TEE-1", title="Tee", price_cents=49900, stock=10, sizes=None, colors=None):
        p = ProductRepository(db).create_or_update(
            sku, title, price_cents, stock=stock, sizes=sizes, colors=colors
        )
        db.commit()
        return p

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", percent=10, expires_at=None):
        return CouponService(db).create_coupon(code, percent, expires_at=expires_at)

    return _make


@pytest.fixture
def client(adapters, notifier):
    app.dependency_overrides[get_payment_adapters] = lambda: adapters
    app.dependency_overrides[get_notifier] = lambda: notifier
    # not entered as a context manager: no lifespan, so no scheduler during tests
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers():
    return {"X-Customer-Id": "cust-1"}


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": settings.ADMIN_API_KEY}
