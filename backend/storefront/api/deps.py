import logging
from contextlib import contextmanager
from typing import Dict, Optional, Tuple

from fastapi import Header, HTTPException, status

from storefront.adapters.notifier import LoggingNotifier
from storefront.adapters.payments import PaymentAdapter, build_payment_adapters
from storefront.config import settings
from storefront.errors import ShopError

log = logging.getLogger(__name__)

_adapters: Optional[Dict[str, PaymentAdapter]] = None
_notifier: Optional[LoggingNotifier] = None


def get_payment_adapters() -> Dict[str, PaymentAdapter]:
    # one set per process so the mock gateway keeps its state between requests
    global _adapters
    if _adapters is None:
        _adapters = build_payment_adapters(settings)
    return _adapters


def get_notifier() -> LoggingNotifier:
    global _notifier
    if _notifier is None:
        _notifier = LoggingNotifier()
    return _notifier


def current_customer(x_customer_id: Optional[str] = Header(None, alias="X-Customer-Id")) -> str:
    """Identity is verified upstream; we only require that it is present."""
    customer_id = (x_customer_id or "").strip()
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthenticated", "message": "X-Customer-Id header is required"},
        )
    return customer_id


def require_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> bool:
    if not x_admin_key or x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Admin key required"},
        )
    return True


@contextmanager
def translate_errors(operation: str):
    """Map service errors to HTTP responses; anything else is logged and becomes a 500."""
    try:
        yield
    except HTTPException:
        raise
    except ShopError as e:
        log.info("%s rejected: %s", operation, e.message, extra={"operation": operation, "error": e.code})
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        log.exception("%s failed", operation, extra={"operation": operation})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "internal_error", "message": f"Internal server error: {type(e).__name__}"},
        )


def customer_or_admin(
    x_customer_id: Optional[str] = Header(None, alias="X-Customer-Id"),
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> Tuple[Optional[str], bool]:
    """(customer_id, is_admin) for read routes open to both the owner and an admin."""
    if x_admin_key and x_admin_key == settings.ADMIN_API_KEY:
        return None, True
    return current_customer(x_customer_id), False
