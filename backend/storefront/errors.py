"""
Error taxonomy for the order/payment core.

Every failure the API reports is a ShopError subclass carrying a stable
`code`, a human message naming the precondition that failed, the HTTP status
the routers map it to, and structured details the client's retry affordances
depend on (offending field, line index, available quantity, ...).
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_detail(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(ShopError):
    """Malformed client input; never retried server-side."""

    code = "validation_error"
    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)
        self.field = field


class InsufficientStock(ShopError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, line_index: int, available: int, label: str):
        super().__init__(
            f"{label} out of stock (available: {available})",
            line_index=line_index,
            available=available,
        )
        self.line_index = line_index
        self.available = available


class InvalidCoupon(ShopError):
    code = "invalid_coupon"
    status_code = 404


class CouponAlreadyUsed(ShopError):
    code = "coupon_already_used"
    status_code = 409


class CouponExpired(ShopError):
    code = "coupon_expired"
    status_code = 400


class PaymentVerificationFailed(ShopError):
    """Order stays in its pre-confirmation state; the customer may retry."""

    code = "payment_verification_failed"
    status_code = 402


class PaymentGatewayError(ShopError):
    code = "payment_gateway_error"
    status_code = 502


class NotEligibleForReturn(ShopError):
    code = "not_eligible_for_return"
    status_code = 400


class ReturnAlreadyPending(ShopError):
    code = "return_already_pending"
    status_code = 409


class InvalidStateTransition(ShopError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, current=current, target=target)


class OrderNotFound(ShopError):
    code = "order_not_found"
    status_code = 404


class Forbidden(ShopError):
    code = "forbidden"
    status_code = 403
