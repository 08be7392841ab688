"""
Order state machine.

    awaiting_payment ──► paid ──► shipped ──► delivered ──► returned
    pending ─────────────────────► shipped                  (COD ships unpaid)
    pending_verification ──► paid
    any pre-shipped state ──► cancelled

`returned` is only reachable through an approved return; nothing moves
backwards except into `cancelled`.
"""
from storefront.errors import InvalidStateTransition

AWAITING_PAYMENT = "awaiting_payment"
PENDING = "pending"
PENDING_VERIFICATION = "pending_verification"
PAID = "paid"
SHIPPED = "shipped"
DELIVERED = "delivered"
RETURNED = "returned"
CANCELLED = "cancelled"

ALL_STATUSES = (
    AWAITING_PAYMENT,
    PENDING,
    PENDING_VERIFICATION,
    PAID,
    SHIPPED,
    DELIVERED,
    RETURNED,
    CANCELLED,
)

TRANSITIONS = {
    AWAITING_PAYMENT: {PAID, CANCELLED},
    PENDING: {SHIPPED, CANCELLED},
    PENDING_VERIFICATION: {PAID, CANCELLED},
    PAID: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
    DELIVERED: {RETURNED},
    RETURNED: set(),
    CANCELLED: set(),
}

CUSTOMER_CANCELLABLE = {AWAITING_PAYMENT, PENDING, PENDING_VERIFICATION}
ADMIN_CANCELLABLE = CUSTOMER_CANCELLABLE | {PAID}

# targets an admin may request through the status endpoint
ADMIN_TARGETS = {PAID, SHIPPED, DELIVERED, CANCELLED}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransition(
            f"Cannot move order from {current} to {target}", current=current, target=target
        )
