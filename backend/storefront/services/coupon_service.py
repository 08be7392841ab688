import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.errors import CouponAlreadyUsed, CouponExpired, InvalidCoupon, ValidationError
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.utils.clock import as_utc, utcnow

log = logging.getLogger(__name__)

MARK_APPLIED = "applied"
MARK_ALREADY_USED = "already_used"
MARK_NOT_FOUND = "not_found"
MARK_ERROR = "error"


@dataclass(frozen=True)
class CouponQuote:
    code: str
    discount_percent: int


@dataclass(frozen=True)
class CouponMarkResult:
    """
    Outcome of a best-effort consumption. Callers may ignore it; the engine
    only reacts to `already_used` when another order holds the claim.
    """

    status: str
    order_id: Optional[int] = None
    message: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == MARK_APPLIED


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def discount_for(subtotal_cents: int, percent: int) -> int:
    """round(subtotal * percent / 100), halves rounded away from zero."""
    raw = Decimal(subtotal_cents) * Decimal(percent) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CouponService:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, code: str) -> Optional[Coupon]:
        return self.db.query(Coupon).filter(Coupon.code == code).first()

    def _redemption(self, coupon_id: int, customer_id: str) -> Optional[CouponRedemption]:
        return (
            self.db.query(CouponRedemption)
            .filter(
                CouponRedemption.coupon_id == coupon_id,
                CouponRedemption.customer_id == customer_id,
            )
            .populate_existing()
            .first()
        )

    def validate(self, code: str, customer_id: str) -> CouponQuote:
        """Pure check; raises InvalidCoupon, CouponAlreadyUsed or CouponExpired."""
        code = normalize_code(code)
        if not code:
            raise ValidationError("coupon_code", "Coupon code is required")
        coupon = self._find(code)
        if not coupon or not coupon.is_active:
            raise InvalidCoupon(f"Coupon {code} not found or inactive", coupon_code=code)
        if self._redemption(coupon.id, customer_id):
            raise CouponAlreadyUsed(f"Coupon {code} already used", coupon_code=code)
        expires_at = as_utc(coupon.expires_at)
        if expires_at is not None and expires_at < utcnow():
            raise CouponExpired(f"Coupon {code} has expired", coupon_code=code)
        return CouponQuote(code=coupon.code, discount_percent=coupon.discount_percent)

    def mark_applied(
        self, code: str, customer_id: str, order_id: Optional[int] = None
    ) -> CouponMarkResult:
        """
        Record that `customer_id` consumed `code`. Idempotent and never raises:
        a repeat for the same (code, customer) reports `already_used` along
        with the order that holds the claim.
        """
        code = normalize_code(code)
        try:
            coupon = self._find(code)
            if not coupon:
                return CouponMarkResult(MARK_NOT_FOUND, message=f"Coupon {code} not found")
            self.db.add(
                CouponRedemption(coupon_id=coupon.id, customer_id=customer_id, order_id=order_id)
            )
            self.db.commit()
            log.info("coupon %s applied for customer %s (order %s)", code, customer_id, order_id)
            return CouponMarkResult(MARK_APPLIED, order_id=order_id)
        except IntegrityError:
            self.db.rollback()
            existing = self._redemption(coupon.id, customer_id)
            holder = existing.order_id if existing else None
            return CouponMarkResult(
                MARK_ALREADY_USED, order_id=holder, message=f"Coupon {code} already used"
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            log.warning("mark_applied failed for coupon %s: %s", code, e)
            return CouponMarkResult(MARK_ERROR, message=str(e))

    def release(self, order_id: int, customer_id: str) -> int:
        """Drop the claim `customer_id` holds for a cancelled order. Joins the caller's transaction."""
        return (
            self.db.query(CouponRedemption)
            .filter(
                CouponRedemption.order_id == order_id,
                CouponRedemption.customer_id == customer_id,
            )
            .delete(synchronize_session=False)
        )

    def create_coupon(
        self,
        code: str,
        discount_percent: int,
        expires_at: Optional[datetime] = None,
        offer_text: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Coupon:
        code = normalize_code(code)
        if not 3 <= len(code) <= 20:
            raise ValidationError("code", "Coupon code must be 3-20 characters")
        if not 1 <= int(discount_percent) <= 100:
            raise ValidationError("discount_percent", "Discount must be between 1 and 100")
        if self._find(code):
            raise ValidationError("code", f"Coupon code {code} already exists")
        coupon = Coupon(
            code=code,
            discount_percent=int(discount_percent),
            expires_at=expires_at,
            offer_text=offer_text,
            description=description,
            is_active=True,
        )
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def list_active(self) -> List[Coupon]:
        now = utcnow()
        coupons = self.db.query(Coupon).filter(Coupon.is_active == True).all()  # noqa: E712
        return [c for c in coupons if c.expires_at is None or as_utc(c.expires_at) > now]
