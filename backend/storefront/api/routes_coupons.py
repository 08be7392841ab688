from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import current_customer, require_admin, translate_errors
from storefront.db import get_db
from storefront.errors import CouponAlreadyUsed, InvalidCoupon
from storefront.schemas.payment_schema import CouponCodeIn, CouponCreateIn, CouponOut
from storefront.services.coupon_service import (
    MARK_ALREADY_USED,
    MARK_NOT_FOUND,
    CouponService,
)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.post("/validate")
def validate_coupon(
    payload: CouponCodeIn,
    customer_id: str = Depends(current_customer),
    db: Session = Depends(get_db),
):
    with translate_errors("coupon_validate"):
        quote = CouponService(db).validate(payload.code, customer_id)
        return {"valid": True, "code": quote.code, "discount_percent": quote.discount_percent}


@router.post("/apply")
def apply_coupon(
    payload: CouponCodeIn,
    customer_id: str = Depends(current_customer),
    db: Session = Depends(get_db),
):
    """Record a redemption outside checkout. A second call for the same customer is rejected."""
    svc = CouponService(db)
    with translate_errors("coupon_apply"):
        quote = svc.validate(payload.code, customer_id)
        result = svc.mark_applied(quote.code, customer_id)
        if result.status == MARK_ALREADY_USED:
            raise CouponAlreadyUsed(result.message, coupon_code=quote.code)
        if result.status == MARK_NOT_FOUND:
            raise InvalidCoupon(result.message, coupon_code=quote.code)
        return {
            "applied": result.applied,
            "status": result.status,
            "code": quote.code,
            "discount_percent": quote.discount_percent,
        }


@router.get("/active", response_model=List[CouponOut])
def active_coupons(db: Session = Depends(get_db)):
    return CouponService(db).list_active()


@router.post(
    "", response_model=CouponOut, status_code=201, dependencies=[Depends(require_admin)]
)
def create_coupon(payload: CouponCreateIn, db: Session = Depends(get_db)):
    with translate_errors("coupon_create"):
        return CouponService(db).create_coupon(
            payload.code,
            payload.discount_percent,
            expires_at=payload.expires_at,
            offer_text=payload.offer_text,
            description=payload.description,
        )
