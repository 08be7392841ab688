from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentIn(BaseModel):
    order_id: int


class PaymentConfirmIn(BaseModel):
    """Fields posted back by the gateway checkout widget."""

    gateway_order_id: str = ""
    payment_id: str = ""
    signature: str = ""


class ManualProofIn(BaseModel):
    order_id: int
    transaction_ref: str = ""


class PaymentConfirmOut(BaseModel):
    order_id: int
    order_number: str
    status: str
    payment_id: str
    duplicate: bool = False


class CouponCodeIn(BaseModel):
    code: str = ""


class CouponCreateIn(BaseModel):
    code: str
    discount_percent: int = Field(..., ge=1, le=100)
    expires_at: Optional[datetime] = None
    offer_text: Optional[str] = None
    description: Optional[str] = None


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    code: str
    discount_percent: int
    is_active: bool
    expires_at: Optional[datetime] = None
    offer_text: Optional[str] = None
    description: Optional[str] = None
