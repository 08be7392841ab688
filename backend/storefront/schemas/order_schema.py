from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderItemIn(BaseModel):
    product_id: int
    qty: int = Field(..., gt=0)
    size: Optional[str] = None
    color: Optional[str] = None


class ShippingAddressIn(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    street_address: Optional[str] = None
    city: str = ""
    state: str = ""
    pincode: str = ""
    landmark: Optional[str] = None


class CreateOrderIn(BaseModel):
    items: List[OrderItemIn]
    shipping_address: ShippingAddressIn
    payment_method: str
    coupon_code: Optional[str] = None
    # manual transfers may submit the reference at checkout
    transaction_ref: Optional[str] = None


class CancelIn(BaseModel):
    reason: str = ""


class RequestReturnIn(BaseModel):
    reason: str = ""
    refund_method: str = ""
    refund_destination: Dict[str, Any] = Field(default_factory=dict)
    photo_url: Optional[str] = None


class AdminStatusIn(BaseModel):
    status: str
    tracking_id: Optional[str] = None
    reason: Optional[str] = None


class ReturnDecisionIn(BaseModel):
    decision: str


class CheckpointIn(BaseModel):
    status: str
    location: Optional[str] = None
    note: Optional[str] = None


class OrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_id: int
    sku: str
    title: str
    size: Optional[str] = None
    color: Optional[str] = None
    qty: int
    unit_price_cents: int
    line_total_cents: int


class ShippingAddressOut(BaseModel):
    name: str
    phone: str
    address: str
    street_address: Optional[str] = None
    city: str
    state: str
    pincode: str
    landmark: Optional[str] = None


class ReturnRequestOut(BaseModel):
    status: str
    reason: Optional[str] = None
    refund_method: Optional[str] = None
    refund_destination: Optional[Dict[str, Any]] = None
    photo_url: Optional[str] = None
    requested_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    refund_amount_cents: Optional[int] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_number: str
    customer_id: str
    status: str
    subtotal_cents: int
    discount_cents: int
    shipping_cents: int
    total_cents: int
    currency: str
    coupon_code: Optional[str] = None
    discount_percent: Optional[int] = None
    payment_method: str
    payment_reference: Optional[str] = None
    payment_id: Optional[str] = None
    transaction_ref: Optional[str] = None
    tracking_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    shipping_address: ShippingAddressOut
    return_request: ReturnRequestOut
    lines: List[OrderLineOut]
    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime] = None


class PaymentHandleOut(BaseModel):
    method: str
    amount_cents: int
    currency: str
    reference: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class CreateOrderOut(BaseModel):
    order: OrderOut
    payment: PaymentHandleOut
