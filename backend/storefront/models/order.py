from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from storefront.db import Base
from storefront.utils.clock import utcnow

RETURN_NONE = "None"
RETURN_PENDING = "Pending"
RETURN_APPROVED = "Approved"
RETURN_REJECTED = "Rejected"


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)
    # bumped on every status write; compare-and-set precondition
    version = Column(Integer, nullable=False, default=1)

    subtotal_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    shipping_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="INR")
    coupon_code = Column(String(20), nullable=True)
    discount_percent = Column(Integer, nullable=True)

    payment_method = Column(String(16), nullable=False)  # cod, manual, gateway
    payment_reference = Column(String(128), nullable=True, index=True)  # gateway order id
    payment_id = Column(String(128), nullable=True, unique=True)  # gateway payment id
    transaction_ref = Column(String(128), nullable=True)  # manual transfer reference

    tracking_id = Column(String(128), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    # shipping address snapshot
    ship_name = Column(String(128), nullable=False)
    ship_phone = Column(String(16), nullable=False)
    ship_address = Column(String(255), nullable=False)
    ship_street = Column(String(255), nullable=True)
    ship_city = Column(String(128), nullable=False)
    ship_state = Column(String(128), nullable=False)
    ship_pincode = Column(String(8), nullable=False)
    ship_landmark = Column(String(255), nullable=True)

    # embedded return sub-record
    return_status = Column(String(16), nullable=False, default=RETURN_NONE)
    return_reason = Column(Text, nullable=True)
    refund_method = Column(String(8), nullable=True)  # bank, upi
    refund_destination = Column(JSON, nullable=True)
    return_photo_url = Column(String(512), nullable=True)
    return_requested_at = Column(DateTime(timezone=True), nullable=True)
    return_decided_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount_cents = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )
    events = relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.id",
    )

    @property
    def shipping_address(self) -> dict:
        return {
            "name": self.ship_name,
            "phone": self.ship_phone,
            "address": self.ship_address,
            "street_address": self.ship_street,
            "city": self.ship_city,
            "state": self.ship_state,
            "pincode": self.ship_pincode,
            "landmark": self.ship_landmark,
        }

    @property
    def return_request(self) -> dict:
        return {
            "status": self.return_status,
            "reason": self.return_reason,
            "refund_method": self.refund_method,
            "refund_destination": self.refund_destination,
            "photo_url": self.return_photo_url,
            "requested_at": self.return_requested_at,
            "decided_at": self.return_decided_at,
            "refund_amount_cents": self.refund_amount_cents,
        }

    def reservation_entries(self):
        """(counter_id, qty) pairs decremented for this order, used to restore stock."""
        return [(ol.counter_id, ol.qty) for ol in self.lines if ol.counter_id is not None]


class OrderLine(Base):
    """Snapshot of a cart line; never mutated after the order is created."""

    __tablename__ = "order_lines"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(Integer, nullable=False)
    sku = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    size = Column(String(16), nullable=True)
    color = Column(String(64), nullable=True)
    qty = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    counter_id = Column(Integer, ForeignKey("inventory_counters.id"), nullable=True)

    order = relationship("Order", back_populates="lines")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.qty
