from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storefront.db import Base


class Coupon(Base):
    __tablename__ = "coupons"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), unique=True, nullable=False, index=True)  # stored upper-cased
    discount_percent = Column(Integer, nullable=False)  # 1..100
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    offer_text = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    redemptions = relationship(
        "CouponRedemption", back_populates="coupon", cascade="all, delete-orphan"
    )


class CouponRedemption(Base):
    """Per-customer usage ledger; the unique constraint is what makes a claim race-free."""

    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        UniqueConstraint("coupon_id", "customer_id", name="uq_redemption_customer"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    coupon_id = Column(
        Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id = Column(String(64), nullable=False, index=True)
    order_id = Column(Integer, nullable=True, index=True)
    used_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    coupon = relationship("Coupon", back_populates="redemptions")
