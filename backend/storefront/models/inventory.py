from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db import Base

DIMENSION_PRODUCT = "product"
DIMENSION_SIZE = "size"
DIMENSION_COLOR = "color"


class InventoryCounter(Base):
    """
    One stock counter. A product always has a product-level counter (empty key)
    and may additionally carry per-size and/or per-color counters.
    """

    __tablename__ = "inventory_counters"
    __table_args__ = (
        UniqueConstraint("product_id", "dimension", "key", name="uq_counter_key"),
        CheckConstraint("qty >= 0", name="ck_counter_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    dimension = Column(String(16), nullable=False, default=DIMENSION_PRODUCT)  # product, size, color
    key = Column(String(64), nullable=False, default="")  # size code or color name
    qty = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="counters")
