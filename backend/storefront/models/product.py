from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from storefront.db import Base


class Product(Base):
    """Catalog read model: just enough to snapshot a line item at order time."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    title = Column(String(256), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, default=True, nullable=False)

    counters = relationship(
        "InventoryCounter", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product sku={self.sku} title={self.title}>"
