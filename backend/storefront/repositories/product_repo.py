from typing import Dict, Optional

from sqlalchemy.orm import Session

from storefront.models.inventory import (
    DIMENSION_COLOR,
    DIMENSION_PRODUCT,
    DIMENSION_SIZE,
    InventoryCounter,
)
from storefront.models.product import Product


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_active(self, product_id: int) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.active == True)  # noqa: E712
            .first()
        )

    def get_by_sku(self, sku: str) -> Optional[Product]:
        return self.db.query(Product).filter(Product.sku == sku).first()

    def create_or_update(
        self,
        sku: str,
        title: str,
        price_cents: int,
        stock: int = 0,
        sizes: Optional[Dict[str, int]] = None,
        colors: Optional[Dict[str, int]] = None,
        active: bool = True,
    ) -> Product:
        """
        Upsert a product and overwrite its counters. `sizes`/`colors` map a
        size code or color name to its quantity; the product-level counter
        always exists and holds `stock`.
        """
        p = self.get_by_sku(sku)
        if p:
            p.title = title
            p.price_cents = price_cents
            p.active = active
        else:
            p = Product(sku=sku, title=title, price_cents=price_cents, active=active)
            self.db.add(p)
        self.db.flush()

        wanted = {(DIMENSION_PRODUCT, ""): stock}
        for code, qty in (sizes or {}).items():
            wanted[(DIMENSION_SIZE, code)] = qty
        for name, qty in (colors or {}).items():
            wanted[(DIMENSION_COLOR, name)] = qty

        existing = {(c.dimension, c.key): c for c in p.counters}
        for k, qty in wanted.items():
            if qty < 0:
                raise ValueError(f"Negative stock for {sku} {k[0]} {k[1]!r}")
            if k in existing:
                existing[k].qty = qty
            else:
                p.counters.append(InventoryCounter(dimension=k[0], key=k[1], qty=qty))
        for k, counter in existing.items():
            if k not in wanted:
                p.counters.remove(counter)
        self.db.flush()
        return p
