import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.errors import InsufficientStock, ValidationError
from storefront.models.inventory import (
    DIMENSION_COLOR,
    DIMENSION_PRODUCT,
    DIMENSION_SIZE,
    InventoryCounter,
)
from storefront.models.product import Product
from storefront.repositories.product_repo import ProductRepository

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    product_id: int
    qty: int
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass
class Reservation:
    id: str
    # (counter_id, qty) per cart line, in cart order
    entries: List[Tuple[int, int]] = field(default_factory=list)


class InventoryService:
    """
    Stock ledger. Every decrement is a conditional UPDATE against the live
    counter, so two checkouts racing for the last unit cannot both win and a
    counter can never go negative.
    """

    def __init__(self, db: Session):
        self.db = db
        self.products = ProductRepository(db)

    def _load_product(self, idx: int, product_id: int) -> Product:
        product = self.products.get_active(product_id)
        if not product:
            raise ValidationError(f"items[{idx}].product_id", f"Product {product_id} not found")
        return product

    def resolve_counter(
        self, product: Product, size: Optional[str] = None, color: Optional[str] = None
    ) -> Tuple[Optional[InventoryCounter], str]:
        """
        Pick the counter a line draws from and the label used in error messages.

        Color stock is authoritative when the product tracks colors. Otherwise
        size stock when the product tracks sizes, otherwise the product-level
        counter. A variant the product tracks siblings of, but not this one,
        resolves to None (nothing available for that variant only).
        """
        colors = {}
        sizes = {}
        base = None
        for c in product.counters:
            if c.dimension == DIMENSION_COLOR:
                colors[c.key] = c
            elif c.dimension == DIMENSION_SIZE:
                sizes[c.key] = c
            elif c.dimension == DIMENSION_PRODUCT:
                base = c

        if color and colors:
            if size and sizes:
                # product models size and color independently; only color is decremented
                log.warning(
                    "product %s tracks both size and color stock; using color %r for size %r",
                    product.sku,
                    color,
                    size,
                )
            return colors.get(color), f"{product.title} in color {color}"
        if size and sizes:
            return sizes.get(size), f"{product.title} size {size}"
        return base, product.title

    def available(
        self, product_id: int, size: Optional[str] = None, color: Optional[str] = None
    ) -> int:
        product = self._load_product(0, product_id)
        counter, _ = self.resolve_counter(product, size=size, color=color)
        if counter is None:
            return 0
        return self.db.execute(
            select(InventoryCounter.qty).where(InventoryCounter.id == counter.id)
        ).scalar_one()

    def try_reserve(self, lines: Sequence[CartLine]) -> Reservation:
        """
        Decrement stock for every line or for none of them.

        All decrements run in one transaction which is committed before
        returning, so the reservation is durable by the time payment starts.
        Raises InsufficientStock for the first line that cannot be covered.
        """
        plan = []
        for idx, line in enumerate(lines):
            if line.qty < 1:
                raise ValidationError(f"items[{idx}].qty", "Quantity must be at least 1")
            product = self._load_product(idx, line.product_id)
            counter, label = self.resolve_counter(product, size=line.size, color=line.color)
            plan.append((idx, line, counter, label))

        reservation = Reservation(id=uuid4().hex)
        failed = None
        try:
            for idx, line, counter, label in plan:
                if counter is None:
                    failed = (idx, None, label)
                    break
                res = self.db.execute(
                    update(InventoryCounter)
                    .where(InventoryCounter.id == counter.id, InventoryCounter.qty >= line.qty)
                    .values(qty=InventoryCounter.qty - line.qty)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    failed = (idx, counter.id, label)
                    break
                reservation.entries.append((counter.id, line.qty))
        except Exception:
            self.db.rollback()
            raise

        if failed is not None:
            # undo every decrement of this call, then report what is really on the shelf
            self.db.rollback()
            idx, counter_id, label = failed
            available = 0
            if counter_id is not None:
                available = self.db.execute(
                    select(InventoryCounter.qty).where(InventoryCounter.id == counter_id)
                ).scalar_one()
            log.info("reservation rejected: %s (available=%s)", label, available)
            raise InsufficientStock(idx, available, label)

        self.db.commit()
        log.debug("reservation %s committed: %s", reservation.id, reservation.entries)
        return reservation

    def restore(self, entries: Iterable[Tuple[int, int]]) -> None:
        """Give reserved units back. Joins the caller's transaction; does not commit."""
        for counter_id, qty in entries:
            self.db.execute(
                update(InventoryCounter)
                .where(InventoryCounter.id == counter_id)
                .values(qty=InventoryCounter.qty + qty)
                .execution_options(synchronize_session=False)
            )
