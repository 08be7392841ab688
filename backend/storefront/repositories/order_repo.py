from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from storefront.models.order import Order
from storefront.models.order_event import OrderEvent
from storefront.utils.clock import utcnow


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.id == order_id)
            .populate_existing()
            .first()
        )

    def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.payment_reference == reference)
            .populate_existing()
            .first()
        )

    def list_for_customer(self, customer_id: str) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def list_all(self, status: Optional[str] = None, limit: int = 200) -> List[Order]:
        qry = self.db.query(Order)
        if status:
            qry = qry.filter(Order.status == status)
        return qry.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()

    def list_with_returns(self, customer_id: Optional[str] = None) -> List[Order]:
        qry = self.db.query(Order).filter(Order.return_requested_at.isnot(None))
        if customer_id is not None:
            qry = qry.filter(Order.customer_id == customer_id)
        return qry.order_by(Order.return_requested_at.desc()).all()

    def list_stale(self, status: str, created_before) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.status == status, Order.created_at < created_before)
            .all()
        )

    def status_counts(self) -> Dict[str, int]:
        rows = self.db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        return {status: count for status, count in rows}

    def compare_and_set(self, order: Order, expected_status: str, **values) -> bool:
        """
        Write `values` only if the row still has the status and version this
        caller read. Returns False when a concurrent writer got there first.
        Does not commit.
        """
        values.setdefault("updated_at", utcnow())
        res = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == expected_status,
                Order.version == order.version,
            )
            .values(version=Order.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def add_event(
        self,
        order_id: int,
        status: str,
        location: Optional[str] = None,
        note: Optional[str] = None,
    ) -> OrderEvent:
        ev = OrderEvent(order_id=order_id, status=status, location=location, note=note)
        self.db.add(ev)
        return ev
