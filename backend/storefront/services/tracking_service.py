from typing import Dict, Optional

from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.errors import InvalidStateTransition, OrderNotFound, ValidationError
from storefront.models.order import Order
from storefront.repositories.order_repo import OrderRepository
from storefront.services import order_state
from storefront.utils.transactions import committed


def tracking_url(tracking_id: Optional[str]) -> Optional[str]:
    if not tracking_id:
        return None
    return settings.TRACKING_URL_TEMPLATE.format(tracking_id=tracking_id)


class TrackingService:
    """Checkpoint history for an order. Carrier scans are entered by an admin."""

    def __init__(self, db: Session):
        self.db = db
        self.orders = OrderRepository(db)

    def timeline(self, order: Order) -> Dict:
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "tracking_id": order.tracking_id,
            "tracking_url": tracking_url(order.tracking_id),
            "checkpoints": [
                {
                    "status": ev.status,
                    "location": ev.location,
                    "note": ev.note,
                    "created_at": ev.created_at,
                }
                for ev in order.events
            ],
        }

    def add_checkpoint(
        self,
        order_id: int,
        status: str,
        location: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Order:
        status = (status or "").strip()
        if not status:
            raise ValidationError("status", "Checkpoint status is required")
        order = self.orders.get(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.status != order_state.SHIPPED:
            raise InvalidStateTransition(
                f"Checkpoints can only be added to shipped orders (order is {order.status})",
                current=order.status,
            )
        with committed(self.db):
            self.orders.add_event(order.id, status, location=location, note=note)
        return self.orders.get(order.id)
