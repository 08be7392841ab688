import logging
from typing import Dict, List, Optional

log = logging.getLogger(__name__)


class LoggingNotifier:
    """
    Fire-and-forget customer notifications. Delivery (email/SMS) lives outside
    this service; here every event is logged and kept in `sent` for inspection.
    `notify` never raises.
    """

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict] = []

    def _deliver(self, event: str, order, extra: Optional[Dict] = None) -> None:
        if self.fail:
            raise RuntimeError("Simulated notification outage")
        payload = {
            "event": event,
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
            "status": order.status,
        }
        if extra:
            payload.update(extra)
        self.sent.append(payload)
        log.info("notify %s order=%s customer=%s", event, order.order_number, order.customer_id)

    def notify(self, event: str, order, extra: Optional[Dict] = None) -> bool:
        try:
            self._deliver(event, order, extra)
            return True
        except Exception as e:
            log.warning("notification %s for order %s dropped: %s", event, order.id, e)
            return False
