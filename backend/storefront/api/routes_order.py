from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.adapters.notifier import LoggingNotifier
from storefront.adapters.payments import PaymentAdapter
from storefront.api.deps import (
    current_customer,
    customer_or_admin,
    get_notifier,
    get_payment_adapters,
    require_admin,
    translate_errors,
)
from storefront.db import get_db
from storefront.schemas.order_schema import (
    AdminStatusIn,
    CancelIn,
    CheckpointIn,
    CreateOrderIn,
    CreateOrderOut,
    OrderOut,
    RequestReturnIn,
    ReturnDecisionIn,
)
from storefront.services.order_service import OrderService
from storefront.services.return_service import ReturnService
from storefront.services.tracking_service import TrackingService

router = APIRouter(tags=["orders"])


def _order_service(
    db: Session = Depends(get_db),
    adapters: Dict[str, PaymentAdapter] = Depends(get_payment_adapters),
    notifier: LoggingNotifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(db, adapters=adapters, notifier=notifier)


def _return_service(
    db: Session = Depends(get_db), notifier: LoggingNotifier = Depends(get_notifier)
) -> ReturnService:
    return ReturnService(db, notifier=notifier)


@router.post("", response_model=CreateOrderOut, status_code=201, summary="Create order (checkout)")
def create_order(
    payload: CreateOrderIn,
    customer_id: str = Depends(current_customer),
    svc: OrderService = Depends(_order_service),
):
    with translate_errors("create_order"):
        order, handle = svc.create_order(
            customer_id,
            [it.model_dump() for it in payload.items],
            payload.shipping_address.model_dump(),
            payload.payment_method,
            coupon_code=payload.coupon_code,
            transaction_ref=payload.transaction_ref,
        )
        return {"order": OrderOut.model_validate(order), "payment": handle.to_dict()}


@router.get("/mine", response_model=List[OrderOut])
def my_orders(
    customer_id: str = Depends(current_customer), svc: OrderService = Depends(_order_service)
):
    return svc.list_for_customer(customer_id)


@router.get("/stats", dependencies=[Depends(require_admin)])
def order_stats(svc: OrderService = Depends(_order_service)):
    return svc.status_counts()


@router.get("/returns", response_model=List[OrderOut], dependencies=[Depends(require_admin)])
def all_returns(svc: ReturnService = Depends(_return_service)):
    return svc.list_returns()


@router.get("/mine-returns", response_model=List[OrderOut])
def my_returns(
    customer_id: str = Depends(current_customer), svc: ReturnService = Depends(_return_service)
):
    return svc.list_returns(customer_id=customer_id)


@router.get("", response_model=List[OrderOut], dependencies=[Depends(require_admin)])
def list_orders(status: Optional[str] = None, svc: OrderService = Depends(_order_service)):
    return svc.list_all(status=status)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    caller: Tuple[Optional[str], bool] = Depends(customer_or_admin),
    svc: OrderService = Depends(_order_service),
):
    customer_id, is_admin = caller
    with translate_errors("get_order"):
        return svc.get_order(order_id, customer_id, admin=is_admin)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: CancelIn,
    customer_id: str = Depends(current_customer),
    svc: OrderService = Depends(_order_service),
):
    with translate_errors("cancel_order"):
        return svc.cancel(order_id, customer_id, payload.reason)


@router.post("/{order_id}/request-return", response_model=OrderOut)
def request_return(
    order_id: int,
    payload: RequestReturnIn,
    customer_id: str = Depends(current_customer),
    svc: ReturnService = Depends(_return_service),
):
    with translate_errors("request_return"):
        return svc.request_return(
            order_id,
            customer_id,
            payload.reason,
            payload.refund_method,
            payload.refund_destination,
            photo_url=payload.photo_url,
        )


@router.put("/{order_id}/admin-status", response_model=OrderOut, dependencies=[Depends(require_admin)])
def admin_status(
    order_id: int, payload: AdminStatusIn, svc: OrderService = Depends(_order_service)
):
    with translate_errors("admin_status"):
        return svc.admin_transition(
            order_id, payload.status, tracking_id=payload.tracking_id, reason=payload.reason
        )


@router.put(
    "/{order_id}/admin-return-decision",
    response_model=OrderOut,
    dependencies=[Depends(require_admin)],
)
def admin_return_decision(
    order_id: int, payload: ReturnDecisionIn, svc: ReturnService = Depends(_return_service)
):
    with translate_errors("return_decision"):
        return svc.decide(order_id, payload.decision)


@router.get("/{order_id}/tracking")
def order_tracking(
    order_id: int,
    caller: Tuple[Optional[str], bool] = Depends(customer_or_admin),
    db: Session = Depends(get_db),
    svc: OrderService = Depends(_order_service),
):
    customer_id, is_admin = caller
    with translate_errors("order_tracking"):
        order = svc.get_order(order_id, customer_id, admin=is_admin)
        return TrackingService(db).timeline(order)


@router.post("/{order_id}/checkpoints", dependencies=[Depends(require_admin)])
def add_checkpoint(order_id: int, payload: CheckpointIn, db: Session = Depends(get_db)):
    svc = TrackingService(db)
    with translate_errors("add_checkpoint"):
        order = svc.add_checkpoint(
            order_id, payload.status, location=payload.location, note=payload.note
        )
        return svc.timeline(order)
