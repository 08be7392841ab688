from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.adapters.notifier import LoggingNotifier
from storefront.adapters.payments import PaymentAdapter
from storefront.api.deps import current_customer, get_notifier, get_payment_adapters, translate_errors
from storefront.db import get_db
from storefront.schemas.order_schema import OrderOut, PaymentHandleOut
from storefront.schemas.payment_schema import (
    ManualProofIn,
    PaymentConfirmIn,
    PaymentConfirmOut,
    PaymentIntentIn,
)
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _order_service(
    db: Session = Depends(get_db),
    adapters: Dict[str, PaymentAdapter] = Depends(get_payment_adapters),
    notifier: LoggingNotifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(db, adapters=adapters, notifier=notifier)


@router.post("/intent", response_model=PaymentHandleOut, summary="Gateway credentials for an unpaid order")
def payment_intent(
    payload: PaymentIntentIn,
    customer_id: str = Depends(current_customer),
    svc: OrderService = Depends(_order_service),
):
    with translate_errors("payment_intent"):
        return svc.create_payment_intent(payload.order_id, customer_id).to_dict()


@router.post("/confirm", response_model=PaymentConfirmOut, summary="Verify a signed gateway callback")
def payment_confirm(payload: PaymentConfirmIn, svc: OrderService = Depends(_order_service)):
    # the callback is authenticated by its signature, not by the caller's identity
    with translate_errors("payment_confirm"):
        return svc.confirm_gateway_payment(
            payload.gateway_order_id, payload.payment_id, payload.signature
        )


@router.post("/manual-proof", response_model=OrderOut, summary="Submit a manual transfer reference")
def manual_proof(
    payload: ManualProofIn,
    customer_id: str = Depends(current_customer),
    svc: OrderService = Depends(_order_service),
):
    with translate_errors("manual_proof"):
        return svc.submit_manual_proof(payload.order_id, customer_id, payload.transaction_ref)
