"""
Payment strategies. One class per method; the engine picks the adapter once
at checkout and never branches on the method string afterwards.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from storefront.adapters.gateway_client import GatewayError, build_gateway_client, verify_signature
from storefront.errors import PaymentGatewayError, PaymentVerificationFailed, ValidationError
from storefront.services import order_state

log = logging.getLogger(__name__)

METHOD_COD = "cod"
METHOD_MANUAL = "manual"
METHOD_GATEWAY = "gateway"

# spellings used by older storefront clients
_ALIASES = {
    "cod": METHOD_COD,
    "cash": METHOD_COD,
    "manual": METHOD_MANUAL,
    "upi": METHOD_MANUAL,
    "gateway": METHOD_GATEWAY,
    "razorpay": METHOD_GATEWAY,
}


def normalize_method(method: Optional[str]) -> str:
    key = (method or "").strip().lower()
    if key not in _ALIASES:
        raise ValidationError(
            "payment_method", f"Unsupported payment method {method!r} (use cod, manual or gateway)"
        )
    return _ALIASES[key]


@dataclass
class PaymentHandle:
    """What the client needs to finish paying for an order."""

    method: str
    amount_cents: int
    currency: str
    reference: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentOutcome:
    """Status the order should move to, plus fields to record on it."""

    status: str
    values: Dict[str, Any] = field(default_factory=dict)


class PaymentAdapter:
    method: str = ""
    initial_status: str = ""

    def initiate(self, order) -> PaymentHandle:
        raise NotImplementedError

    def confirm(self, order, proof: Dict[str, Any]) -> PaymentOutcome:
        raise NotImplementedError


class CashOnDeliveryAdapter(PaymentAdapter):
    method = METHOD_COD
    initial_status = order_state.PENDING

    def initiate(self, order) -> PaymentHandle:
        return PaymentHandle(
            method=self.method,
            amount_cents=order.total_cents,
            currency=order.currency,
            details={"collect_on_delivery": True},
        )

    def confirm(self, order, proof: Dict[str, Any]) -> PaymentOutcome:
        # nothing to verify; cash is collected by the courier
        return PaymentOutcome(status=order_state.PENDING)


class ManualTransferAdapter(PaymentAdapter):
    """Customer pays out-of-band and submits a reference; an admin verifies it later."""

    method = METHOD_MANUAL
    initial_status = order_state.PENDING_VERIFICATION

    def __init__(self, payee_vpa: str, payee_name: str):
        self.payee_vpa = payee_vpa
        self.payee_name = payee_name

    def initiate(self, order) -> PaymentHandle:
        return PaymentHandle(
            method=self.method,
            amount_cents=order.total_cents,
            currency=order.currency,
            details={
                "payee_vpa": self.payee_vpa,
                "payee_name": self.payee_name,
                "note": order.order_number,
            },
        )

    def confirm(self, order, proof: Dict[str, Any]) -> PaymentOutcome:
        ref = str(proof.get("transaction_ref") or "").strip()
        if not ref:
            raise ValidationError("transaction_ref", "Valid transaction ID is required")
        if len(ref) > 128:
            raise ValidationError("transaction_ref", "Transaction ID is too long")
        return PaymentOutcome(
            status=order_state.PENDING_VERIFICATION, values={"transaction_ref": ref}
        )


class GatewayAdapter(PaymentAdapter):
    method = METHOD_GATEWAY
    initial_status = order_state.AWAITING_PAYMENT

    def __init__(self, client, key_secret: str):
        self.client = client
        self.key_secret = key_secret

    def initiate(self, order) -> PaymentHandle:
        try:
            remote = self.client.create_order(
                amount_cents=order.total_cents,
                currency=order.currency,
                receipt=order.order_number,
                notes={"order_number": order.order_number, "coupon": order.coupon_code or "none"},
            )
        except GatewayError as e:
            log.warning("gateway initiate failed for %s: %s", order.order_number, e)
            raise PaymentGatewayError(str(e)) from e
        return PaymentHandle(
            method=self.method,
            amount_cents=int(remote.get("amount", order.total_cents)),
            currency=remote.get("currency", order.currency),
            reference=remote["id"],
            details={"key_id": self.client.key_id, "gateway_order_id": remote["id"]},
        )

    def verify(self, proof: Dict[str, Any], order_id: Optional[int] = None) -> Dict[str, str]:
        """Check the callback fields and their signature. Returns the cleaned fields."""
        fields = {
            name: str(proof.get(name) or "").strip()
            for name in ("gateway_order_id", "payment_id", "signature")
        }
        for name, value in fields.items():
            if not value:
                raise ValidationError(name, f"Missing or invalid {name.replace('_', ' ')}")
        if not verify_signature(
            self.key_secret, fields["gateway_order_id"], fields["payment_id"], fields["signature"]
        ):
            raise PaymentVerificationFailed("Invalid payment signature", order_id=order_id)
        return fields

    def confirm(self, order, proof: Dict[str, Any]) -> PaymentOutcome:
        fields = self.verify(proof, order_id=order.id)
        if fields["gateway_order_id"] != order.payment_reference:
            raise PaymentVerificationFailed(
                "Payment reference does not match the order", order_id=order.id
            )
        return PaymentOutcome(status=order_state.PAID, values={"payment_id": fields["payment_id"]})


def build_payment_adapters(settings, gateway_client=None) -> Dict[str, PaymentAdapter]:
    client = gateway_client or build_gateway_client(settings)
    return {
        METHOD_COD: CashOnDeliveryAdapter(),
        METHOD_MANUAL: ManualTransferAdapter(settings.MANUAL_PAYEE_VPA, settings.MANUAL_PAYEE_NAME),
        METHOD_GATEWAY: GatewayAdapter(client, settings.GATEWAY_KEY_SECRET),
    }
