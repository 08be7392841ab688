import re
from typing import Any, Dict, Optional, Tuple

from storefront.errors import ValidationError

PHONE_RE = re.compile(r"^\d{10}$")
PINCODE_RE = re.compile(r"^\d{4,8}$")
UPI_RE = re.compile(r"^[A-Za-z0-9._-]{2,256}@[A-Za-z][A-Za-z0-9]{1,63}$")
IFSC_RE = re.compile(r"^[A-Za-z]{4}0[A-Za-z0-9]{6}$")

REFUND_UPI = "upi"
REFUND_BANK = "bank"

_REQUIRED_ADDRESS = (
    ("name", "Name is required"),
    ("address", "Address is required"),
    ("city", "City is required"),
    ("state", "State is required"),
)

_REQUIRED_BANK = (
    ("account_holder_name", "Account holder name is required"),
    ("bank_name", "Bank name is required"),
    ("account_number", "Account number is required"),
    ("ifsc_code", "IFSC code is required"),
)


def _clean(value: Any) -> str:
    return str(value or "").strip()


def validate_shipping_address(raw: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Every payment method needs the same minimum: full address, 10-digit phone, 4-8 digit pincode."""
    raw = raw or {}
    addr = {k: _clean(raw.get(k)) for k in (
        "name", "phone", "address", "street_address", "city", "state", "pincode", "landmark"
    )}
    for key, message in _REQUIRED_ADDRESS:
        if not addr[key]:
            raise ValidationError(f"shipping_address.{key}", message)
    phone = re.sub(r"[\s-]", "", addr["phone"])
    if not PHONE_RE.match(phone):
        raise ValidationError("shipping_address.phone", "Phone number must be exactly 10 digits")
    addr["phone"] = phone
    if not addr["pincode"]:
        raise ValidationError("shipping_address.pincode", "Pincode is required")
    if not PINCODE_RE.match(addr["pincode"]):
        raise ValidationError("shipping_address.pincode", "Pincode must be between 4-8 digits")
    return addr


def validate_refund_destination(
    method: Optional[str], destination: Optional[Dict[str, Any]]
) -> Tuple[str, Dict[str, str]]:
    """Returns (method, cleaned destination) or raises a field-specific ValidationError."""
    method = _clean(method).lower()
    destination = destination or {}
    if method == REFUND_UPI:
        upi_id = _clean(destination.get("upi_id"))
        if not upi_id:
            raise ValidationError("refund_destination.upi_id", "UPI ID is required")
        if not UPI_RE.match(upi_id):
            raise ValidationError("refund_destination.upi_id", "UPI ID is not valid")
        return method, {"upi_id": upi_id}
    if method == REFUND_BANK:
        bank = {}
        for key, message in _REQUIRED_BANK:
            value = _clean(destination.get(key))
            if not value:
                raise ValidationError(f"refund_destination.{key}", message)
            bank[key] = value
        if not bank["account_number"].isdigit():
            raise ValidationError(
                "refund_destination.account_number", "Account number must contain only digits"
            )
        bank["ifsc_code"] = bank["ifsc_code"].upper()
        if not IFSC_RE.match(bank["ifsc_code"]):
            raise ValidationError("refund_destination.ifsc_code", "IFSC code is not valid")
        bank["branch"] = _clean(destination.get("branch"))
        return method, bank
    raise ValidationError("refund_method", "Refund method is required (upi or bank)")
