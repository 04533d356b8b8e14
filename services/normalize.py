"""
Money and status normalization.

Internal status vocabulary and each provider's vocabulary are mapped by
separate functions; a provider renaming its statuses must only touch its own
table.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any


TWO_PLACES = Decimal("0.01")


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


_INTERNAL_PAID = {"paid", "approved", "completed"}
_INTERNAL_FAILED = {"failed", "cancelled", "canceled"}

# Mercado Pago payment.status values
_MERCADOPAGO_PAID = {"approved"}
_MERCADOPAGO_FAILED = {"rejected", "cancelled", "cancelled_by_user", "charged_back", "refunded"}

# PayPal order / capture status values
_PAYPAL_PAID = {"completed"}
_PAYPAL_FAILED = {"voided", "declined", "denied"}


def normalize_money(value: Any) -> Decimal:
    """Coerce to a 2-place Decimal; anything unparseable or non-finite is 0."""
    if isinstance(value, bool) or value is None:
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0.00")
    if not amount.is_finite():
        return Decimal("0.00")
    try:
        return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # exceeds the context precision
        return Decimal("0.00")


def _clean(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, PaymentStatus):
        return raw.value
    return str(raw).strip().lower()


def normalize_status(raw: Any) -> PaymentStatus:
    value = _clean(raw)
    if value in _INTERNAL_PAID:
        return PaymentStatus.PAID
    if value in _INTERNAL_FAILED:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def normalize_provider_status(raw: Any) -> PaymentStatus:
    value = _clean(raw)
    if value in _MERCADOPAGO_PAID:
        return PaymentStatus.PAID
    if value in _MERCADOPAGO_FAILED:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def normalize_paypal_status(raw: Any) -> PaymentStatus:
    value = _clean(raw)
    if value in _PAYPAL_PAID:
        return PaymentStatus.PAID
    if value in _PAYPAL_FAILED:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING
