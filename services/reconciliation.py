"""
Payment reconciliation engine.

Creates payment orders and applies status observations coming from client
polling, the hybrid webhook, provider webhooks and PayPal captures. Every
status change goes through ``update_payment_order_status``, the only code
path allowed to commit a stock decrement.

Stock is committed at most once per order: the ``stock_decremented`` flag is
claimed with a conditional UPDATE in the same transaction as the ledger
decrements and the status write, so a lost stock race rolls everything back
and a concurrent duplicate observation cannot decrement twice. Transitions
are resolved from the row as re-read inside that transaction, and the status
write is conditional on the status just read.
"""
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import AuthError, ConflictError, NotFoundError, PaymentError, ValidationError
from schemas.payment import CheckoutData, DeliveryData
from services import inventory, order_store
from services.normalize import PaymentStatus, normalize_money, normalize_status
from services.order_store import PaymentOrderRecord, dump_blob
from services.payment_providers import PayoutData, ProviderPayment, get_provider, provider_config

logger = logging.getLogger(__name__)

# rereads allowed when a concurrent writer moves the status mid-update
STATUS_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class CreatedOrder:
    order_token: str
    status: PaymentStatus
    payout: PayoutData
    amount_subtotal: Decimal
    shipping_amount: Decimal
    amount_total: Decimal


@dataclass(frozen=True)
class StatusUpdateResult:
    order_token: str
    provider: str
    previous_status: PaymentStatus
    status: PaymentStatus
    stock_decremented: bool
    provider_payment_id: str
    payment_data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a best-effort provider lookup: a status or the error that stopped it."""

    status: Optional[PaymentStatus] = None
    error: Optional[PaymentError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def generate_order_token() -> str:
    return secrets.token_urlsafe(24)


def derive_stock_items(checkout: CheckoutData) -> List[Dict[str, Any]]:
    """Line items to decrement: the cart's ``items`` or the single checkout item.

    Lines carrying no product reference at all are not stock-tracked.
    """
    lines = checkout.items if checkout.items is not None else [checkout]
    items = []
    for line in lines:
        product_id = line.product_id if line.product_id is not None else line.id
        if product_id is None:
            continue
        items.append({"id": product_id, "qty": line.qty if line.qty is not None else 1})
    return items


def _describe(checkout: CheckoutData) -> str:
    if checkout.title:
        return checkout.title
    if checkout.items:
        titles = [line.title for line in checkout.items if line.title]
        if titles:
            return ", ".join(titles)[:200]
        return f"Pedido com {len(checkout.items)} itens"
    return "Pedido"


def _secret_matches(supplied: Optional[str], expected: str) -> bool:
    return hmac.compare_digest((supplied or "").encode(), expected.encode())


def _require_order(db: Session, order_token: Optional[str]) -> PaymentOrderRecord:
    if not order_token:
        raise ValidationError("orderToken is required")
    order = order_store.get_by_token(db, order_token)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _resolve_transition(current: PaymentStatus, requested: PaymentStatus) -> PaymentStatus:
    if current is PaymentStatus.PENDING:
        return requested
    if current is PaymentStatus.PAID and requested is PaymentStatus.FAILED:
        return PaymentStatus.FAILED
    return current


def create_order(
    db: Session,
    *,
    checkout_item: Optional[CheckoutData],
    delivery_data: Optional[DeliveryData] = None,
    shipping_value: Any = 0,
    provider_name: Optional[str] = None,
    payer_email: Optional[str] = None,
) -> CreatedOrder:
    if checkout_item is None:
        raise ValidationError("checkoutItem is required")
    delivery = delivery_data or DeliveryData()
    provider = get_provider(provider_name)
    # reject carts the ledger could never decrement before touching the provider
    inventory.validate_stock_items(derive_stock_items(checkout_item))

    subtotal = normalize_money(checkout_item.total_value)
    shipping = normalize_money(shipping_value)
    total = normalize_money(subtotal + shipping)
    order_token = generate_order_token()

    payment: Optional[ProviderPayment] = None
    if provider.supports_remote_creation:
        payment = provider.create_payment(
            amount=total,
            description=_describe(checkout_item),
            payer_email=payer_email or delivery.email or settings.DEFAULT_PAYER_EMAIL,
            idempotency_key=order_token,
            notify_url=provider.notification_url(settings.PAYMENT_NOTIFICATION_URL),
            reference=order_token,
        )

    try:
        record = order_store.create_order(
            db,
            order_token=order_token,
            provider=provider.name,
            provider_payment_id=payment.provider_payment_id if payment else "",
            amount_subtotal=subtotal,
            shipping_amount=shipping,
            amount_total=total,
            payer_email=payer_email or delivery.email,
            checkout_data=checkout_item,
            delivery_data=delivery,
            payment_data=payment.as_payment_data() if payment else {},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Created payment order %s via %s (total=%s)", order_token, provider.name, total)

    status = record.status
    initial = provider.normalize_status(payment.raw_status) if payment else PaymentStatus.PENDING
    if initial is not PaymentStatus.PENDING:
        try:
            status = update_payment_order_status(db, record, initial, payment.provider_payment_id).status
        except ConflictError as exc:
            # the order and its remote payment exist; polling/webhooks reconcile it later
            logger.warning("Initial %s status for %s not applied: %s", initial.value, order_token, exc.message)

    return CreatedOrder(
        order_token=order_token,
        status=status,
        payout=payment.payout if payment else PayoutData(),
        amount_subtotal=subtotal,
        shipping_amount=shipping,
        amount_total=total,
    )


def _apply_observation(
    db: Session,
    order_token: str,
    requested: PaymentStatus,
    provider_payment_id: Optional[str],
    extra_payment_data: Optional[Dict[str, Any]],
) -> Optional[StatusUpdateResult]:
    """Apply one observation against the freshly locked row.

    Returns None when the row's status moved after it was read; the caller
    rolls back and tries again.
    """
    current = order_store.get_for_update(db, order_token)
    if current is None:
        raise NotFoundError("Order not found")
    previous = current.status
    target = _resolve_transition(previous, requested)
    if target is not requested and requested is not PaymentStatus.PENDING:
        logger.warning("Ignoring %s -> %s for order %s", previous.value, requested.value, order_token)

    stock_flag = current.stock_decremented
    items = derive_stock_items(current.checkout_data)
    if target is PaymentStatus.PAID and not stock_flag:
        if order_store.claim_stock_decrement(db, order_token):
            inventory.decrement_stock(db, items)
        # set either by this call or by a concurrent one that already committed
        stock_flag = True
    elif target is PaymentStatus.FAILED and previous is PaymentStatus.PAID and stock_flag:
        if settings.RESTOCK_ON_REVERSAL:
            if order_store.release_stock_claim(db, order_token):
                inventory.restock(db, items)
            stock_flag = False
        else:
            logger.warning(
                "Paid order %s reported failed; stock left decremented for manual reconciliation",
                order_token,
            )

    payment_data = {**current.payment_data, **(extra_payment_data or {})}
    resolved_payment_id = provider_payment_id or current.provider_payment_id
    written = order_store.apply_status_update(
        db,
        order_token,
        target,
        resolved_payment_id,
        payment_data,
        stock_flag,
        datetime.utcnow(),
        expected_status=previous,
    )
    if not written:
        return None
    return StatusUpdateResult(
        order_token=order_token,
        provider=current.provider,
        previous_status=previous,
        status=target,
        stock_decremented=stock_flag,
        provider_payment_id=resolved_payment_id,
        payment_data=payment_data,
    )


def update_payment_order_status(
    db: Session,
    order: PaymentOrderRecord,
    next_status: Any,
    provider_payment_id: Optional[str] = None,
    extra_payment_data: Optional[Dict[str, Any]] = None,
) -> StatusUpdateResult:
    """Apply a status observation to ``order``.

    ``order`` only identifies the row. Everything else is resolved from the
    row re-read inside the write transaction, and the status write only lands
    while that status is still current.
    """
    requested = normalize_status(next_status)
    result: Optional[StatusUpdateResult] = None
    for _ in range(STATUS_WRITE_ATTEMPTS):
        try:
            result = _apply_observation(db, order.order_token, requested, provider_payment_id, extra_payment_data)
            if result is None:
                db.rollback()
                logger.info("Order %s changed while applying %s; retrying", order.order_token, requested.value)
                continue
            db.commit()
        except Exception:
            db.rollback()
            raise
        break
    if result is None:
        raise ConflictError(f"Order {order.order_token} kept changing; status update not applied")

    if result.status is not result.previous_status:
        logger.info(
            "Order %s: %s -> %s (stock_decremented=%s)",
            result.order_token, result.previous_status.value, result.status.value, result.stock_decremented,
        )
    return result


def refresh_from_provider(db: Session, order: PaymentOrderRecord) -> RefreshResult:
    if order.status is PaymentStatus.FAILED or not order.provider_payment_id:
        return RefreshResult(status=order.status)
    try:
        provider = get_provider(order.provider)
        if not provider.supports_lookup:
            return RefreshResult(status=order.status)
        payment = provider.fetch_payment(order.provider_payment_id)
        result = update_payment_order_status(
            db,
            order,
            provider.normalize_status(payment.raw_status),
            payment.provider_payment_id,
            payment.as_payment_data(),
        )
    except PaymentError as exc:
        return RefreshResult(error=exc)
    return RefreshResult(status=result.status)


def get_status(db: Session, order_token: Optional[str]) -> PaymentOrderRecord:
    order = _require_order(db, order_token)
    refresh = refresh_from_provider(db, order)
    if not refresh.ok:
        logger.warning("Status refresh for %s failed, serving stored status: %s", order.order_token, refresh.error.message)
    return order_store.get_by_token(db, order.order_token) or order


def handle_hybrid_webhook(
    db: Session,
    *,
    secret: Optional[str],
    order_token: Optional[str],
    status: Optional[str],
    provider_payment_id: Optional[str] = None,
) -> StatusUpdateResult:
    expected = settings.HYBRID_WEBHOOK_SECRET
    if expected and not _secret_matches(secret, expected):
        logger.warning("Rejected hybrid webhook with invalid secret")
        raise AuthError("Invalid webhook secret")
    order = _require_order(db, order_token)
    extra = {"providerStatus": status} if status else {}
    return update_payment_order_status(db, order, normalize_status(status), provider_payment_id, extra)


def handle_provider_webhook(
    db: Session,
    provider_name: str,
    *,
    token: Optional[str],
    payment_id: Optional[str],
) -> StatusUpdateResult:
    expected = provider_config(provider_name).webhook_token
    if expected and not _secret_matches(token, expected):
        logger.warning("Rejected %s webhook with invalid token", provider_name)
        raise AuthError("Invalid webhook token")
    if not payment_id:
        raise ValidationError("Missing payment id")

    provider = get_provider(provider_name)
    payment = provider.fetch_payment(payment_id)
    if not payment.external_reference:
        raise ValidationError("Payment has no order reference")
    order = order_store.get_by_token(db, payment.external_reference)
    if order is None:
        raise NotFoundError("Order not found")
    if order.provider != provider.name:
        raise ValidationError(f"Order {order.order_token} is not handled by {provider.name}")
    return update_payment_order_status(
        db,
        order,
        provider.normalize_status(payment.raw_status),
        payment.provider_payment_id or payment_id,
        payment.as_payment_data(),
    )


def capture_order(db: Session, order_token: Optional[str]) -> StatusUpdateResult:
    order = _require_order(db, order_token)
    provider = get_provider(order.provider)
    if not provider.supports_capture:
        raise ValidationError(f"Provider '{provider.name}' does not support capture")
    if not order.provider_payment_id:
        raise ValidationError("Order has no provider payment to capture")
    payment = provider.capture_order(order.provider_payment_id)
    return update_payment_order_status(
        db,
        order,
        provider.normalize_status(payment.raw_status),
        payment.provider_payment_id,
        payment.as_payment_data(),
    )


def _checkout_lines(checkout: CheckoutData) -> List[Dict[str, Any]]:
    if checkout.items is not None:
        return [dump_blob(line) for line in checkout.items]
    line = dump_blob(checkout)
    line.pop("totalValue", None)
    return [line]


def list_confirmed_orders(db: Session) -> List[Dict[str, Any]]:
    """Back-office projection of paid orders; read-only."""
    confirmed = []
    for order in order_store.list_by_status(db, PaymentStatus.PAID):
        delivery = dump_blob(order.delivery_data)
        confirmed.append(
            {
                "order_token": order.order_token,
                "provider": order.provider,
                "provider_payment_id": order.provider_payment_id,
                "status": order.status.value,
                "buyer": {
                    "name": order.delivery_data.name,
                    "email": order.payer_email or order.delivery_data.email,
                    "phone": order.delivery_data.phone,
                    "document": order.delivery_data.document,
                },
                "delivery": delivery,
                "items": _checkout_lines(order.checkout_data),
                "amounts": amounts_of(order),
                "created_at": order.created_at.isoformat() if order.created_at else None,
                "updated_at": order.updated_at.isoformat() if order.updated_at else None,
            }
        )
    return confirmed


def amounts_of(order: PaymentOrderRecord) -> Dict[str, float]:
    return {
        "subtotal": float(order.amount_subtotal),
        "shipping": float(order.shipping_amount),
        "total": float(order.amount_total),
    }
