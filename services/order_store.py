"""
Payment order persistence.

Rows are mapped to ``PaymentOrderRecord`` here so the reconciliation engine
never handles ORM objects or raw JSON blobs. No business rules live in this
module; callers own the transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import ConflictError
from models.payment_order import PaymentOrder
from schemas.payment import CheckoutData, DeliveryData, PaymentData
from services.normalize import PaymentStatus, normalize_money, normalize_status


@dataclass(frozen=True)
class PaymentOrderRecord:
    id: int
    order_token: str
    provider: str
    provider_payment_id: str
    status: PaymentStatus
    amount_subtotal: Decimal
    shipping_amount: Decimal
    amount_total: Decimal
    payer_email: Optional[str]
    checkout_data: CheckoutData
    delivery_data: DeliveryData
    payment_data: Dict[str, Any]
    stock_decremented: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


def dump_blob(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


def clean_payment_data(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return dump_blob(PaymentData.model_validate(data or {}))


def to_record(row: PaymentOrder) -> PaymentOrderRecord:
    return PaymentOrderRecord(
        id=row.id,
        order_token=row.order_token,
        provider=row.provider,
        provider_payment_id=row.provider_payment_id or "",
        status=normalize_status(row.status),
        amount_subtotal=normalize_money(row.amount_subtotal),
        shipping_amount=normalize_money(row.shipping_amount),
        amount_total=normalize_money(row.amount_total),
        payer_email=row.payer_email,
        checkout_data=CheckoutData.model_validate(row.checkout_data or {}),
        delivery_data=DeliveryData.model_validate(row.delivery_data or {}),
        payment_data=clean_payment_data(row.payment_data),
        stock_decremented=bool(row.stock_decremented),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def create_order(
    db: Session,
    *,
    order_token: str,
    provider: str,
    provider_payment_id: str,
    amount_subtotal: Decimal,
    shipping_amount: Decimal,
    amount_total: Decimal,
    payer_email: Optional[str],
    checkout_data: CheckoutData,
    delivery_data: DeliveryData,
    payment_data: Dict[str, Any],
) -> PaymentOrderRecord:
    now = datetime.utcnow()
    row = PaymentOrder(
        order_token=order_token,
        provider=provider,
        provider_payment_id=provider_payment_id or "",
        status=PaymentStatus.PENDING.value,
        amount_subtotal=amount_subtotal,
        shipping_amount=shipping_amount,
        amount_total=amount_total,
        payer_email=payer_email,
        checkout_data=dump_blob(checkout_data),
        delivery_data=dump_blob(delivery_data),
        payment_data=clean_payment_data(payment_data),
        stock_decremented=False,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Order token collision: {order_token}")
    return to_record(row)


def get_by_token(db: Session, order_token: str) -> Optional[PaymentOrderRecord]:
    row = db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.order_token == order_token)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    return to_record(row) if row else None


def get_for_update(db: Session, order_token: str) -> Optional[PaymentOrderRecord]:
    """Re-read the row inside the caller's transaction, row-locked where the backend supports it."""
    row = db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.order_token == order_token)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    return to_record(row) if row else None


def list_by_status(db: Session, status: PaymentStatus) -> List[PaymentOrderRecord]:
    rows = db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.status == status.value)
        .order_by(PaymentOrder.updated_at.desc(), PaymentOrder.id.desc())
        .execution_options(populate_existing=True)
    ).scalars().all()
    return [to_record(row) for row in rows]


def claim_stock_decrement(db: Session, order_token: str) -> bool:
    """Flip stock_decremented false -> true; True only for the caller that won."""
    result = db.execute(
        update(PaymentOrder)
        .where(PaymentOrder.order_token == order_token, PaymentOrder.stock_decremented.is_(False))
        .values(stock_decremented=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_stock_claim(db: Session, order_token: str) -> bool:
    result = db.execute(
        update(PaymentOrder)
        .where(PaymentOrder.order_token == order_token, PaymentOrder.stock_decremented.is_(True))
        .values(stock_decremented=False)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply_status_update(
    db: Session,
    order_token: str,
    status: PaymentStatus,
    provider_payment_id: str,
    payment_data: Dict[str, Any],
    stock_decremented: bool,
    updated_at: datetime,
    expected_status: Optional[PaymentStatus] = None,
) -> bool:
    """Write the resolved state; with ``expected_status`` only if the row still has it."""
    stmt = update(PaymentOrder).where(PaymentOrder.order_token == order_token)
    if expected_status is not None:
        stmt = stmt.where(PaymentOrder.status == expected_status.value)
    result = db.execute(
        stmt.values(
            status=status.value,
            provider_payment_id=provider_payment_id or "",
            payment_data=clean_payment_data(payment_data),
            stock_decremented=stock_decremented,
            updated_at=updated_at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
