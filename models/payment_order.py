from datetime import datetime
from sqlalchemy import String, DateTime, Numeric, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    # Client-facing identifier; also the idempotency key sent to providers
    order_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    provider: Mapped[str] = mapped_column(String(30), default="hybrid")
    provider_payment_id: Mapped[str] = mapped_column(String(100), default="", index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending | paid | failed
    amount_subtotal: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    shipping_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    amount_total: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_data: Mapped[dict] = mapped_column(JSON, default=dict)
    delivery_data: Mapped[dict] = mapped_column(JSON, default=dict)
    payment_data: Mapped[dict] = mapped_column(JSON, default=dict)
    stock_decremented: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
