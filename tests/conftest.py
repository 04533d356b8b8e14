from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from models.product import Product
from schemas.payment import CheckoutData, DeliveryData
from services import order_store
from services.normalize import normalize_money, normalize_provider_status
from services.payment_providers import PaymentProvider, PayoutData, ProviderConfig, ProviderPayment


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Known provider settings for every test; individual tests override as needed."""
    s = core_config.settings
    monkeypatch.setattr(s, "DEFAULT_PAYMENT_PROVIDER", "hybrid")
    monkeypatch.setattr(s, "HYBRID_WEBHOOK_SECRET", "")
    monkeypatch.setattr(s, "MERCADOPAGO_ACCESS_TOKEN", "TEST-mp-token")
    monkeypatch.setattr(s, "MERCADOPAGO_WEBHOOK_TOKEN", "")
    monkeypatch.setattr(s, "MERCADOPAGO_BASE_URL", "https://api.mercadopago.test")
    monkeypatch.setattr(s, "PAYPAL_CLIENT_ID", "")
    monkeypatch.setattr(s, "PAYPAL_SECRET", "")
    monkeypatch.setattr(s, "PAYPAL_MODE", "sandbox")
    monkeypatch.setattr(s, "PAYMENT_NOTIFICATION_URL", "")
    monkeypatch.setattr(s, "RESTOCK_ON_REVERSAL", False)
    return s


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()

    def _get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_product(db):
    """Factory creating catalog rows with a given stock."""
    def _make(product_id: int, stock: int, name: str = "Camiseta"):
        product = Product(id=product_id, name=name, slug=f"{name.lower()}-{product_id}", price=50, stock=stock)
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def stock_of(db):
    """Read stock straight from the table, bypassing the session identity map."""
    def _stock(product_id: int):
        return db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one()
    return _stock


@pytest.fixture
def make_order(db):
    """Persist a pending order directly through the store."""
    def _make(checkout: dict, provider: str = "hybrid", provider_payment_id: str = "", token: str = "tok-1",
              shipping: str = "0", payment_data: Optional[dict] = None):
        subtotal = normalize_money(checkout.get("totalValue"))
        shipping_amount = normalize_money(shipping)
        record = order_store.create_order(
            db,
            order_token=token,
            provider=provider,
            provider_payment_id=provider_payment_id,
            amount_subtotal=subtotal,
            shipping_amount=shipping_amount,
            amount_total=normalize_money(subtotal + shipping_amount),
            payer_email="buyer@example.com",
            checkout_data=CheckoutData.model_validate(checkout),
            delivery_data=DeliveryData(name="Ana Souza", email="buyer@example.com", phone="11999990000"),
            payment_data=payment_data or {},
        )
        db.commit()
        return record
    return _make


class FakePixProvider(PaymentProvider):
    """In-memory stand-in for the Mercado Pago adapter."""

    name = "mercadopago"

    def __init__(self, status="pending", external_reference="", error=None):
        super().__init__(ProviderConfig())
        self.status = status
        self.external_reference = external_reference
        self.error = error
        self.created = []
        self.fetched = []

    def _payment(self, payment_id):
        return ProviderPayment(
            provider_payment_id=payment_id,
            raw_status=self.status,
            payout=PayoutData(qr_code="00020126PIX", qr_code_base64="aVZCT1J3MEtHZ28=", ticket_url="https://mp.test/ticket/1"),
            external_reference=self.external_reference,
        )

    def create_payment(self, *, amount, description, payer_email, idempotency_key, notify_url="", reference=None):
        if self.error:
            raise self.error
        self.created.append({"amount": amount, "idempotency_key": idempotency_key, "reference": reference})
        self.external_reference = reference
        return self._payment("mp-1001")

    def fetch_payment(self, provider_payment_id):
        if self.error:
            raise self.error
        self.fetched.append(provider_payment_id)
        return self._payment(provider_payment_id)

    def normalize_status(self, raw_status):
        return normalize_provider_status(raw_status)


@pytest.fixture
def fake_pix():
    return FakePixProvider()
