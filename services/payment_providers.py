"""
Payment provider adapters: shared types, the hybrid provider and the registry.

Adapters receive an explicit ``ProviderConfig``; only ``provider_config`` here
reads application settings.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from core.config import settings
from core.errors import ProviderError, ProviderNotConfiguredError, ValidationError
from services.normalize import PaymentStatus, normalize_status


@dataclass(frozen=True)
class ProviderConfig:
    access_token: str = ""
    webhook_token: str = ""
    base_url: str = ""
    mode: str = "sandbox"
    timeout: float = 20.0
    client_id: str = ""
    client_secret: str = ""
    currency: str = "BRL"


@dataclass(frozen=True)
class PayoutData:
    qr_code: str = ""
    qr_code_base64: str = ""
    ticket_url: str = ""

    def as_payment_data(self) -> Dict[str, str]:
        data = {"qrCode": self.qr_code, "qrCodeBase64": self.qr_code_base64, "ticketUrl": self.ticket_url}
        return {k: v for k, v in data.items() if v}


@dataclass(frozen=True)
class ProviderPayment:
    provider_payment_id: str
    raw_status: str
    payout: PayoutData = field(default_factory=PayoutData)
    external_reference: str = ""
    status_detail: str = ""

    def as_payment_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.payout.as_payment_data())
        if self.raw_status:
            data["providerStatus"] = self.raw_status
        if self.status_detail:
            data["statusDetail"] = self.status_detail
        return data


class PaymentProvider(ABC):
    name: str = ""
    supports_remote_creation: bool = True
    supports_lookup: bool = True
    supports_capture: bool = False

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return True

    def notification_url(self, base_url: str) -> str:
        """Webhook URL handed to the provider, carrying the webhook token if any."""
        if not base_url:
            return ""
        url = f"{base_url.rstrip('/')}/{self.name}"
        if self.config.webhook_token:
            url = f"{url}?{urlencode({'token': self.config.webhook_token})}"
        return url

    @abstractmethod
    def create_payment(
        self,
        *,
        amount: Decimal,
        description: str,
        payer_email: str,
        idempotency_key: str,
        notify_url: str = "",
        reference: Optional[str] = None,
    ) -> ProviderPayment:
        ...

    @abstractmethod
    def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:
        ...

    def capture_order(self, provider_payment_id: str) -> ProviderPayment:
        raise ProviderError(self.name, f"Provider '{self.name}' does not support capture")

    def normalize_status(self, raw_status: Any) -> PaymentStatus:
        return normalize_status(raw_status)


class HybridProvider(PaymentProvider):
    """Manual/offline provider: no outbound calls, status arrives via trusted webhook."""

    name = "hybrid"
    supports_remote_creation = False
    supports_lookup = False

    def create_payment(self, *, amount, description, payer_email, idempotency_key, notify_url="", reference=None):
        return ProviderPayment(provider_payment_id="", raw_status=PaymentStatus.PENDING.value)

    def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:
        raise ProviderError(self.name, "Hybrid provider has no remote lookup")


PAYPAL_BASE_URLS = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}


def provider_config(name: str) -> ProviderConfig:
    timeout = settings.PROVIDER_TIMEOUT_SECONDS
    if name == "hybrid":
        return ProviderConfig(webhook_token=settings.HYBRID_WEBHOOK_SECRET, mode="live", timeout=timeout)
    if name == "mercadopago":
        return ProviderConfig(
            access_token=settings.MERCADOPAGO_ACCESS_TOKEN,
            webhook_token=settings.MERCADOPAGO_WEBHOOK_TOKEN,
            base_url=settings.MERCADOPAGO_BASE_URL,
            mode=settings.MERCADOPAGO_MODE,
            timeout=timeout,
        )
    if name == "paypal":
        mode = "live" if settings.PAYPAL_MODE == "live" else "sandbox"
        return ProviderConfig(
            base_url=PAYPAL_BASE_URLS[mode],
            mode=mode,
            timeout=timeout,
            client_id=settings.PAYPAL_CLIENT_ID,
            client_secret=settings.PAYPAL_SECRET,
            currency=settings.PAYPAL_CURRENCY,
        )
    raise ValidationError(f"Unknown payment provider: {name}")


def get_provider(name: Optional[str]) -> PaymentProvider:
    """Build the adapter for ``name``; raises if unknown or missing credentials."""
    # imported here: both adapter modules import this one
    from services.mercadopago import MercadoPagoProvider
    from services.paypal import PayPalProvider

    key = (name or settings.DEFAULT_PAYMENT_PROVIDER or "hybrid").strip().lower()
    classes = {
        "hybrid": HybridProvider,
        "mercadopago": MercadoPagoProvider,
        "paypal": PayPalProvider,
    }
    if key not in classes:
        raise ValidationError(f"Unknown payment provider: {key}")
    provider = classes[key](provider_config(key))
    if not provider.configured:
        raise ProviderNotConfiguredError(key)
    return provider
