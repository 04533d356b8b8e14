import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from core.errors import ProviderError
from services.normalize import PaymentStatus, normalize_provider_status
from services.payment_providers import PaymentProvider, PayoutData, ProviderPayment

logger = logging.getLogger(__name__)


class MercadoPagoProvider(PaymentProvider):
    """PIX payments through the Mercado Pago payments API."""

    name = "mercadopago"

    @property
    def configured(self) -> bool:
        return bool(self.config.access_token)

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _handle(self, resp: requests.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("Mercado Pago returned HTTP %s: %s", resp.status_code, message)
            raise ProviderError(self.name, message or f"Mercado Pago HTTP {resp.status_code}")
        return body if isinstance(body, dict) else {}

    def _to_payment(self, body: Dict[str, Any]) -> ProviderPayment:
        tx = (body.get("point_of_interaction") or {}).get("transaction_data") or {}
        metadata = body.get("metadata") or {}
        return ProviderPayment(
            provider_payment_id=str(body.get("id") or ""),
            raw_status=str(body.get("status") or ""),
            payout=PayoutData(
                qr_code=tx.get("qr_code") or "",
                qr_code_base64=tx.get("qr_code_base64") or "",
                ticket_url=tx.get("ticket_url") or "",
            ),
            external_reference=str(body.get("external_reference") or metadata.get("order_token") or ""),
            status_detail=str(body.get("status_detail") or ""),
        )

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
        ref = reference or idempotency_key
        payload: Dict[str, Any] = {
            "transaction_amount": float(amount),
            "description": description,
            "payment_method_id": "pix",
            "payer": {"email": payer_email},
            "external_reference": ref,
            "metadata": {"order_token": ref},
        }
        if notify_url:
            payload["notification_url"] = notify_url

        try:
            resp = requests.post(
                self._url("/v1/payments"),
                json=payload,
                headers=self._headers(idempotency_key),
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"Mercado Pago request failed: {exc}") from exc
        return self._to_payment(self._handle(resp))

    def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:
        try:
            resp = requests.get(
                self._url(f"/v1/payments/{provider_payment_id}"),
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"Mercado Pago request failed: {exc}") from exc
        return self._to_payment(self._handle(resp))

    def normalize_status(self, raw_status: Any) -> PaymentStatus:
        return normalize_provider_status(raw_status)
