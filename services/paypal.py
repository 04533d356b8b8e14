import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from core.errors import ProviderError
from services.normalize import PaymentStatus, normalize_paypal_status
from services.payment_providers import PaymentProvider, PayoutData, ProviderPayment

logger = logging.getLogger(__name__)


class PayPalProvider(PaymentProvider):
    """PayPal Checkout orders (intent CAPTURE), sandbox or live by config.mode."""

    name = "paypal"
    supports_capture = True

    @property
    def configured(self) -> bool:
        return bool(self.config.client_id and self.config.client_secret)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _access_token(self) -> str:
        try:
            resp = requests.post(
                self._url("/v1/oauth2/token"),
                auth=(self.config.client_id, self.config.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"PayPal token request failed: {exc}") from exc
        if not resp.ok:
            logger.error("PayPal token endpoint returned HTTP %s", resp.status_code)
            raise ProviderError(self.name, "PayPal token error")
        try:
            body = resp.json()
        except ValueError:
            body = {}
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            logger.error("PayPal token endpoint returned no access_token")
            raise ProviderError(self.name, "PayPal token error")
        return token

    def _headers(self, request_id: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    def _send(self, method: str, path: str, request_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = self._headers(request_id)
        call = requests.post if method == "POST" else requests.get
        try:
            resp = call(self._url(path), headers=headers, timeout=self.config.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"PayPal request failed: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("PayPal %s %s returned HTTP %s: %s", method, path, resp.status_code, message)
            raise ProviderError(self.name, message or f"PayPal HTTP {resp.status_code}")
        return body if isinstance(body, dict) else {}

    def _to_payment(self, body: Dict[str, Any]) -> ProviderPayment:
        units = body.get("purchase_units") or [{}]
        unit = units[0] or {}
        captures = (unit.get("payments") or {}).get("captures") or []
        # a declined capture can sit under a COMPLETED order
        raw_status = (captures[0].get("status") if captures else None) or body.get("status") or ""
        approve_url = ""
        for link in body.get("links") or []:
            if link.get("rel") in ("approve", "payer-action"):
                approve_url = link.get("href") or ""
                break
        return ProviderPayment(
            provider_payment_id=str(body.get("id") or ""),
            raw_status=str(raw_status),
            payout=PayoutData(ticket_url=approve_url),
            external_reference=str(unit.get("custom_id") or unit.get("reference_id") or ""),
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
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": ref,
                    "custom_id": ref,
                    "description": description[:127],
                    "amount": {"currency_code": self.config.currency, "value": f"{amount:.2f}"},
                }
            ],
        }
        body = self._send("POST", "/v2/checkout/orders", request_id=idempotency_key, json=payload)
        return self._to_payment(body)

    def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:
        return self._to_payment(self._send("GET", f"/v2/checkout/orders/{provider_payment_id}"))

    def capture_order(self, provider_payment_id: str) -> ProviderPayment:
        body = self._send(
            "POST",
            f"/v2/checkout/orders/{provider_payment_id}/capture",
            request_id=f"capture-{provider_payment_id}",
        )
        return self._to_payment(body)

    def normalize_status(self, raw_status: Any) -> PaymentStatus:
        return normalize_paypal_status(raw_status)
