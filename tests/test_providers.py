from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from core.errors import ProviderError, ProviderNotConfiguredError, ValidationError
from services.mercadopago import MercadoPagoProvider
from services.normalize import PaymentStatus
from services.payment_providers import (
    HybridProvider,
    ProviderConfig,
    get_provider,
    provider_config,
)
from services.paypal import PayPalProvider


def _response(status_code=200, body=None):
    resp = Mock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.json.return_value = body if body is not None else {}
    return resp


MP_PAYMENT = {
    "id": 1001,
    "status": "approved",
    "status_detail": "accredited",
    "external_reference": "tok-1",
    "point_of_interaction": {
        "transaction_data": {
            "qr_code": "00020126PIX",
            "qr_code_base64": "aVZCT1J3MEtHZ28=",
            "ticket_url": "https://mp.test/ticket/1",
        }
    },
}


class TestRegistry:
    def test_default_is_hybrid(self):
        assert isinstance(get_provider(None), HybridProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            get_provider("stripe")

    def test_mercadopago_needs_token(self, test_settings):
        test_settings.MERCADOPAGO_ACCESS_TOKEN = ""
        with pytest.raises(ProviderNotConfiguredError):
            get_provider("mercadopago")

    def test_paypal_needs_credentials(self):
        with pytest.raises(ProviderNotConfiguredError):
            get_provider("paypal")

    def test_paypal_base_url_by_mode(self, test_settings):
        assert provider_config("paypal").base_url == "https://api-m.sandbox.paypal.com"
        test_settings.PAYPAL_MODE = "live"
        assert provider_config("paypal").base_url == "https://api-m.paypal.com"

    def test_notification_url_carries_token(self, test_settings):
        test_settings.MERCADOPAGO_WEBHOOK_TOKEN = "hook"
        provider = get_provider("mercadopago")
        assert provider.notification_url("https://shop.test/api/payments/webhook/") == \
            "https://shop.test/api/payments/webhook/mercadopago?token=hook"
        assert provider.notification_url("") == ""

    def test_hybrid_has_no_lookup(self):
        with pytest.raises(ProviderError):
            get_provider("hybrid").fetch_payment("x")


class TestMercadoPagoProvider:
    def setup_method(self):
        self.provider = MercadoPagoProvider(ProviderConfig(access_token="TEST-token", base_url="https://mp.test", timeout=5))

    @patch("services.mercadopago.requests.post")
    def test_create_payment(self, mock_post):
        mock_post.return_value = _response(201, {**MP_PAYMENT, "status": "pending"})

        payment = self.provider.create_payment(
            amount=Decimal("115.50"),
            description="Camiseta",
            payer_email="buyer@example.com",
            idempotency_key="tok-1",
            notify_url="https://shop.test/hook/mercadopago",
            reference="tok-1",
        )

        args, kwargs = mock_post.call_args
        assert args[0] == "https://mp.test/v1/payments"
        assert kwargs["headers"]["Authorization"] == "Bearer TEST-token"
        assert kwargs["headers"]["X-Idempotency-Key"] == "tok-1"
        assert kwargs["json"]["transaction_amount"] == 115.5
        assert kwargs["json"]["payment_method_id"] == "pix"
        assert kwargs["json"]["external_reference"] == "tok-1"
        assert kwargs["json"]["notification_url"] == "https://shop.test/hook/mercadopago"
        assert kwargs["timeout"] == 5
        assert payment.provider_payment_id == "1001"
        assert payment.payout.qr_code == "00020126PIX"
        assert payment.as_payment_data()["ticketUrl"] == "https://mp.test/ticket/1"

    @patch("services.mercadopago.requests.get")
    def test_fetch_payment(self, mock_get):
        mock_get.return_value = _response(200, MP_PAYMENT)

        payment = self.provider.fetch_payment("1001")

        assert mock_get.call_args[0][0] == "https://mp.test/v1/payments/1001"
        assert "X-Idempotency-Key" not in mock_get.call_args[1]["headers"]
        assert payment.external_reference == "tok-1"
        assert payment.status_detail == "accredited"
        assert self.provider.normalize_status(payment.raw_status) is PaymentStatus.PAID

    @patch("services.mercadopago.requests.get")
    def test_reference_falls_back_to_metadata(self, mock_get):
        mock_get.return_value = _response(200, {"id": 5, "status": "pending", "metadata": {"order_token": "tok-9"}})
        assert self.provider.fetch_payment("5").external_reference == "tok-9"

    @patch("services.mercadopago.requests.get")
    def test_http_error_becomes_provider_error(self, mock_get):
        mock_get.return_value = _response(404, {"message": "Payment not found"})

        with pytest.raises(ProviderError) as exc:
            self.provider.fetch_payment("404")
        assert exc.value.message == "Payment not found"
        assert exc.value.provider == "mercadopago"

    @patch("services.mercadopago.requests.get")
    def test_network_error_becomes_provider_error(self, mock_get):
        mock_get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(ProviderError):
            self.provider.fetch_payment("1")


PAYPAL_ORDER = {
    "id": "PP-5",
    "status": "CREATED",
    "purchase_units": [{"reference_id": "tok-1", "custom_id": "tok-1"}],
    "links": [
        {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/PP-5"},
        {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=PP-5"},
    ],
}


class TestPayPalProvider:
    def setup_method(self):
        self.provider = PayPalProvider(ProviderConfig(
            base_url="https://api-m.sandbox.paypal.com", client_id="cid", client_secret="sec", currency="BRL"
        ))

    @patch("services.paypal.requests.post")
    def test_create_order(self, mock_post):
        mock_post.side_effect = [_response(200, {"access_token": "A21"}), _response(201, PAYPAL_ORDER)]

        payment = self.provider.create_payment(
            amount=Decimal("115.5"), description="Camiseta", payer_email="b@example.com", idempotency_key="tok-1"
        )

        token_call, order_call = mock_post.call_args_list
        assert token_call[0][0] == "https://api-m.sandbox.paypal.com/v1/oauth2/token"
        assert token_call[1]["auth"] == ("cid", "sec")
        assert token_call[1]["data"] == {"grant_type": "client_credentials"}
        assert order_call[0][0] == "https://api-m.sandbox.paypal.com/v2/checkout/orders"
        assert order_call[1]["headers"]["Authorization"] == "Bearer A21"
        assert order_call[1]["headers"]["PayPal-Request-Id"] == "tok-1"
        body = order_call[1]["json"]
        assert body["intent"] == "CAPTURE"
        assert body["purchase_units"][0]["amount"] == {"currency_code": "BRL", "value": "115.50"}
        assert payment.provider_payment_id == "PP-5"
        assert payment.external_reference == "tok-1"
        assert payment.payout.ticket_url == "https://www.sandbox.paypal.com/checkoutnow?token=PP-5"
        assert self.provider.normalize_status(payment.raw_status) is PaymentStatus.PENDING

    @patch("services.paypal.requests.post")
    def test_capture_uses_capture_status(self, mock_post):
        captured = {
            "id": "PP-5",
            "status": "COMPLETED",
            "purchase_units": [{"reference_id": "tok-1", "payments": {"captures": [{"status": "DECLINED"}]}}],
        }
        mock_post.side_effect = [_response(200, {"access_token": "A21"}), _response(201, captured)]

        payment = self.provider.capture_order("PP-5")

        assert mock_post.call_args_list[1][0][0].endswith("/v2/checkout/orders/PP-5/capture")
        assert mock_post.call_args_list[1][1]["headers"]["PayPal-Request-Id"] == "capture-PP-5"
        assert self.provider.normalize_status(payment.raw_status) is PaymentStatus.FAILED

    @patch("services.paypal.requests.get")
    @patch("services.paypal.requests.post")
    def test_fetch_order(self, mock_post, mock_get):
        mock_post.return_value = _response(200, {"access_token": "A21"})
        mock_get.return_value = _response(200, {**PAYPAL_ORDER, "status": "COMPLETED"})

        payment = self.provider.fetch_payment("PP-5")

        assert mock_get.call_args[0][0] == "https://api-m.sandbox.paypal.com/v2/checkout/orders/PP-5"
        assert self.provider.normalize_status(payment.raw_status) is PaymentStatus.PAID

    @patch("services.paypal.requests.post")
    def test_token_response_not_json(self, mock_post):
        resp = _response(200)
        resp.json.side_effect = requests.JSONDecodeError("Expecting value", "<html>", 0)
        mock_post.return_value = resp

        with pytest.raises(ProviderError) as exc:
            self.provider.fetch_payment("PP-5")
        assert exc.value.message == "PayPal token error"

    @patch("services.paypal.requests.post")
    def test_token_failure(self, mock_post):
        mock_post.return_value = _response(401, {"error": "invalid_client"})

        with pytest.raises(ProviderError) as exc:
            self.provider.fetch_payment("PP-5")
        assert exc.value.message == "PayPal token error"
