"""
Error taxonomy for the checkout/payment subsystem.

Services raise these; ``main.py`` renders them as JSON with ``status_code``.
"""
from typing import Optional


class PaymentError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    status_code = 400


class NotFoundError(PaymentError):
    status_code = 404


class ConflictError(PaymentError):
    status_code = 409


class InsufficientStockError(ConflictError):
    def __init__(self, product_id: int, message: Optional[str] = None):
        super().__init__(message or f"Insufficient stock for product {product_id}")
        self.product_id = product_id


class ProviderError(PaymentError):
    status_code = 500

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class ProviderNotConfiguredError(ProviderError):
    status_code = 400

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(provider, message or f"Payment provider '{provider}' is not configured")


class AuthError(PaymentError):
    status_code = 401
