from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Optional


# --- Blobs persisted on payment_orders -------------------------------------

class CartLine(BaseModel):
    id: Optional[int] = None
    product_id: Optional[int] = Field(default=None, alias="productId")
    qty: Optional[int] = None
    title: Optional[str] = None
    price: Optional[Any] = None

    class Config:
        populate_by_name = True
        extra = "allow"


class CheckoutData(BaseModel):
    """Cart snapshot taken at order creation; either a single item or ``items``."""

    total_value: Optional[Any] = Field(default=None, alias="totalValue")
    items: Optional[List[CartLine]] = None
    id: Optional[int] = None
    product_id: Optional[int] = Field(default=None, alias="productId")
    qty: Optional[int] = None
    title: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"


class DeliveryData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    address: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(default=None, alias="zipCode")

    class Config:
        populate_by_name = True
        extra = "allow"
        coerce_numbers_to_str = True


class PaymentData(BaseModel):
    qr_code: Optional[str] = Field(default=None, alias="qrCode")
    qr_code_base64: Optional[str] = Field(default=None, alias="qrCodeBase64")
    ticket_url: Optional[str] = Field(default=None, alias="ticketUrl")
    provider_status: Optional[str] = Field(default=None, alias="providerStatus")
    status_detail: Optional[str] = Field(default=None, alias="statusDetail")

    class Config:
        populate_by_name = True
        extra = "allow"


# --- Requests ---------------------------------------------------------------

class CreateOrderRequest(BaseModel):
    checkout_item: Optional[CheckoutData] = Field(default=None, alias="checkoutItem")
    delivery_data: Optional[DeliveryData] = Field(default=None, alias="deliveryData")
    shipping_value: Optional[Any] = Field(default=0, alias="shippingValue")
    provider: Optional[str] = None
    payer_email: Optional[EmailStr] = Field(default=None, alias="payerEmail")

    class Config:
        populate_by_name = True


class CaptureRequest(BaseModel):
    order_token: Optional[str] = Field(default=None, alias="orderToken")

    class Config:
        populate_by_name = True


class HybridWebhookRequest(BaseModel):
    order_token: Optional[str] = Field(default=None, alias="orderToken")
    status: Optional[str] = None
    provider_payment_id: Optional[str] = Field(default=None, alias="providerPaymentId")

    class Config:
        populate_by_name = True
        extra = "allow"


# --- Responses --------------------------------------------------------------

class Amounts(BaseModel):
    subtotal: float
    shipping: float
    total: float


class PixOut(BaseModel):
    key: str = ""
    qr_code_image: str = Field(default="", alias="qrCodeImage")
    ticket_url: str = Field(default="", alias="ticketUrl")

    class Config:
        populate_by_name = True


class CreateOrderResponse(BaseModel):
    ok: bool = True
    order_token: str = Field(alias="orderToken")
    status: str
    pix: PixOut
    amounts: Amounts

    class Config:
        populate_by_name = True


class OrderStatusResponse(BaseModel):
    ok: bool = True
    order_token: str = Field(alias="orderToken")
    status: str
    provider: str
    provider_payment_id: str = Field(alias="providerPaymentId")
    amounts: Amounts
    pix: PixOut
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True


class HybridWebhookResponse(BaseModel):
    ok: bool = True
    order_token: str = Field(alias="orderToken")
    previous_status: str = Field(alias="previousStatus")
    status: str
    stock_decremented: bool = Field(alias="stockDecremented")

    class Config:
        populate_by_name = True


class ProviderWebhookResponse(BaseModel):
    ok: bool = True
    provider: str
    order_token: str = Field(alias="orderToken")
    payment_id: str = Field(alias="paymentId")
    status: str
    stock_decremented: bool = Field(alias="stockDecremented")

    class Config:
        populate_by_name = True


class CaptureResponse(BaseModel):
    ok: bool = True
    order_token: str = Field(alias="orderToken")
    provider: str
    provider_payment_id: str = Field(alias="providerPaymentId")
    status: str
    stock_decremented: bool = Field(alias="stockDecremented")

    class Config:
        populate_by_name = True


class ConfirmedOrderOut(BaseModel):
    order_token: str = Field(alias="orderToken")
    provider: str
    provider_payment_id: str = Field(alias="providerPaymentId")
    status: str
    buyer: Dict[str, Any]
    delivery: Dict[str, Any]
    items: List[Dict[str, Any]]
    amounts: Amounts
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True
