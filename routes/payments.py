from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from core.db import get_db
from schemas.payment import (
    Amounts,
    CaptureRequest,
    CaptureResponse,
    ConfirmedOrderOut,
    CreateOrderRequest,
    CreateOrderResponse,
    HybridWebhookRequest,
    HybridWebhookResponse,
    OrderStatusResponse,
    PixOut,
    ProviderWebhookResponse,
)
from services import reconciliation
from services.payment_providers import PayoutData

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _pix_out(payout: PayoutData) -> PixOut:
    image = f"data:image/png;base64,{payout.qr_code_base64}" if payout.qr_code_base64 else ""
    return PixOut(key=payout.qr_code, qr_code_image=image, ticket_url=payout.ticket_url)


def _payout_from_payment_data(data: Dict[str, Any]) -> PayoutData:
    return PayoutData(
        qr_code=data.get("qrCode") or "",
        qr_code_base64=data.get("qrCodeBase64") or "",
        ticket_url=data.get("ticketUrl") or "",
    )


@router.post("/create-order", response_model=CreateOrderResponse)
def create_order(data: CreateOrderRequest, db: Session = Depends(get_db)):
    created = reconciliation.create_order(
        db,
        checkout_item=data.checkout_item,
        delivery_data=data.delivery_data,
        shipping_value=data.shipping_value,
        provider_name=data.provider,
        payer_email=data.payer_email,
    )
    return CreateOrderResponse(
        order_token=created.order_token,
        status=created.status.value,
        pix=_pix_out(created.payout),
        amounts=Amounts(
            subtotal=float(created.amount_subtotal),
            shipping=float(created.shipping_amount),
            total=float(created.amount_total),
        ),
    )


@router.get("/status", response_model=OrderStatusResponse)
def order_status(order_token: Optional[str] = Query(default=None, alias="orderToken"), db: Session = Depends(get_db)):
    order = reconciliation.get_status(db, order_token)
    return OrderStatusResponse(
        order_token=order.order_token,
        status=order.status.value,
        provider=order.provider,
        provider_payment_id=order.provider_payment_id,
        amounts=Amounts(**reconciliation.amounts_of(order)),
        pix=_pix_out(_payout_from_payment_data(order.payment_data)),
        updated_at=order.updated_at.isoformat() if order.updated_at else None,
    )


@router.get("/confirmed", response_model=List[ConfirmedOrderOut])
def confirmed_orders(db: Session = Depends(get_db)):
    return [ConfirmedOrderOut(**row) for row in reconciliation.list_confirmed_orders(db)]


@router.post("/capture", response_model=CaptureResponse)
def capture_order(data: CaptureRequest, db: Session = Depends(get_db)):
    result = reconciliation.capture_order(db, data.order_token)
    return CaptureResponse(
        order_token=result.order_token,
        provider=result.provider,
        provider_payment_id=result.provider_payment_id,
        status=result.status.value,
        stock_decremented=result.stock_decremented,
    )


@router.post("/webhook/hybrid", response_model=HybridWebhookResponse)
def hybrid_webhook(
    data: HybridWebhookRequest,
    x_webhook_secret: Optional[str] = Header(default=None, alias="x-webhook-secret"),
    db: Session = Depends(get_db),
):
    result = reconciliation.handle_hybrid_webhook(
        db,
        secret=x_webhook_secret,
        order_token=data.order_token,
        status=data.status,
        provider_payment_id=data.provider_payment_id,
    )
    return HybridWebhookResponse(
        order_token=result.order_token,
        previous_status=result.previous_status.value,
        status=result.status.value,
        stock_decremented=result.stock_decremented,
    )


def _extract_payment_id(payload: Optional[Dict[str, Any]], request: Request) -> Optional[str]:
    payload = payload or {}
    query = request.query_params
    topic = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
    if topic and topic != "payment":
        return None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    payment_id = data.get("id") or payload.get("id") or query.get("data.id") or query.get("id")
    return str(payment_id) if payment_id else None


@router.api_route("/webhook/mercadopago", methods=["GET", "POST"], response_model=ProviderWebhookResponse)
def mercadopago_webhook(
    request: Request,
    token: Optional[str] = Query(default=None),
    payload: Optional[Dict[str, Any]] = Body(default=None),
    db: Session = Depends(get_db),
):
    payment_id = _extract_payment_id(payload, request)
    result = reconciliation.handle_provider_webhook(db, "mercadopago", token=token, payment_id=payment_id)
    return ProviderWebhookResponse(
        provider="mercadopago",
        order_token=result.order_token,
        payment_id=result.provider_payment_id or payment_id,
        status=result.status.value,
        stock_decremented=result.stock_decremented,
    )
