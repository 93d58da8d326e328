# backend/routes/payments.py
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session, joinedload

from config import settings
from database import get_db
from models.order import Order, OrderItem
from models.users import User
from schemas.order import (
    OrderItemOut, OrderList, OrderResponse, PaymentInitiatePayload,
    PaymentInitiationResponse, PaymentVerificationResponse, ShippingAddress,
)
from services.checkout import CheckoutService
from utils.audit import client_ip, write_log
from utils.errors import NotFound
from utils.flutterwave_client import FlutterwaveClient
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_gateway() -> FlutterwaveClient:
    return FlutterwaveClient.from_settings(settings)


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_payment_gateway),
) -> CheckoutService:
    return CheckoutService(db, gateway, settings)


# Map Order model to OrderResponse schema
def _order_to_out(order: Order) -> OrderResponse:
    items: List[OrderItemOut] = []
    for it in order.items:
        items.append(OrderItemOut(
            product_id=it.product_id,
            product_name=it.product_name,
            quantity=it.quantity,
            unit_price=it.unit_price,
            line_total=round(it.quantity * it.unit_price, 2)
        ))
    return OrderResponse(
        id=order.id,
        payment_status=order.payment_status.value,
        payment_reference=order.payment_reference,
        flutterwave_ref=order.flutterwave_ref,
        total_amount=round(order.total_amount, 2),
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        shipping_address=ShippingAddress(
            street=order.shipping_street or "-",
            city=order.shipping_city or "-",
            state=order.shipping_state,
            country=order.shipping_country or "-",
            zip_code=order.shipping_zip_code,
        ),
        created_at=order.created_at,
        paid_at=order.paid_at,
        items=items
    )


# Create a pending order from the cart and return the hosted payment link
@router.post("/initiate", response_model=PaymentInitiationResponse)
async def initiate_payment(
    payload: PaymentInitiatePayload,
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
    current_user: User = Depends(get_current_user)
):
    try:
        order, link = await service.initiate(current_user, payload.shipping_address, payload.phone)
    except HTTPException as e:
        write_log(
            service.db, user_id=current_user.id, action="PAYMENT_INITIATE", resource="payments",
            status="FAIL", ip=client_ip(request), meta={"reason": e.detail},
        )
        raise

    write_log(
        service.db, user_id=current_user.id, action="PAYMENT_INITIATE", resource="payments",
        status="SUCCESS", ip=client_ip(request),
        meta={"order_id": order.id, "reference": order.payment_reference, "total": order.total_amount},
    )
    return PaymentInitiationResponse(payment_url=link, reference=order.payment_reference, order_id=order.id)


@router.get("/verify/{reference}", response_model=PaymentVerificationResponse)
async def verify_payment(
    reference: str,
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
    current_user: User = Depends(get_current_user)
):
    try:
        order = await service.verify(current_user, reference)
    except HTTPException as e:
        write_log(
            service.db, user_id=current_user.id, action="PAYMENT_VERIFY", resource="payments",
            status="FAIL", ip=client_ip(request), meta={"reference": reference, "reason": e.detail},
        )
        raise

    write_log(
        service.db, user_id=current_user.id, action="PAYMENT_VERIFY", resource="payments",
        status="SUCCESS", ip=client_ip(request),
        meta={"order_id": order.id, "reference": reference},
    )
    return PaymentVerificationResponse(order=_order_to_out(order))


# Gateway notification; authenticated by the shared secret, not a bearer token
@router.post("/webhook")
async def payment_webhook(
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
    verif_hash: Optional[str] = Header(None, alias="verif-hash"),
):
    body = await request.body()
    try:
        outcome, order = service.handle_webhook(verif_hash, body)
    except HTTPException as e:
        write_log(
            service.db, user_id=None, action="PAYMENT_WEBHOOK", resource="payments",
            status="FAIL", ip=client_ip(request), meta={"reason": e.detail},
        )
        raise

    write_log(
        service.db, user_id=order.user_id if order else None, action="PAYMENT_WEBHOOK", resource="payments",
        status="SUCCESS", ip=client_ip(request),
        meta={"order_id": order.id if order else None, "outcome": outcome},
    )
    return {"status": "ok"}


# Order history for the current user, newest first
@router.get("/orders", response_model=OrderList)
def list_my_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    orders = db.query(Order).options(
        joinedload(Order.items)
    ).filter(Order.user_id == current_user.id).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return OrderList(orders=[_order_to_out(o) for o in orders])


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    o = db.query(Order).options(
        joinedload(Order.items).joinedload(OrderItem.product)
    ).filter(Order.id == order_id, Order.user_id == current_user.id).first()

    if not o:
        raise NotFound("Order not found")
    return _order_to_out(o)
