from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


# Shipping address captured with the order
class ShippingAddress(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: Optional[str] = None
    country: str = Field(min_length=1)
    zip_code: Optional[str] = None


# Input schema for starting a checkout
class PaymentInitiatePayload(BaseModel):
    shipping_address: ShippingAddress
    phone: str = Field(min_length=5, max_length=20)


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    quantity: int
    unit_price: float
    line_total: float


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    payment_status: str
    payment_reference: str
    flutterwave_ref: Optional[str] = None
    total_amount: float
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: ShippingAddress
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    items: List[OrderItemOut]


class OrderList(BaseModel):
    orders: List[OrderResponse]


# Response schema for payment initiation result
class PaymentInitiationResponse(BaseModel):
    message: str = "Payment initialized successfully"
    payment_url: str
    reference: str
    order_id: int


class PaymentVerificationResponse(BaseModel):
    message: str = "Payment verified successfully"
    order: OrderResponse


# Inbound gateway notification envelope
class WebhookData(BaseModel):
    tx_ref: Optional[str] = None
    amount: Optional[float] = None
    status: Optional[str] = None
    flw_ref: Optional[str] = None


class WebhookPayload(BaseModel):
    event: Optional[str] = None
    data: WebhookData = Field(default_factory=WebhookData)
