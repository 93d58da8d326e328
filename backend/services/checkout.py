# backend/services/checkout.py
"""
Checkout orchestration: cart snapshot -> pending order -> Flutterwave hosted
payment -> reconciliation by synchronous verify or asynchronous webhook.

Completion effects (status change, stock decrement, cart clear) run at most
once per order. The pending->completed transition is a conditional UPDATE and
only the caller whose UPDATE matched a row applies the effects; all of them
share one database transaction.
"""
import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from models.cart import Cart, CartItem
from models.order import Order, OrderItem, PaymentStatus
from models.product import Product
from models.users import User
from schemas.order import ShippingAddress, WebhookPayload
from utils.errors import ExternalFailure, NotFound, Unauthorized, ValidationFailure
from utils.flutterwave_client import FlutterwaveClient, GatewayError

logger = logging.getLogger(__name__)

CHARGE_COMPLETED = "charge.completed"
GATEWAY_SUCCESS = "success"
TRANSACTION_SUCCESSFUL = "successful"

# Webhook outcomes
OUTCOME_COMPLETED = "completed"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_MISMATCH = "mismatch"
OUTCOME_IGNORED = "ignored"


def generate_payment_reference() -> str:
    return f"PAY_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _same_amount(a: float, b: float) -> bool:
    return round(float(a), 2) == round(float(b), 2)


class CheckoutService:
    def __init__(self, db: Session, gateway: FlutterwaveClient, settings):
        self.db = db
        self.gateway = gateway
        self.settings = settings

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------
    async def initiate(self, user: User, shipping_address: ShippingAddress, phone: str) -> Tuple[Order, str]:
        """Create a pending order from the user's cart and open a hosted payment.

        Returns the order and the gateway payment link. Neither stock nor the
        cart is touched here.
        """
        cart = self.db.query(Cart).filter(Cart.user_id == user.id).first()
        if not cart or not cart.items:
            raise ValidationFailure("Cart is empty")

        # Re-validate stock at checkout time, failing on the first short line
        lines = []
        for item in cart.items:
            product = self.db.query(Product).filter(Product.id == item.product_id).first()
            if product is None:
                raise ValidationFailure(f"Product {item.product_id} is no longer available")
            if product.quantity < item.quantity:
                raise ValidationFailure(f"Insufficient stock for {product.name}")
            lines.append((product, item.quantity))

        total = round(sum(product.price * qty for product, qty in lines), 2)

        order = Order(
            user_id=user.id,
            total_amount=total,
            payment_status=PaymentStatus.PENDING,
            payment_reference=generate_payment_reference(),
            customer_email=user.email,
            customer_phone=phone,
            shipping_street=shipping_address.street,
            shipping_city=shipping_address.city,
            shipping_state=shipping_address.state,
            shipping_country=shipping_address.country,
            shipping_zip_code=shipping_address.zip_code,
        )
        order.items = [
            OrderItem(product_id=product.id, product_name=product.name, quantity=qty, unit_price=product.price)
            for product, qty in lines
        ]
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s created for user %s, reference=%s total=%s",
                    order.id, user.id, order.payment_reference, order.total_amount)

        # Any failure between here and a usable payment link discards the order
        try:
            response = await self.gateway.create_payment(self._payment_payload(user, order, phone))
            data = response.get("data")
            link = data.get("link") if isinstance(data, dict) else None
            if response.get("status") != GATEWAY_SUCCESS or not link:
                message = response.get("message") or "no payment link returned"
                raise GatewayError(str(message))
        except GatewayError as e:
            self._discard(order, e.message)
            raise ExternalFailure(f"Payment initialization failed: {e.message}")
        except Exception:
            self._discard(order, "unexpected error while opening the payment")
            raise

        return order, link

    def _payment_payload(self, user: User, order: Order, phone: str) -> dict:
        return {
            "tx_ref": order.payment_reference,
            "amount": order.total_amount,
            "currency": self.settings.FLW_CURRENCY,
            "redirect_url": self.settings.payment_redirect_url,
            "payment_options": "card,banktransfer,ussd",
            "customer": {
                "email": user.email,
                "phonenumber": phone,
                "name": user.name,
            },
            "customizations": {
                "title": "E-commerce Payment",
                "description": "Payment for order items",
            },
        }

    def _discard(self, order: Order, reason: str):
        # Compensating action: the order never outlives a failed gateway round trip
        logger.warning("Gateway rejected payment for order %s (%s): %s", order.id, order.payment_reference, reason)
        self.db.delete(order)
        self.db.commit()

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------
    async def verify(self, user: User, reference: str) -> Order:
        order = (
            self.db.query(Order)
            .filter(Order.payment_reference == reference, Order.user_id == user.id)
            .first()
        )
        if not order:
            raise NotFound("Order not found")

        if order.payment_status == PaymentStatus.COMPLETED:
            return order
        if order.payment_status != PaymentStatus.PENDING:
            raise ValidationFailure(f"Payment already {order.payment_status.value}")

        try:
            response = await self.gateway.verify_by_reference(reference)
        except GatewayError as e:
            raise ExternalFailure(f"Payment verification unavailable: {e.message}")

        data = response.get("data")
        if not isinstance(data, dict):
            data = {}
        if response.get("status") == GATEWAY_SUCCESS and data.get("status") == TRANSACTION_SUCCESSFUL:
            self.complete_order(order, data.get("flw_ref"))
            self.db.refresh(order)
            return order

        logger.warning("Verification of %s failed: gateway status=%s transaction status=%s",
                       reference, response.get("status"), data.get("status"))
        self.mark_failed(order)
        raise ValidationFailure("Payment verification failed")

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------
    def check_signature(self, signature: Optional[str]) -> bool:
        expected = self.settings.FLW_SECRET_HASH
        if not signature or not expected:
            return False
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))

    def handle_webhook(self, signature: Optional[str], body: bytes) -> Tuple[str, Optional[Order]]:
        """Reconcile an order from a gateway notification.

        Raises Unauthorized on a bad signature (before any lookup) and NotFound
        for an unknown reference. Every other case is acknowledged; the returned
        outcome says whether anything changed.
        """
        if not self.check_signature(signature):
            logger.warning("Webhook rejected: invalid or missing verif-hash header")
            raise Unauthorized("Invalid webhook signature")

        try:
            payload = WebhookPayload.model_validate_json(body)
        except ValidationError:
            raise ValidationFailure("Invalid webhook payload")

        logger.info("Webhook received: event=%s tx_ref=%s status=%s",
                    payload.event, payload.data.tx_ref, payload.data.status)

        if payload.event != CHARGE_COMPLETED:
            return OUTCOME_IGNORED, None

        order = None
        if payload.data.tx_ref:
            order = self.db.query(Order).filter(Order.payment_reference == payload.data.tx_ref).first()
        if not order:
            logger.info("Webhook for unknown tx_ref %s", payload.data.tx_ref)
            raise NotFound("Order not found")

        if order.payment_status == PaymentStatus.COMPLETED:
            return OUTCOME_ALREADY_PROCESSED, order

        if (
            payload.data.status != TRANSACTION_SUCCESSFUL
            or payload.data.amount is None
            or not _same_amount(payload.data.amount, order.total_amount)
        ):
            logger.warning("Webhook for %s not applied: status=%s amount=%s expected=%s",
                           order.payment_reference, payload.data.status, payload.data.amount, order.total_amount)
            return OUTCOME_MISMATCH, order

        if self.complete_order(order, payload.data.flw_ref):
            return OUTCOME_COMPLETED, order
        return OUTCOME_ALREADY_PROCESSED, order

    # ------------------------------------------------------------------
    # Reconciliation effects
    # ------------------------------------------------------------------
    def complete_order(self, order: Order, flutterwave_ref: Optional[str]) -> bool:
        """Move a pending order to completed and apply stock and cart effects.

        Returns False without side effects when the order was no longer pending.
        """
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING)
            .values(
                payment_status=PaymentStatus.COMPLETED,
                flutterwave_ref=flutterwave_ref,
                paid_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.info("Order %s already reconciled, skipping completion effects", order.id)
            return False

        for item in order.items:
            self._decrement_stock(item)
        self._clear_cart(order.user_id)

        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s completed (reference=%s, flw_ref=%s)",
                    order.id, order.payment_reference, flutterwave_ref)
        return True

    def mark_failed(self, order: Order) -> bool:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING)
            .values(payment_status=PaymentStatus.FAILED)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(order)
        return result.rowcount == 1

    def _decrement_stock(self, item: OrderItem):
        if item.product_id is None:
            logger.warning("Order item %s refers to a deleted product, stock not decremented", item.id)
            return

        result = self.db.execute(
            update(Product)
            .where(Product.id == item.product_id, Product.quantity >= item.quantity)
            .values(quantity=Product.quantity - item.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        # Sold more than is on hand since checkout started; quantity stays non-negative
        logger.error("Stock shortfall for product %s on order %s (ordered %s)",
                     item.product_id, item.order_id, item.quantity)
        self.db.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(quantity=0)
            .execution_options(synchronize_session=False)
        )

    def _clear_cart(self, user_id: int):
        cart = self.db.query(Cart).filter(Cart.user_id == user_id).first()
        if cart:
            self.db.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session=False)
