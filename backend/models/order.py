# backend/models/order.py
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, CheckConstraint, Enum, func
from sqlalchemy.orm import relationship
from database import Base
import enum

# Payment lifecycle: pending -> completed | failed, never backwards
class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    total_amount = Column(Float, nullable=False)
    payment_status = Column(
        Enum(PaymentStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=PaymentStatus.PENDING, nullable=False, index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Payment integration details
    payment_reference = Column(String, unique=True, index=True, nullable=False)
    flutterwave_ref = Column(String, nullable=True)

    # Customer contact snapshot
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    # Shipping address details
    shipping_street = Column(String, nullable=True)
    shipping_city = Column(String, nullable=True)
    shipping_state = Column(String, nullable=True)
    shipping_country = Column(String, nullable=True)
    shipping_zip_code = Column(String, nullable=True)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, CheckConstraint("quantity >= 1"), nullable=False)
    # Unit price captured when the order was created
    unit_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
