"""Order model, as far as notifications need it"""

from sqlalchemy import Column, String, Numeric, Index, Text
import enum

from .base import Base, TimestampedModel, UUIDModel


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base, TimestampedModel, UUIDModel):
    """Customer order"""

    __tablename__ = "orders"

    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=OrderStatus.PENDING.value)

    total_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(50), nullable=True)

    # Delivery, empty address means pickup
    delivery_address = Column(Text, nullable=True)
    delivery_driver_name = Column(String(200), nullable=True)
    estimated_arrival = Column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Order {self.order_number}>"
