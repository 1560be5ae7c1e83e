"""Models package initialization"""

from .base import Base
from .user import Profile
from .order import Order, OrderStatus
from .notification import (
    NotificationChannel,
    DeliveryStatus,
    NotificationPreference,
    PushSubscription,
    EmailTemplate,
    NotificationLog,
    PREFERENCE_TYPES,
)

# Export all models
__all__ = [
    "Base",
    "Profile",
    "Order",
    "OrderStatus",
    "NotificationChannel",
    "DeliveryStatus",
    "NotificationPreference",
    "PushSubscription",
    "EmailTemplate",
    "NotificationLog",
    "PREFERENCE_TYPES",
]
