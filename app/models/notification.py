"""
Notification models: preferences, push subscriptions, email templates and delivery logs
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON, Index
from sqlalchemy.sql import func
import enum

from .base import Base, TimestampedModel, UUIDModel, SerializableMixin


class NotificationChannel(str, enum.Enum):
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


# Per-type preference flags, each stored as {channel}_{type}
PREFERENCE_TYPES = (
    "order_confirmations",
    "order_status",
    "promotions",
    "rewards",
    "newsletter",
    "reminders",
)


def _type_flag():
    # NULL means the user never set it, which reads as enabled
    return Column(Boolean, nullable=True)


class NotificationPreference(Base, TimestampedModel, UUIDModel, SerializableMixin):
    """Per-user channel and notification type preferences"""

    __tablename__ = "notification_preferences"

    user_id = Column(String(64), unique=True, nullable=False, index=True)

    # Channel master toggles
    email_enabled = Column(Boolean, nullable=False, default=True)
    push_enabled = Column(Boolean, nullable=False, default=True)
    sms_enabled = Column(Boolean, nullable=False, default=True)

    email_order_confirmations = _type_flag()
    email_order_status = _type_flag()
    email_promotions = _type_flag()
    email_rewards = _type_flag()
    email_newsletter = _type_flag()
    email_reminders = _type_flag()

    push_order_confirmations = _type_flag()
    push_order_status = _type_flag()
    push_promotions = _type_flag()
    push_rewards = _type_flag()
    push_newsletter = _type_flag()
    push_reminders = _type_flag()

    sms_order_confirmations = _type_flag()
    sms_order_status = _type_flag()
    sms_promotions = _type_flag()
    sms_rewards = _type_flag()
    sms_newsletter = _type_flag()
    sms_reminders = _type_flag()

    def channel_enabled(self, channel: str) -> bool:
        return bool(getattr(self, f"{channel}_enabled", True))

    def type_flag(self, channel: str, preference_type: str):
        return getattr(self, f"{channel}_{preference_type}", None)


class PushSubscription(Base, TimestampedModel, UUIDModel, SerializableMixin):
    """Web push subscription for one browser or device"""

    __tablename__ = "push_subscriptions"

    user_id = Column(String(64), nullable=False, index=True)
    endpoint = Column(Text, unique=True, nullable=False)
    p256dh_key = Column(Text, nullable=False)
    auth_key = Column(Text, nullable=False)
    user_agent = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_push_subscriptions_user_active", "user_id", "is_active"),
    )

    def to_subscription_info(self) -> dict:
        """Convert subscription to the format pywebpush expects"""
        return {
            "endpoint": self.endpoint,
            "keys": {
                "p256dh": self.p256dh_key,
                "auth": self.auth_key,
            },
        }


class EmailTemplate(Base, TimestampedModel, UUIDModel, SerializableMixin):
    """Transactional email template with {{variable}} placeholders"""

    __tablename__ = "email_templates"

    template_key = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    subject = Column(String(500), nullable=False)
    html_content = Column(Text, nullable=False)
    text_content = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class NotificationLog(Base, UUIDModel, SerializableMixin):
    """Append-only record of every delivery attempt"""

    __tablename__ = "notification_logs"

    user_id = Column(String(64), nullable=True, index=True)
    channel = Column(String(20), nullable=False)  # email, push, sms
    template_key = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False)  # sent, failed
    error_message = Column(Text, nullable=True)
    details = Column(JSON, default=dict)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        Index("idx_notification_logs_channel_status", "channel", "status"),
    )
