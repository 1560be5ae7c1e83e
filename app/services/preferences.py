"""User notification preferences and the send-permission gate"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import NotificationPreference, PREFERENCE_TYPES

logger = logging.getLogger(__name__)

# Dispatcher notification type -> preference type column suffix
NOTIFICATION_TYPE_PREFERENCES = {
    "order_confirmation": "order_confirmations",
    "order_status": "order_status",
    "promotion": "promotions",
    "reward": "rewards",
    "reminder": "reminders",
    "newsletter": "newsletter",
}

CHANNELS = ("email", "push", "sms")


def preference_type_for(notification_type: str) -> Optional[str]:
    """Map a notification type to its preference type, None if it has none"""
    if notification_type in PREFERENCE_TYPES:
        return notification_type
    return NOTIFICATION_TYPE_PREFERENCES.get(notification_type)


def default_preferences(user_id: str) -> Dict[str, Any]:
    """Preference view for a user who never saved any, everything allowed"""
    defaults: Dict[str, Any] = {"user_id": user_id}
    for channel in CHANNELS:
        defaults[f"{channel}_enabled"] = True
        for preference_type in PREFERENCE_TYPES:
            defaults[f"{channel}_{preference_type}"] = True
    return defaults


class PreferenceGate:
    """Answers whether a user accepts a notification type on a channel"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def can_send(self, user_id: str, channel: str, preference_type: Optional[str]) -> bool:
        """
        Check the user's stored preferences

        A missing record, or a store that cannot be read, allows the send.
        A disabled channel blocks every type on it.
        """
        try:
            preference = await self._get(user_id)
        except SQLAlchemyError as e:
            logger.warning(f"Preference lookup failed for user {user_id}, allowing {channel}: {str(e)}")
            return True

        if preference is None:
            return True

        if not preference.channel_enabled(channel):
            return False

        if preference_type is None:
            return True

        flag = preference.type_flag(channel, preference_type)
        return True if flag is None else bool(flag)

    async def can_send_notification(self, user_id: str, channel: str, notification_type: str) -> bool:
        return await self.can_send(user_id, channel, preference_type_for(notification_type))

    async def _get(self, user_id: str) -> Optional[NotificationPreference]:
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        return result.scalar_one_or_none()


class PreferenceService:
    """Read and upsert a user's notification preferences"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_preferences(self, user_id: str) -> Dict[str, Any]:
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        preference = result.scalar_one_or_none()

        if preference is None:
            return default_preferences(user_id)

        data = default_preferences(user_id)
        for key, value in preference.to_dict(exclude=["id", "created_at", "updated_at"]).items():
            if value is not None:
                data[key] = value
        return data

    async def update_preferences(self, user_id: str, changes: Dict[str, Any]) -> NotificationPreference:
        """Upsert preferences, only the keys in changes are written"""
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        preference = result.scalar_one_or_none()

        if preference is None:
            preference = NotificationPreference(user_id=user_id)
            self.db.add(preference)

        for key, value in changes.items():
            if value is None or key in ("id", "user_id"):
                continue
            if not hasattr(NotificationPreference, key):
                logger.warning(f"Ignoring unknown preference field {key}")
                continue
            setattr(preference, key, value)

        await self.db.commit()
        await self.db.refresh(preference)
        return preference
