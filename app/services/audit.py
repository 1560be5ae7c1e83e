"""Audit logging for notification delivery attempts"""

from typing import Any, Dict, Optional
from datetime import datetime, timezone
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import NotificationLog, DeliveryStatus

logger = logging.getLogger(__name__)


class NotificationAuditLogger:
    """Append-only log with one row per delivery attempt"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_attempt(
        self,
        channel: str,
        status: DeliveryStatus,
        user_id: Optional[str] = None,
        template_key: Optional[str] = None,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[NotificationLog]:
        """Record a delivery attempt. Audit failures are logged, never raised."""
        now = datetime.now(timezone.utc)
        log = NotificationLog(
            user_id=user_id,
            channel=channel,
            template_key=template_key,
            status=status.value,
            error_message=error_message,
            details=details or {},
            sent_at=now if status == DeliveryStatus.SENT else None,
            created_at=now,
        )

        # Savepoint, a failed insert must not undo the caller's pending work
        try:
            async with self.db.begin_nested():
                self.db.add(log)
                await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write {channel} notification log: {str(e)}")
            return None

        return log

    async def log_sent(self, channel: str, **kwargs) -> Optional[NotificationLog]:
        return await self.log_attempt(channel, DeliveryStatus.SENT, **kwargs)

    async def log_failed(self, channel: str, error_message: str, **kwargs) -> Optional[NotificationLog]:
        return await self.log_attempt(
            channel, DeliveryStatus.FAILED, error_message=error_message, **kwargs
        )
