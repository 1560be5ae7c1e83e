"""
Broadcast and batch sends

Resolves audiences (explicit ids or named segments) and walks them one
recipient at a time through the dispatcher. A failing recipient is
recorded and the loop carries on.
"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import NotificationPreference
from app.models.order import Order
from app.models.user import Profile
from app.schemas.notification import (
    BatchEmailRecipient,
    BatchResult,
    BroadcastPushResult,
    NewsletterResult,
    NotificationOptions,
    PushPayload,
    UserDispatchResult,
)
from app.services.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

SEGMENTS = ("active", "vip", "new", "all")


class BroadcastService:
    """Many-recipient notifications on top of NotificationDispatcher"""

    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = dispatcher.settings

    async def resolve_segment(self, segment: str) -> List[str]:
        """User ids in a named audience segment, one query per segment"""
        now = datetime.now(timezone.utc)

        if segment == "active":
            since = now - timedelta(days=self.settings.SEGMENT_ACTIVE_DAYS)
            stmt = select(Order.user_id).where(Order.created_at >= since).distinct()
        elif segment == "vip":
            stmt = select(Profile.id).where(Profile.reward_points >= self.settings.SEGMENT_VIP_POINTS)
        elif segment == "new":
            since = now - timedelta(days=self.settings.SEGMENT_NEW_DAYS)
            stmt = select(Profile.id).where(Profile.created_at >= since)
        elif segment == "all":
            stmt = select(NotificationPreference.user_id).where(
                or_(
                    NotificationPreference.email_promotions.is_(True),
                    NotificationPreference.push_promotions.is_(True),
                )
            )
        else:
            logger.warning(f"Unknown audience segment: {segment}")
            return []

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def notify_many(
        self,
        notification_type: str,
        data: Optional[Dict[str, Any]] = None,
        user_ids: Optional[List[str]] = None,
        segment: Optional[str] = None,
        exclude_user_ids: Optional[Iterable[str]] = None,
    ) -> List[UserDispatchResult]:
        """
        Dispatch one notification to every user in the audience

        Push is always attempted; email and SMS only when the profile has
        them. Users without a profile are skipped and not reported.
        """
        data = data or {}

        try:
            if user_ids is not None:
                audience = list(user_ids)
            elif segment:
                audience = await self.resolve_segment(segment)
            else:
                audience = []

            excluded = set(exclude_user_ids or ())
            audience = [user_id for user_id in audience if user_id not in excluded]
            if not audience:
                return []

            profiles = await self._load_profiles(audience)
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve {notification_type} audience: {str(e)}")
            return []

        results: List[UserDispatchResult] = []
        for user_id in audience:
            profile = profiles.get(user_id)
            if profile is None:
                logger.warning(f"Skipping {notification_type} for user {user_id}: no profile")
                continue

            channels = ["push"]
            if profile.email:
                channels.append("email")
            if profile.phone:
                channels.append("sms")

            dispatch_result = await self.dispatcher.send_notification(
                NotificationOptions(
                    channels=channels,
                    type=notification_type,
                    user_id=user_id,
                    user_email=profile.email,
                    user_phone=profile.phone,
                    user_name=profile.display_name,
                    data=data,
                )
            )
            results.append(UserDispatchResult(user_id=user_id, result=dispatch_result))

        logger.info(f"{notification_type} sent to {len(results)} of {len(audience)} requested users")
        return results

    async def _load_profiles(self, user_ids: List[str]) -> Dict[str, Profile]:
        result = await self.db.execute(select(Profile).where(Profile.id.in_(user_ids)))
        return {profile.id: profile for profile in result.scalars().all()}

    async def send_batch_emails(
        self,
        recipients: List[BatchEmailRecipient],
        template_key: str,
    ) -> BatchResult:
        """Send one template to many addresses with per-recipient variables"""
        batch = BatchResult()

        for recipient in recipients:
            email_result = await self.dispatcher.email.send_email(
                to=recipient.email,
                template_key=template_key,
                variables=recipient.variables,
            )

            if email_result.success:
                batch.success += 1
            else:
                batch.failed += 1
                batch.errors.append(f"{recipient.email}: {email_result.error}")

        return batch

    async def send_broadcast_push(
        self,
        payload: PushPayload,
        include_users: Optional[List[str]] = None,
        exclude_users: Optional[List[str]] = None,
    ) -> BroadcastPushResult:
        return await self.dispatcher.push.send_broadcast(
            payload,
            include_users=include_users,
            exclude_users=exclude_users,
        )

    async def send_newsletter(
        self,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> NewsletterResult:
        """Send a newsletter to every profile with email that has not opted out"""
        stmt = (
            select(Profile.id, Profile.email)
            .outerjoin(NotificationPreference, NotificationPreference.user_id == Profile.id)
            .where(
                and_(
                    Profile.email.is_not(None),
                    or_(
                        NotificationPreference.id.is_(None),
                        and_(
                            NotificationPreference.email_enabled.is_(True),
                            or_(
                                NotificationPreference.email_newsletter.is_(None),
                                NotificationPreference.email_newsletter.is_(True),
                            ),
                        ),
                    ),
                )
            )
        )

        try:
            result = await self.db.execute(stmt)
            subscribers = result.all()
        except SQLAlchemyError as e:
            logger.error(f"Newsletter send error: {str(e)}")
            return NewsletterResult()

        outcome = NewsletterResult()
        for user_id, email in subscribers:
            email_result = await self.dispatcher.email.send_email(
                to=email,
                subject=subject,
                html=html_content,
                text=text_content,
                user_id=user_id,
            )
            if email_result.success:
                outcome.success += 1
            else:
                outcome.failed += 1

        return outcome
