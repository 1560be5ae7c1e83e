"""Web Push delivery and subscription lifecycle"""

from typing import Any, Callable, Dict, List, Optional
from collections import defaultdict
from datetime import datetime, timezone
from functools import partial
import asyncio
import base64
import binascii
import logging

import requests
from pywebpush import WebPushException, webpush
from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import ConfigurationError, ProviderError, SubscriptionGone, ValidationError
from app.models.notification import PushSubscription
from app.schemas.notification import (
    BroadcastPushResult,
    PushAction,
    PushPayload,
    PushResult,
)
from app.services.audit import NotificationAuditLogger

logger = logging.getLogger(__name__)

# Push service responses meaning the subscription will never work again
GONE_STATUS_CODES = (404, 410)

DEFAULT_ICON = "/logo.png"
DEFAULT_BADGE = "/badge-icon.png"

# Audit key for sends that carry no template or notification type
BROADCAST_TEMPLATE_KEY = "broadcast"

# Uncompressed P-256 point and auth secret sizes from RFC 8291
P256DH_KEY_LENGTH = 65
AUTH_SECRET_LENGTH = 16


def _urlsafe_b64decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode())


def validate_subscription_keys(p256dh: str, auth: str) -> None:
    """Reject keys the push encryption step could never use"""
    try:
        public_key = _urlsafe_b64decode(p256dh)
        auth_secret = _urlsafe_b64decode(auth)
    except (binascii.Error, ValueError):
        raise ValidationError("Push subscription keys must be base64url encoded")

    if len(public_key) != P256DH_KEY_LENGTH or public_key[0] != 0x04:
        raise ValidationError("Invalid p256dh key")
    if len(auth_secret) != AUTH_SECRET_LENGTH:
        raise ValidationError("Invalid auth secret")


class PushProvider:
    """Service for handling browser push notifications via VAPID Web Push"""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        sender: Optional[Callable[..., Any]] = None,
    ):
        self.db = db
        self.settings = settings
        self.sender = sender or webpush
        self.audit = NotificationAuditLogger(db)

    @property
    def vapid_public_key(self) -> Optional[str]:
        return self.settings.VAPID_PUBLIC_KEY

    def is_configured(self) -> bool:
        return bool(self.settings.VAPID_PUBLIC_KEY and self.settings.VAPID_PRIVATE_KEY)

    async def subscribe(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """Register or update a subscription, keyed by endpoint"""
        validate_subscription_keys(p256dh, auth)

        result = await self.db.execute(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
        subscription = result.scalar_one_or_none()

        if subscription:
            # Same browser re-registering, possibly under another account
            subscription.user_id = user_id
            subscription.p256dh_key = p256dh
            subscription.auth_key = auth
            subscription.user_agent = user_agent
            subscription.is_active = True
        else:
            subscription = PushSubscription(
                user_id=user_id,
                endpoint=endpoint,
                p256dh_key=p256dh,
                auth_key=auth,
                user_agent=user_agent,
                is_active=True,
            )
            self.db.add(subscription)

        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def unsubscribe(self, user_id: str, endpoint: str):
        """Deactivate a user's subscription"""
        stmt = (
            update(PushSubscription)
            .where(
                and_(
                    PushSubscription.user_id == user_id,
                    PushSubscription.endpoint == endpoint,
                )
            )
            .values(is_active=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def get_active_subscriptions(self, user_id: str) -> List[PushSubscription]:
        result = await self.db.execute(
            select(PushSubscription).where(
                and_(
                    PushSubscription.user_id == user_id,
                    PushSubscription.is_active.is_(True),
                )
            )
        )
        return list(result.scalars().all())

    async def send_push(
        self,
        user_id: str,
        payload: PushPayload,
        template_key: Optional[str] = None,
    ) -> PushResult:
        """
        Send a payload to every active subscription of a user

        Each endpoint is attempted independently and audited on its own.
        A user with no subscriptions is a success with nothing sent.
        """
        try:
            subscriptions = await self.get_active_subscriptions(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load push subscriptions for user {user_id}: {str(e)}")
            return PushResult(success=False, error=str(e), error_code="STORE_ERROR")

        if not subscriptions:
            return PushResult(success=True)

        if not self.is_configured():
            error = ConfigurationError("VAPID keys not configured")
            logger.error(f"Push to user {user_id} skipped: {error.message}")
            return PushResult(
                success=False,
                failed_count=len(subscriptions),
                error=error.message,
                error_code=error.error_code,
            )

        sent = 0
        failed = 0
        key = template_key or BROADCAST_TEMPLATE_KEY

        for subscription in subscriptions:
            try:
                await self._deliver(subscription, payload)
            except ProviderError as e:
                failed += 1
                if isinstance(e, SubscriptionGone):
                    logger.info(f"Deactivating expired push subscription {subscription.id}")
                    subscription.is_active = False
                else:
                    logger.error(f"Push send error for subscription {subscription.id}: {e.message}")

                await self.audit.log_failed(
                    "push",
                    e.message,
                    user_id=user_id,
                    template_key=key,
                    details={"endpoint": subscription.endpoint, "status_code": e.status_code},
                )
                continue

            sent += 1
            subscription.last_used_at = datetime.now(timezone.utc)
            await self.audit.log_sent(
                "push",
                user_id=user_id,
                template_key=key,
                details={"endpoint": subscription.endpoint, "title": payload.title},
            )

        await self.db.flush()
        return PushResult(success=True, sent_count=sent, failed_count=failed)

    async def _deliver(self, subscription: PushSubscription, payload: PushPayload):
        send = partial(
            self.sender,
            subscription_info=subscription.to_subscription_info(),
            data=payload.to_json(),
            vapid_private_key=self.settings.VAPID_PRIVATE_KEY,
            # webpush adds aud/exp to the claims dict, so a fresh one per call
            vapid_claims={"sub": self.settings.VAPID_SUBJECT},
            ttl=payload.ttl or self.settings.PUSH_TTL_SECONDS,
            timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
        )

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, send)
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise SubscriptionGone(e.message, status_code)
            raise ProviderError(e.message, status_code)
        except requests.RequestException as e:
            raise ProviderError(f"Push request failed: {str(e)}")
        except Exception as e:
            # Malformed keys fail inside pywebpush before any request is made
            raise ProviderError(f"Push send failed: {str(e)}")

    async def send_broadcast(
        self,
        payload: PushPayload,
        include_users: Optional[List[str]] = None,
        exclude_users: Optional[List[str]] = None,
        template_key: Optional[str] = None,
    ) -> BroadcastPushResult:
        """Send one payload to every subscribed user, counted per endpoint"""
        stmt = select(PushSubscription.user_id).where(PushSubscription.is_active.is_(True))
        if include_users:
            stmt = stmt.where(PushSubscription.user_id.in_(include_users))
        elif exclude_users:
            stmt = stmt.where(PushSubscription.user_id.not_in(exclude_users))

        try:
            result = await self.db.execute(stmt)
            user_ids = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Broadcast push error: {str(e)}")
            return BroadcastPushResult()

        subscriptions_by_user: Dict[str, int] = defaultdict(int)
        for user_id in user_ids:
            subscriptions_by_user[user_id] += 1

        outcome = BroadcastPushResult()
        for user_id, subscription_count in subscriptions_by_user.items():
            user_result = await self.send_push(user_id, payload, template_key=template_key)
            if user_result.success:
                outcome.success += user_result.sent_count
                outcome.failed += user_result.failed_count
            else:
                outcome.failed += subscription_count

        logger.info(f"Broadcast push finished: {outcome.success} sent, {outcome.failed} failed")
        return outcome


# Payload builders

def order_confirmation_payload(data: Dict[str, Any]) -> PushPayload:
    order_number = data.get("order_number")
    return PushPayload(
        title="Order Confirmed! 🎉",
        body=(
            f"Your order #{order_number} has been confirmed. "
            f"Estimated time: {data.get('estimated_time', 30)} minutes."
        ),
        icon=DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        url=f"/my-account/orders?order={order_number}",
        require_interaction=True,
        data={"order_number": order_number},
    )


def order_status_payload(status: str, data: Dict[str, Any]) -> PushPayload:
    order_number = data.get("order_number")
    driver_name = data.get("driver_name")

    messages = {
        "preparing": f"Your order #{order_number} is being prepared!",
        "ready": f"Your order #{order_number} is ready!",
        "out_for_delivery": "Your order is on the way!" + (f" Driver: {driver_name}" if driver_name else ""),
        "delivered": f"Your order #{order_number} has been delivered! Enjoy! 🍗",
    }

    return PushPayload(
        title="Delivered! 🎉" if status == "delivered" else "Order Update",
        body=messages.get(status, f"Your order status has been updated to: {status}"),
        icon=DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        url=f"/my-account/orders?order={order_number}",
        require_interaction=status in ("out_for_delivery", "delivered"),
        data={"order_number": order_number, "status": status},
    )


def promotion_payload(data: Dict[str, Any]) -> PushPayload:
    title = data.get("title") or data.get("promo_title") or "Wingside"
    message = data.get("message") or data.get("promo_message") or ""
    discount_code = data.get("discount_code")

    return PushPayload(
        title=title,
        body=f"{message} Use code: {discount_code}" if discount_code else message,
        icon=data.get("icon") or DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        url=data.get("url") or data.get("cta_url") or "/",
        actions=[PushAction(action="copy", title="Copy Code")] if discount_code else None,
    )


def reward_payload(data: Dict[str, Any]) -> PushPayload:
    points_earned = data.get("points_earned")
    total_points = data.get("total_points")
    return PushPayload(
        title="Rewards Earned! 🎁",
        body=data.get("reward_message") or f"You earned {points_earned} points! Total: {total_points}",
        icon=DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        url="/my-account/dashboard",
        data={"points_earned": points_earned, "total_points": total_points},
    )


def generic_payload(data: Dict[str, Any]) -> PushPayload:
    """Payload for notification types without a dedicated push format"""
    return PushPayload(
        title=data.get("title") or "Wingside",
        body=data.get("body") or data.get("message") or "",
        icon=data.get("icon") or DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        url=data.get("url") or "/",
        data=data.get("data"),
    )
