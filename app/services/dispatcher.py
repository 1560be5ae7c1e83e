"""
Unified notification dispatcher

Routes one logical notification to email, push and SMS. Each channel is
gated by the recipient's contact details and preferences, and every channel
outcome comes back as a result value. Nothing raised by a provider reaches
the caller.
"""

from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.schemas.notification import (
    ChannelResult,
    DispatchResult,
    NotificationOptions,
    NotificationType,
    PushChannelResult,
    PushPayload,
    UserDispatchResult,
)
from app.services.email import EmailProvider, ORDER_STATUS_TEMPLATES
from app.services.preferences import PreferenceGate
from app.services.push import (
    PushProvider,
    generic_payload,
    order_confirmation_payload,
    order_status_payload,
    promotion_payload,
    reward_payload,
)
from app.services.sms import SMSGateway, SMSService

logger = logging.getLogger(__name__)

UNKNOWN_TYPE_ERROR = "Unknown notification type"

# Skip reasons reported on ChannelResult.skipped_reason
SKIP_NO_CONTACT = "no_contact"
SKIP_OVERRIDE = "preference_override"
SKIP_PREFERENCE = "preference"

ALL_CHANNELS = ["email", "push", "sms"]


class NotificationDispatcher:
    """Send one notification across the requested channels"""

    def __init__(
        self,
        db: AsyncSession,
        sms_gateway: SMSGateway,
        settings: Settings,
        email_provider: Optional[EmailProvider] = None,
        push_provider: Optional[PushProvider] = None,
        sms_service: Optional[SMSService] = None,
        preference_gate: Optional[PreferenceGate] = None,
    ):
        self.db = db
        self.settings = settings
        self.email = email_provider or EmailProvider(db, settings)
        self.push = push_provider or PushProvider(db, settings)
        self.sms = sms_service or SMSService(db, sms_gateway)
        self.gate = preference_gate or PreferenceGate(db)

    async def send_notification(self, options: NotificationOptions) -> DispatchResult:
        """
        Deliver on every requested channel and report each outcome

        Channels run one after another on the shared session. A skipped
        channel has sent=False with no error.
        """
        result = DispatchResult()

        if "email" in options.channels:
            result.email = await self._run_channel("email", options, self._send_email, ChannelResult)

        if "push" in options.channels:
            result.push = await self._run_channel("push", options, self._send_push, PushChannelResult)

        if "sms" in options.channels:
            result.sms = await self._run_channel("sms", options, self._send_sms, ChannelResult)

        return result

    async def _run_channel(self, channel, options, send, result_cls):
        if channel == "email" and not options.user_email:
            return result_cls(skipped_reason=SKIP_NO_CONTACT)
        if channel == "sms" and not options.user_phone:
            return result_cls(skipped_reason=SKIP_NO_CONTACT)

        override = getattr(options.preferences, channel, None) if options.preferences else None
        if override is False:
            return result_cls(skipped_reason=SKIP_OVERRIDE)

        # An explicit True bypasses the stored preferences
        if override is None:
            allowed = await self.gate.can_send_notification(options.user_id, channel, options.type)
            if not allowed:
                logger.info(f"{channel} {options.type} suppressed by preferences for user {options.user_id}")
                return result_cls(skipped_reason=SKIP_PREFERENCE)

        try:
            return await send(options)
        except Exception as e:
            logger.exception(f"{channel} channel failed for user {options.user_id}")
            return result_cls(sent=False, error=str(e))

    async def _send_email(self, options: NotificationOptions) -> ChannelResult:
        data = dict(options.data)

        if options.type == NotificationType.ORDER_CONFIRMATION:
            template_key = "order_confirmation"
        elif options.type == NotificationType.ORDER_STATUS:
            template_key = ORDER_STATUS_TEMPLATES.get(data.get("status"), "order_ready")
        elif options.type == NotificationType.PROMOTION:
            template_key = "promotion"
        elif options.type == NotificationType.REWARD:
            template_key = "reward_earned"
        elif options.type == NotificationType.REMINDER:
            template_key = "reminder"
        else:
            return ChannelResult(sent=False, error=UNKNOWN_TYPE_ERROR)

        variables = {"customer_name": options.user_name, **data}
        email_result = await self.email.send_email(
            to=options.user_email,
            template_key=template_key,
            variables=variables,
            user_id=options.user_id,
        )
        return ChannelResult(sent=email_result.success, error=email_result.error)

    async def _send_push(self, options: NotificationOptions) -> PushChannelResult:
        payload = self._build_push_payload(options.type, options.data)
        push_result = await self.push.send_push(options.user_id, payload, template_key=options.type)
        return PushChannelResult(
            sent=push_result.success,
            failed_count=push_result.failed_count,
            error=push_result.error,
        )

    def _build_push_payload(self, notification_type: str, data: Dict[str, Any]) -> PushPayload:
        if notification_type == NotificationType.ORDER_CONFIRMATION:
            return order_confirmation_payload(data)
        if notification_type == NotificationType.ORDER_STATUS:
            return order_status_payload(data.get("status") or "ready", data)
        if notification_type == NotificationType.PROMOTION:
            return promotion_payload(data)
        if notification_type == NotificationType.REWARD:
            return reward_payload(data)
        return generic_payload(data)

    async def _send_sms(self, options: NotificationOptions) -> ChannelResult:
        data = options.data
        phone = options.user_phone

        if options.type == NotificationType.ORDER_CONFIRMATION:
            sms_result = await self.sms.send_order_confirmation_sms(
                phone,
                order_number=data.get("order_number"),
                total_amount=data.get("total_amount"),
                estimated_time=data.get("estimated_time", 30),
                user_id=options.user_id,
            )
        elif options.type == NotificationType.ORDER_STATUS:
            sms_result = await self.sms.send_order_status_sms(
                phone,
                order_number=data.get("order_number"),
                status=data.get("status") or "ready",
                user_id=options.user_id,
            )
        elif options.type == NotificationType.PROMOTION:
            sms_result = await self.sms.send_promotion_sms(
                phone,
                title=data.get("title") or data.get("promo_title") or "",
                message=data.get("message") or data.get("promo_message") or "",
                discount_code=data.get("discount_code"),
                user_id=options.user_id,
            )
        elif options.type == NotificationType.REWARD:
            sms_result = await self.sms.send_reward_sms(
                phone,
                points_earned=data.get("points_earned"),
                total_points=data.get("total_points"),
                reward_message=data.get("reward_message"),
                user_id=options.user_id,
            )
        elif options.type == NotificationType.REMINDER:
            sms_result = await self.sms.send_sms(
                phone,
                f"Wingside: {data.get('message') or ''}",
                user_id=options.user_id,
                template_key="reminder",
            )
        else:
            return ChannelResult(sent=False, error=UNKNOWN_TYPE_ERROR)

        return ChannelResult(sent=sms_result.success, error=sms_result.error)

    # Typed event wrappers

    async def notify_order_confirmation(
        self,
        user_id: str,
        user_email: Optional[str],
        user_name: Optional[str],
        order_data: Dict[str, Any],
        user_phone: Optional[str] = None,
    ) -> DispatchResult:
        """Send order confirmation notification"""
        return await self.send_notification(
            NotificationOptions(
                channels=ALL_CHANNELS,
                type=NotificationType.ORDER_CONFIRMATION,
                user_id=user_id,
                user_email=user_email,
                user_phone=user_phone,
                user_name=user_name,
                data={"customer_name": user_name, **order_data},
            )
        )

    async def notify_order_status(
        self,
        user_id: str,
        user_email: Optional[str],
        user_name: Optional[str],
        status: str,
        order_data: Dict[str, Any],
        user_phone: Optional[str] = None,
    ) -> DispatchResult:
        """Send order status notification"""
        return await self.send_notification(
            NotificationOptions(
                channels=ALL_CHANNELS,
                type=NotificationType.ORDER_STATUS,
                user_id=user_id,
                user_email=user_email,
                user_phone=user_phone,
                user_name=user_name,
                data={"customer_name": user_name, "status": status, **order_data},
            )
        )

    async def notify_promotion(
        self,
        user_ids: List[str],
        promo_data: Dict[str, Any],
    ) -> List[UserDispatchResult]:
        """Send a promotion to many users, contact details come from their profiles"""
        from app.services.broadcast import BroadcastService

        return await BroadcastService(self.db, self).notify_many(
            user_ids=user_ids,
            notification_type=NotificationType.PROMOTION,
            data=promo_data,
        )

    async def notify_reward(
        self,
        user_id: str,
        user_email: Optional[str],
        user_name: Optional[str],
        reward_data: Dict[str, Any],
        user_phone: Optional[str] = None,
    ) -> DispatchResult:
        """Send reward notification"""
        return await self.send_notification(
            NotificationOptions(
                channels=ALL_CHANNELS,
                type=NotificationType.REWARD,
                user_id=user_id,
                user_email=user_email,
                user_phone=user_phone,
                user_name=user_name,
                data=reward_data,
            )
        )
