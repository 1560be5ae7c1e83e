"""Notifications triggered by order lifecycle and loyalty events"""

from typing import Any, Dict, List, Optional
import logging
import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order, OrderStatus
from app.models.user import Profile
from app.schemas.notification import DispatchResult, NotificationType, UserDispatchResult
from app.services.broadcast import BroadcastService
from app.services.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

# (points, message) pairs, a notification goes out when the balance hits one exactly
REWARD_MILESTONES = [
    (100, "You've reached 100 points! Keep ordering to unlock more rewards!"),
    (500, "You've reached 500 points! You're now a Wing Leader!"),
    (1000, "You've reached 1000 points! You're now a Wing Master!"),
    (5000, "You've reached 5000 points! You're now a Wing Legend!"),
]


def format_amount(amount: Any) -> str:
    return f"₦{amount:,.2f}"


class OrderNotificationService:
    """Turns order events into dispatcher calls. Errors are logged, never raised."""

    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = dispatcher.settings

    def _tracking_url(self, order_number: str) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}/my-account/orders?order={order_number}"

    @property
    def _rewards_url(self) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}/my-account/dashboard"

    async def _load_order(self, order_id) -> Optional[tuple]:
        result = await self.db.execute(
            select(Order, Profile)
            .join(Profile, Profile.id == Order.user_id)
            .where(Order.id == order_id)
        )
        row = result.first()
        if row is None:
            logger.error(f"Order {order_id} or its customer profile not found for notification")
            return None
        return row

    async def on_order_created(self, order_id) -> Optional[DispatchResult]:
        """Send the order confirmation"""
        try:
            row = await self._load_order(order_id)
            if row is None:
                return None
            order, profile = row

            result = await self.dispatcher.notify_order_confirmation(
                user_id=order.user_id,
                user_email=profile.email,
                user_name=profile.display_name,
                user_phone=profile.phone,
                order_data={
                    "order_number": order.order_number,
                    "total_amount": format_amount(order.total_amount),
                    "payment_method": order.payment_method or "Card",
                    "delivery_address": order.delivery_address,
                    "estimated_time": 30,
                    "order_tracking_url": self._tracking_url(order.order_number),
                },
            )
            logger.info(f"Order confirmation notification sent for order {order.order_number}")
            return result
        except Exception:
            logger.exception(f"Error sending order confirmation notification for order {order_id}")
            return None

    async def on_order_status_changed(self, order_id, new_status: str) -> Optional[DispatchResult]:
        """Send the status update, plus a reward notification once delivered"""
        try:
            row = await self._load_order(order_id)
            if row is None:
                return None
            order, profile = row

            data: Dict[str, Any] = {
                "order_number": order.order_number,
                "order_tracking_url": self._tracking_url(order.order_number),
            }

            if new_status == OrderStatus.OUT_FOR_DELIVERY.value:
                data["driver_name"] = order.delivery_driver_name
                data["estimated_arrival"] = order.estimated_arrival
            elif new_status == OrderStatus.READY.value and not order.delivery_address:
                data["pickup_address"] = self.settings.PICKUP_ADDRESS
            elif new_status == OrderStatus.DELIVERED.value:
                points_earned = math.floor(float(order.total_amount) * self.settings.REWARD_POINTS_RATE)
                data["points_earned"] = points_earned
                data["total_points"] = (profile.reward_points or 0) + points_earned

            result = await self.dispatcher.notify_order_status(
                user_id=order.user_id,
                user_email=profile.email,
                user_name=profile.display_name,
                user_phone=profile.phone,
                status=new_status,
                order_data=data,
            )

            if new_status == OrderStatus.DELIVERED.value:
                await self.dispatcher.notify_reward(
                    user_id=order.user_id,
                    user_email=profile.email,
                    user_name=profile.display_name,
                    user_phone=profile.phone,
                    reward_data={
                        "reward_message": f"You earned {data['points_earned']} points from your recent order!",
                        "points_earned": data["points_earned"],
                        "total_points": data["total_points"],
                        "rewards_url": self._rewards_url,
                    },
                )

            logger.info(f"Order status notification sent for order {order.order_number} - status: {new_status}")
            return result
        except Exception:
            logger.exception(f"Error sending order status notification for order {order_id}")
            return None

    async def send_promotion_to_users(
        self,
        promo_data: Dict[str, Any],
        segment: Optional[str] = None,
        include_users: Optional[List[str]] = None,
        exclude_users: Optional[List[str]] = None,
    ) -> List[UserDispatchResult]:
        """Promotion to explicit users, or to a segment when none are given"""
        try:
            return await BroadcastService(self.db, self.dispatcher).notify_many(
                notification_type=NotificationType.PROMOTION,
                data=promo_data,
                user_ids=include_users or None,
                segment=None if include_users else (segment or "all"),
                exclude_user_ids=exclude_users,
            )
        except Exception:
            logger.exception("Error sending promotion to users")
            return []

    async def check_reward_milestones(self, user_id: str) -> Optional[DispatchResult]:
        """Notify a user whose balance sits exactly on a milestone"""
        try:
            profile = await self.db.get(Profile, user_id)
            if profile is None:
                return None

            points = profile.reward_points or 0
            for milestone_points, message in REWARD_MILESTONES:
                if points == milestone_points:
                    return await self.dispatcher.notify_reward(
                        user_id=user_id,
                        user_email=profile.email,
                        user_name=profile.display_name,
                        user_phone=profile.phone,
                        reward_data={
                            "reward_message": message,
                            "points_earned": 0,
                            "total_points": points,
                            "rewards_url": self._rewards_url,
                        },
                    )
            return None
        except Exception:
            logger.exception(f"Error checking reward milestones for user {user_id}")
            return None
