"""Notification schemas for dispatch options, results and API payloads."""

from typing import Optional, List, Dict, Any, Literal, Union
from pydantic import BaseModel, ConfigDict, Field

ChannelName = Literal["email", "push", "sms"]


class NotificationType:
    """Notification types understood by the dispatcher"""

    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_STATUS = "order_status"
    PROMOTION = "promotion"
    REWARD = "reward"
    REMINDER = "reminder"


# Provider results

class DeliveryResult(BaseModel):
    """Outcome of a single email or SMS provider call"""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class PushResult(BaseModel):
    """Outcome of a push fan-out to one user's devices"""

    success: bool
    sent_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None


# Dispatcher

class ChannelPreferenceOverrides(BaseModel):
    email: Optional[bool] = None
    push: Optional[bool] = None
    sms: Optional[bool] = None


class NotificationOptions(BaseModel):
    channels: List[ChannelName]
    type: str
    user_id: str
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    user_name: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    preferences: Optional[ChannelPreferenceOverrides] = None


class ChannelResult(BaseModel):
    sent: bool = False
    error: Optional[str] = None
    # Set when the channel was deliberately not attempted
    skipped_reason: Optional[str] = None


class PushChannelResult(ChannelResult):
    failed_count: int = 0


class DispatchResult(BaseModel):
    email: ChannelResult = Field(default_factory=ChannelResult)
    push: PushChannelResult = Field(default_factory=PushChannelResult)
    sms: ChannelResult = Field(default_factory=ChannelResult)


class UserDispatchResult(BaseModel):
    user_id: str
    result: DispatchResult


# Push payload

class PushAction(BaseModel):
    action: str
    title: str
    icon: Optional[str] = None


class PushPayload(BaseModel):
    """Payload delivered to the service worker, serialized with camelCase keys"""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    body: str = ""
    icon: Optional[str] = None
    badge: Optional[str] = None
    image: Optional[str] = None
    url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    actions: Optional[List[PushAction]] = None
    require_interaction: bool = Field(False, alias="requireInteraction")
    ttl: Optional[int] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# Batch and broadcast

class BatchEmailRecipient(BaseModel):
    email: str
    variables: Dict[str, Any] = Field(default_factory=dict)


class BatchResult(BaseModel):
    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


class BroadcastPushResult(BaseModel):
    success: int = 0
    failed: int = 0


class NewsletterResult(BaseModel):
    success: int = 0
    failed: int = 0


# API payloads

class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionData(BaseModel):
    endpoint: str
    keys: PushSubscriptionKeys


class PushSubscriptionRequest(BaseModel):
    subscription: PushSubscriptionData
    action: Optional[Literal["subscribe", "unsubscribe"]] = "subscribe"


class PushUnsubscribeRequest(BaseModel):
    endpoint: str


class NotificationPreferenceUpdate(BaseModel):
    """Partial preference update, unset fields are left untouched"""

    model_config = ConfigDict(extra="forbid")

    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None

    email_order_confirmations: Optional[bool] = None
    email_order_status: Optional[bool] = None
    email_promotions: Optional[bool] = None
    email_rewards: Optional[bool] = None
    email_newsletter: Optional[bool] = None
    email_reminders: Optional[bool] = None

    push_order_confirmations: Optional[bool] = None
    push_order_status: Optional[bool] = None
    push_promotions: Optional[bool] = None
    push_rewards: Optional[bool] = None
    push_newsletter: Optional[bool] = None
    push_reminders: Optional[bool] = None

    sms_order_confirmations: Optional[bool] = None
    sms_order_status: Optional[bool] = None
    sms_promotions: Optional[bool] = None
    sms_rewards: Optional[bool] = None
    sms_newsletter: Optional[bool] = None
    sms_reminders: Optional[bool] = None


class AdminRecipient(BaseModel):
    user_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None


class BroadcastAudience(BaseModel):
    user_ids: Optional[List[str]] = None
    exclude_user_ids: Optional[List[str]] = None


class AdminNotificationContent(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    icon: Optional[str] = None
    url: Optional[str] = None
    type: str = NotificationType.PROMOTION
    data: Dict[str, Any] = Field(default_factory=dict)


class AdminSendRequest(BaseModel):
    type: Literal["broadcast", "individual"]
    recipients: Union[List[AdminRecipient], BroadcastAudience]
    notification: AdminNotificationContent
    channels: Optional[List[ChannelName]] = None
