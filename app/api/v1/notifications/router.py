"""Notification endpoints: push subscriptions, preferences and admin sends"""

from fastapi import APIRouter, Depends, Header
from typing import Optional
import logging

from app.api.deps import get_dispatcher, get_preference_service, get_push_provider
from app.core.exceptions import BadRequestException, InternalServerException, ValidationError
from app.core.security import get_current_user, require_admin
from app.schemas.notification import (
    AdminSendRequest,
    BroadcastAudience,
    NotificationOptions,
    NotificationPreferenceUpdate,
    PushPayload,
    PushSubscriptionRequest,
    PushUnsubscribeRequest,
    UserDispatchResult,
)
from app.services.broadcast import BroadcastService
from app.services.dispatcher import NotificationDispatcher
from app.services.preferences import PreferenceService
from app.services.push import DEFAULT_BADGE, DEFAULT_ICON, PushProvider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/push/subscribe")
async def subscribe_push(
    request: PushSubscriptionRequest,
    user_agent: Optional[str] = Header(None),
    current_user: dict = Depends(get_current_user),
    push: PushProvider = Depends(get_push_provider),
):
    """Register this browser for push, or unregister with action=unsubscribe"""
    subscription = request.subscription

    if request.action == "unsubscribe":
        await push.unsubscribe(current_user["id"], subscription.endpoint)
        return {"success": True, "message": "Unsubscribed from push notifications"}

    try:
        await push.subscribe(
            user_id=current_user["id"],
            endpoint=subscription.endpoint,
            p256dh=subscription.keys.p256dh,
            auth=subscription.keys.auth,
            user_agent=user_agent,
        )
    except ValidationError as e:
        raise BadRequestException(e.message, e.error_code)
    return {"success": True, "message": "Subscribed to push notifications"}


@router.delete("/push/subscribe")
async def unsubscribe_push(
    request: PushUnsubscribeRequest,
    current_user: dict = Depends(get_current_user),
    push: PushProvider = Depends(get_push_provider),
):
    await push.unsubscribe(current_user["id"], request.endpoint)
    return {"success": True, "message": "Unsubscribed from push notifications"}


@router.get("/push/vapid-public-key")
async def get_vapid_public_key(push: PushProvider = Depends(get_push_provider)):
    """Public key the browser needs to create a subscription"""
    if not push.vapid_public_key:
        raise InternalServerException("Push notifications are not configured", "PUSH_NOT_CONFIGURED")
    return {"public_key": push.vapid_public_key}


@router.get("/preferences")
async def get_preferences(
    current_user: dict = Depends(get_current_user),
    service: PreferenceService = Depends(get_preference_service),
):
    preferences = await service.get_preferences(current_user["id"])
    return {"preferences": preferences}


@router.put("/preferences")
async def update_preferences(
    request: NotificationPreferenceUpdate,
    current_user: dict = Depends(get_current_user),
    service: PreferenceService = Depends(get_preference_service),
):
    """Partial update, fields left out keep their stored value"""
    changes = request.model_dump(exclude_none=True)
    if not changes:
        raise BadRequestException("No preference changes supplied")

    await service.update_preferences(current_user["id"], changes)
    preferences = await service.get_preferences(current_user["id"])
    return {"success": True, "preferences": preferences}


@router.post("/admin/send")
async def admin_send_notification(
    request: AdminSendRequest,
    current_user: dict = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Send a notification from the admin panel

    broadcast: one push payload to every subscribed user in the audience.
    individual: full dispatch to each listed recipient.
    """
    notification = request.notification

    if request.type == "broadcast":
        if not notification.title:
            raise BadRequestException("Broadcast notifications need a title")

        if isinstance(request.recipients, BroadcastAudience):
            include_users = request.recipients.user_ids
            exclude_users = request.recipients.exclude_user_ids
        else:
            include_users = [recipient.user_id for recipient in request.recipients]
            exclude_users = None

        payload = PushPayload(
            title=notification.title,
            body=notification.message or "",
            icon=notification.icon or DEFAULT_ICON,
            badge=DEFAULT_BADGE,
            url=notification.url or "/",
        )

        try:
            outcome = await BroadcastService(dispatcher.db, dispatcher).send_broadcast_push(
                payload,
                include_users=include_users,
                exclude_users=exclude_users,
            )
        except Exception:
            logger.exception(f"Admin broadcast by {current_user['id']} failed")
            raise InternalServerException("Failed to send notification")

        return {"success": True, "sent": outcome.success, "failed": outcome.failed}

    if not isinstance(request.recipients, list):
        raise BadRequestException("Individual notifications need a recipient list")

    data = {
        key: value
        for key, value in (
            ("title", notification.title),
            ("message", notification.message),
            ("url", notification.url),
            ("icon", notification.icon),
        )
        if value is not None
    }
    data.update(notification.data)

    results = []
    for recipient in request.recipients:
        result = await dispatcher.send_notification(
            NotificationOptions(
                channels=request.channels or ["email", "push"],
                type=notification.type,
                user_id=recipient.user_id,
                user_email=recipient.email,
                user_phone=recipient.phone,
                user_name=recipient.name,
                data=data,
            )
        )
        results.append(UserDispatchResult(user_id=recipient.user_id, result=result))

    logger.info(f"Admin {current_user['id']} sent {notification.type} to {len(results)} recipients")
    return {"success": True, "results": results}
