"""Shared FastAPI dependencies for notification services"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.services.dispatcher import NotificationDispatcher
from app.services.preferences import PreferenceService
from app.services.push import PushProvider
from app.services.sms import SMSGateway


def get_sms_gateway(request: Request) -> SMSGateway:
    """Gateway selected once at startup, see app.main.lifespan"""
    gateway = getattr(request.app.state, "sms_gateway", None)
    if gateway is None:
        gateway = SMSGateway.from_settings(get_settings())
        request.app.state.sms_gateway = gateway
    return gateway


def get_push_provider(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PushProvider:
    return PushProvider(db, settings)


def get_preference_service(db: AsyncSession = Depends(get_db)) -> PreferenceService:
    return PreferenceService(db)


def get_dispatcher(
    db: AsyncSession = Depends(get_db),
    sms_gateway: SMSGateway = Depends(get_sms_gateway),
    settings: Settings = Depends(get_settings),
    push_provider: PushProvider = Depends(get_push_provider),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, sms_gateway, settings, push_provider=push_provider)
