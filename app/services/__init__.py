"""Services package"""

from .email import EmailProvider
from .push import PushProvider
from .sms import SMSGateway, SMSService
from .dispatcher import NotificationDispatcher

__all__ = [
    "EmailProvider",
    "PushProvider",
    "SMSGateway",
    "SMSService",
    "NotificationDispatcher",
]
