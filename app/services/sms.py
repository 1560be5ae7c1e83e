"""
SMS delivery through interchangeable vendor backends

Supported vendors, in auto-detection priority: Termii, Africa's Talking, Twilio.
SMS_PROVIDER forces one vendor. Otherwise the first vendor with a complete set
of credentials is used. The choice is made once when SMSGateway is built at
startup and the gateway is injected wherever SMS is sent.
"""

from typing import Any, Dict, Optional
import asyncio
import logging
import re

import httpx
import phonenumbers
import requests
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from app.core.config import Settings
from app.core.exceptions import (
    ConfigurationError,
    NotificationError,
    ProviderError,
    ValidationError,
)
from app.schemas.notification import DeliveryResult
from app.services.audit import NotificationAuditLogger

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
TRUNCATION_MARKER = "..."


def normalize_phone_number(phone: str, region: str = "NG") -> str:
    """
    Normalize a phone number to E.164

    08031234567    -> +2348031234567  (trunk 0 replaced by country code)
    2348031234567  -> +2348031234567
    +2348031234567 -> +2348031234567
    """
    if not phone:
        raise ValidationError("Invalid phone number")

    digits = re.sub(r"\D", "", phone)
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValidationError("Invalid phone number")

    country_code = str(phonenumbers.country_code_for_region(region))

    if digits.startswith("0"):
        candidate = f"+{country_code}{digits[1:]}"
    elif phone.strip().startswith("+") or (
        digits.startswith(country_code) and len(digits) > MIN_PHONE_DIGITS
    ):
        candidate = f"+{digits}"
    else:
        candidate = f"+{country_code}{digits}"

    try:
        parsed = phonenumbers.parse(candidate, None)
    except phonenumbers.NumberParseException:
        raise ValidationError("Invalid phone number")

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def prepare_message(message: str, max_length: int) -> str:
    """Reject empty messages and cap long ones with a trailing marker"""
    if not message or not message.strip():
        raise ValidationError("Message cannot be empty")

    if len(message) > max_length:
        logger.warning(f"SMS message of {len(message)} chars truncated to {max_length}")
        message = message[:max_length - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER

    return message


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class SMSBackend:
    """One SMS vendor. send() returns the vendor message id or raises."""

    name = ""
    display_name = ""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS
        self._client = client

    def is_configured(self) -> bool:
        raise NotImplementedError

    async def send(self, to: str, message: str) -> Optional[str]:
        raise NotImplementedError

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.post(url, timeout=self.timeout, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.display_name} request failed: {exc}")


class TermiiBackend(SMSBackend):
    """Termii (Nigeria) JSON API"""

    name = "termii"
    display_name = "Termii"

    def is_configured(self) -> bool:
        return bool(self.settings.TERMII_API_KEY)

    async def send(self, to: str, message: str) -> Optional[str]:
        # Termii wants international format without the leading +
        response = await self._post(
            self.settings.TERMII_API_URL,
            json={
                "api_key": self.settings.TERMII_API_KEY,
                "to": to.lstrip("+"),
                "from": self.settings.TERMII_SENDER_ID or self.settings.SMS_SENDER_ID,
                "sms": message,
                "type": "plain",
                "channel": "dnd",
            },
        )
        data = _json_body(response)

        if response.is_success and (data.get("code") == "ok" or data.get("message_id")):
            return data.get("message_id") or data.get("message_id_str")

        logger.error(f"Termii API error {response.status_code}: {response.text[:300]}")
        raise ProviderError(data.get("message") or "Failed to send SMS", response.status_code)


class AfricasTalkingBackend(SMSBackend):
    """Africa's Talking messaging API"""

    name = "africastalking"
    display_name = "Africas Talking"

    def is_configured(self) -> bool:
        return bool(self.settings.AFRICASTALKING_USERNAME and self.settings.AFRICASTALKING_API_KEY)

    async def send(self, to: str, message: str) -> Optional[str]:
        response = await self._post(
            self.settings.AFRICASTALKING_API_URL,
            data={
                "username": self.settings.AFRICASTALKING_USERNAME,
                "to": to,
                "message": message,
                "from": self.settings.SMS_SENDER_ID,
            },
            headers={
                "apiKey": self.settings.AFRICASTALKING_API_KEY,
                "Accept": "application/json",
            },
        )
        data = _json_body(response)
        recipients = (data.get("SMSMessageData") or {}).get("Recipients") or []

        if response.is_success and recipients:
            recipient = recipients[0]
            if recipient.get("status") == "Success":
                return recipient.get("messageId")
            raise ProviderError(recipient.get("statusText") or "Failed to send SMS", response.status_code)

        logger.error(f"Africas Talking API error {response.status_code}: {response.text[:300]}")
        raise ProviderError(
            data.get("message") or (data.get("SMSMessageData") or {}).get("Message") or "Failed to send SMS",
            response.status_code,
        )


class TwilioBackend(SMSBackend):
    """Twilio Programmable Messaging through the Twilio SDK"""

    name = "twilio"
    display_name = "Twilio"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None, twilio_client: Optional[Client] = None):
        super().__init__(settings, client)
        self._twilio_client = twilio_client

    def is_configured(self) -> bool:
        return bool(
            self.settings.TWILIO_ACCOUNT_SID
            and self.settings.TWILIO_AUTH_TOKEN
            and self.settings.TWILIO_PHONE_NUMBER
        )

    @property
    def twilio_client(self) -> Client:
        if self._twilio_client is None:
            self._twilio_client = Client(
                self.settings.TWILIO_ACCOUNT_SID,
                self.settings.TWILIO_AUTH_TOKEN,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._twilio_client

    async def send(self, to: str, message: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        try:
            # The SDK is blocking, run it in the thread pool
            result = await loop.run_in_executor(
                None,
                lambda: self.twilio_client.messages.create(
                    body=message,
                    from_=self.settings.TWILIO_PHONE_NUMBER,
                    to=to,
                ),
            )
        except TwilioRestException as e:
            logger.error(f"Twilio error sending SMS to {to}: {e.msg}")
            raise ProviderError(e.msg or "Failed to send SMS", e.status)
        except TwilioException as e:
            logger.error(f"Twilio error sending SMS to {to}: {str(e)}")
            raise ProviderError(str(e) or "Failed to send SMS")
        except requests.RequestException as e:
            logger.error(f"Twilio request failed sending SMS to {to}: {str(e)}")
            raise ProviderError(f"Twilio request failed: {str(e)}")

        return result.sid


BACKENDS = {
    TermiiBackend.name: TermiiBackend,
    AfricasTalkingBackend.name: AfricasTalkingBackend,
    TwilioBackend.name: TwilioBackend,
}

# Auto-detection order when SMS_PROVIDER is not set
BACKEND_PRIORITY = (
    TermiiBackend.name,
    AfricasTalkingBackend.name,
    TwilioBackend.name,
)


class SMSGateway:
    """Sends SMS through the vendor backend selected at startup"""

    def __init__(self, backend: Optional[SMSBackend], settings: Settings):
        self.backend = backend
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "SMSGateway":
        """Select the backend from configuration"""
        return cls(select_backend(settings, client), settings)

    @property
    def provider_name(self) -> Optional[str]:
        return self.backend.name if self.backend else None

    @property
    def is_enabled(self) -> bool:
        return self.backend is not None and self.backend.is_configured()

    def normalize(self, phone: str) -> str:
        return normalize_phone_number(phone, self.settings.SMS_DEFAULT_REGION)

    async def send_sms(self, to: str, message: str) -> DeliveryResult:
        """Send one SMS. Never raises for delivery failures."""
        try:
            if self.backend is None:
                raise ConfigurationError(
                    "No SMS provider configured. Set SMS_PROVIDER and corresponding credentials."
                )

            phone = self.normalize(to)
            message = prepare_message(message, self.settings.SMS_MAX_LENGTH)

            if not self.backend.is_configured():
                raise ConfigurationError(f"{self.backend.display_name} not configured")

            message_id = await self.backend.send(phone, message)

        except NotificationError as e:
            logger.error(f"SMS to {to} failed: {e.message}")
            return DeliveryResult(success=False, error=e.message, error_code=e.error_code)

        logger.info(f"SMS sent to {phone} via {self.backend.name}, id: {message_id}")
        return DeliveryResult(success=True, message_id=message_id)


def select_backend(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> Optional[SMSBackend]:
    """Explicit SMS_PROVIDER wins, otherwise first fully configured backend by priority"""
    override = (settings.SMS_PROVIDER or "").strip().lower()

    if override:
        backend_class = BACKENDS.get(override)
        if backend_class is not None:
            backend = backend_class(settings, client)
            if not backend.is_configured():
                logger.warning(f"SMS: {backend.display_name} selected but not configured")
            return backend
        logger.warning(f"SMS: unknown SMS_PROVIDER '{override}', auto-detecting")

    for name in BACKEND_PRIORITY:
        backend = BACKENDS[name](settings, client)
        if backend.is_configured():
            logger.info(f"SMS: Using {backend.display_name} provider")
            return backend

    logger.warning("SMS: No provider configured")
    return None


class SMSService:
    """SMS sending with audit logging and message formats per notification"""

    def __init__(self, db: AsyncSession, gateway: SMSGateway):
        self.gateway = gateway
        self.audit = NotificationAuditLogger(db)
        self.site_url = gateway.settings.SITE_URL.rstrip("/")

    async def send_sms(
        self,
        to: str,
        message: str,
        user_id: Optional[str] = None,
        template_key: Optional[str] = None,
    ) -> DeliveryResult:
        result = await self.gateway.send_sms(to, message)

        details = {"to": to, "provider": self.gateway.provider_name}
        if result.success:
            details["message_id"] = result.message_id
            await self.audit.log_sent("sms", user_id=user_id, template_key=template_key, details=details)
        else:
            await self.audit.log_failed(
                "sms", result.error, user_id=user_id, template_key=template_key, details=details
            )

        return result

    @property
    def track_url(self) -> str:
        return f"{self.site_url}/my-account/dashboard"

    async def send_order_confirmation_sms(
        self,
        phone: str,
        order_number: str,
        total_amount: Any,
        estimated_time: Any = 30,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        message = (
            f"Wingside: Order #{order_number} confirmed! Total: {total_amount}. "
            f"Ready in ~{estimated_time} mins. Track your order at {self.track_url}"
        )
        return await self.send_sms(phone, message, user_id=user_id, template_key="order_confirmation")

    async def send_order_status_sms(
        self,
        phone: str,
        order_number: str,
        status: str,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        status_messages = {
            "preparing": f"Wingside: Order #{order_number} is being prepared. We'll notify you when it's ready!",
            "ready": f"Wingside: Order #{order_number} is READY for pickup! Track at {self.track_url}",
            "picked_up": f"Wingside: Order #{order_number} has been picked up. Enjoy your wings!",
            "out_for_delivery": f"Wingside: Order #{order_number} is out for delivery! Track at {self.track_url}",
            "delivered": f"Wingside: Order #{order_number} has been delivered. Enjoy your wings!",
        }

        message = status_messages.get(
            status,
            f"Wingside: Order #{order_number} status updated to: {status}. Track at {self.track_url}",
        )
        return await self.send_sms(phone, message, user_id=user_id, template_key="order_status")

    async def send_payment_confirmation_sms(
        self,
        phone: str,
        order_number: str,
        amount: Any,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        message = (
            f"Wingside: Payment of {amount} received for Order #{order_number}. "
            f"We'll start preparing your order shortly!"
        )
        return await self.send_sms(phone, message, user_id=user_id, template_key="payment_confirmation")

    async def send_promotion_sms(
        self,
        phone: str,
        title: str,
        message: str,
        discount_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        body = f"Wingside: {title} - {message}"
        if discount_code:
            body += f" Use code: {discount_code}"
        body += " Reply STOP to unsubscribe."
        return await self.send_sms(phone, body, user_id=user_id, template_key="promotion")

    async def send_reward_sms(
        self,
        phone: str,
        points_earned: Any,
        total_points: Any,
        reward_message: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        body = reward_message or f"You earned {points_earned} points! Total: {total_points}"
        return await self.send_sms(phone, f"Wingside: {body}", user_id=user_id, template_key="reward")
