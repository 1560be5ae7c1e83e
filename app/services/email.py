"""
Email service for sending transactional emails

Templates are stored in the email_templates table and rendered with
{{variable}} substitution. Delivery goes through one transport per
deployment: the Resend HTTP API (default) or plain SMTP.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Dict, List, Optional, Union
import logging

import aiosmtplib
import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import (
    ConfigurationError,
    NotificationError,
    ProviderError,
    TemplateNotFound,
    ValidationError,
)
from app.models.notification import EmailTemplate
from app.schemas.notification import DeliveryResult
from app.services.audit import NotificationAuditLogger
from app.services.templates import render_html_template, render_template

logger = logging.getLogger(__name__)

# Email template used for each order status
ORDER_STATUS_TEMPLATES = {
    "preparing": "order_ready",
    "ready": "order_ready",
    "picked_up": "order_ready",
    "out_for_delivery": "order_ready",
    "delivered": "order_delivered",
}


class EmailTransport:
    """Sends one fully rendered message, returns the provider message id"""

    name = ""

    def is_configured(self) -> bool:
        raise NotImplementedError

    async def send(
        self,
        from_email: str,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        raise NotImplementedError


class ResendTransport(EmailTransport):
    """Resend transactional email API"""

    name = "resend"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.RESEND_API_KEY
        self.api_url = settings.RESEND_API_URL
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, from_email, to, subject, html, text=None, reply_to=None) -> Optional[str]:
        payload: Dict[str, Any] = {
            "from": from_email,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if reply_to:
            payload["reply_to"] = reply_to

        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Resend request failed: {exc}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            logger.error(f"Resend error {response.status_code}: {response.text[:300]}")
            raise ProviderError(
                (data or {}).get("message") or f"Resend returned {response.status_code}",
                response.status_code,
            )

        return (data or {}).get("id")


class SMTPTransport(EmailTransport):
    """SMTP with STARTTLS"""

    name = "smtp"

    def __init__(self, settings: Settings):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    async def send(self, from_email, to, subject, html, text=None, reply_to=None) -> Optional[str]:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = from_email
        msg['To'] = ', '.join(to)
        if reply_to:
            msg['Reply-To'] = reply_to
        message_id = make_msgid()
        msg['Message-ID'] = message_id

        if text:
            msg.attach(MIMEText(text, 'plain', 'utf-8'))
        msg.attach(MIMEText(html, 'html', 'utf-8'))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=True,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"SMTP error: {str(e)}")
            raise ProviderError(str(e))

        return message_id


def build_transport(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> EmailTransport:
    if settings.EMAIL_TRANSPORT.lower() == "smtp":
        return SMTPTransport(settings)
    return ResendTransport(settings, client)


class EmailProvider:
    """Template-aware email sending with one audit row per call"""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        transport: Optional[EmailTransport] = None,
    ):
        self.db = db
        self.settings = settings
        self.transport = transport or build_transport(settings)
        self.audit = NotificationAuditLogger(db)

    async def send_email(
        self,
        to: Union[str, List[str]],
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
        template_key: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        from_email: Optional[str] = None,
        reply_to: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Send an email, optionally rendered from a stored template

        An explicit subject wins over the template's subject. Never raises
        for delivery failures; the outcome is in the returned result.
        """
        recipients = to if isinstance(to, list) else [to]

        try:
            if template_key:
                template = await self._load_template(template_key)
                variables = variables or {}

                if self.settings.EMAIL_ESCAPE_HTML_VARIABLES:
                    html = render_html_template(template.html_content, variables)
                else:
                    html = render_template(template.html_content, variables)
                text = render_template(template.text_content, variables) if template.text_content else None
                subject = subject or render_template(template.subject, variables)

            if not html or not subject:
                raise ValidationError("Missing required email content")

            if not self.transport.is_configured():
                raise ConfigurationError(f"Email transport '{self.transport.name}' not configured")

            message_id = await self.transport.send(
                from_email=from_email or self.settings.EMAIL_FROM,
                to=recipients,
                subject=subject,
                html=html,
                text=text,
                reply_to=reply_to or self.settings.EMAIL_REPLY_TO,
            )

        except NotificationError as e:
            logger.error(f"Failed to send email to {recipients}: {e.message}")
            await self.audit.log_failed(
                "email",
                e.message,
                user_id=user_id,
                template_key=template_key,
                details={"to": recipients},
            )
            return DeliveryResult(success=False, error=e.message, error_code=e.error_code)

        logger.info(f"Email sent successfully to {recipients}")
        await self.audit.log_sent(
            "email",
            user_id=user_id,
            template_key=template_key,
            details={"to": recipients, "subject": subject, "message_id": message_id},
        )
        return DeliveryResult(success=True, message_id=message_id)

    async def _load_template(self, template_key: str) -> EmailTemplate:
        try:
            result = await self.db.execute(
                select(EmailTemplate).where(
                    EmailTemplate.template_key == template_key,
                    EmailTemplate.is_active.is_(True),
                )
            )
            template = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Template load error for {template_key}: {str(e)}")
            template = None

        if template is None:
            raise TemplateNotFound(template_key)
        return template

    async def send_order_confirmation_email(
        self,
        to: str,
        customer_name: str,
        order_data: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        """Send order confirmation email"""
        return await self.send_email(
            to=to,
            template_key="order_confirmation",
            variables={"customer_name": customer_name, **order_data},
            user_id=user_id,
        )

    async def send_order_status_email(
        self,
        to: str,
        customer_name: str,
        status: str,
        order_data: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        """Send order status update email"""
        site_url = self.settings.SITE_URL.rstrip("/")
        order_number = order_data.get("order_number", "")
        variables = {
            "customer_name": customer_name,
            "status": status,
            "review_url": f"{site_url}/review/{order_number}",
            "reorder_url": f"{site_url}/order",
            **order_data,
        }
        return await self.send_email(
            to=to,
            template_key=ORDER_STATUS_TEMPLATES.get(status, "order_ready"),
            variables=variables,
            user_id=user_id,
        )

    async def send_promotion_email(
        self,
        to: str,
        promo_data: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        return await self.send_email(to=to, template_key="promotion", variables=promo_data, user_id=user_id)

    async def send_reward_email(
        self,
        to: str,
        customer_name: Optional[str],
        reward_data: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> DeliveryResult:
        return await self.send_email(
            to=to,
            template_key="reward_earned",
            variables={"customer_name": customer_name, **reward_data},
            user_id=user_id,
        )

    async def send_password_reset_email(self, to: str, customer_name: str, reset_url: str) -> DeliveryResult:
        return await self.send_email(
            to=to,
            template_key="password_reset",
            variables={"customer_name": customer_name, "reset_url": reset_url},
        )
