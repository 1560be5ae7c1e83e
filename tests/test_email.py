import json

import httpx
from sqlalchemy import select

from app.models import EmailTemplate, NotificationLog
from app.services.email import EmailProvider, ResendTransport, SMTPTransport, build_transport

from tests.factories import FakeEmailTransport, add_templates


async def email_logs(db_session):
    result = await db_session.execute(select(NotificationLog).where(NotificationLog.channel == "email"))
    return result.scalars().all()


async def test_template_is_rendered_and_sent(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    result = await email_provider.send_email(
        to="ada@example.com",
        template_key="order_confirmation",
        variables={"customer_name": "Ada", "order_number": "WS-1", "total_amount": "₦5,000.00"},
        user_id="u1",
    )

    assert result.success is True
    assert result.message_id == "email-1"
    sent = email_transport.sent[0]
    assert sent["to"] == ["ada@example.com"]
    assert sent["subject"] == "Order #WS-1 confirmed"
    assert sent["html"] == "<p>Hi Ada, order WS-1 totals ₦5,000.00</p>"
    assert sent["text"] == "Hi Ada, order WS-1 confirmed"
    assert sent["from"] == "Wingside <notifications@wingside.ng>"
    assert sent["reply_to"] == "support@wingside.ng"


async def test_explicit_subject_overrides_template(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    await email_provider.send_email(
        to="ada@example.com",
        subject="Custom subject",
        template_key="order_confirmation",
        variables={"order_number": "WS-1"},
    )

    assert email_transport.sent[0]["subject"] == "Custom subject"


async def test_missing_variables_stay_visible(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    await email_provider.send_email(to="ada@example.com", template_key="order_confirmation", variables={})

    assert "{{customer_name}}" in email_transport.sent[0]["html"]


async def test_html_variables_are_escaped(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    await email_provider.send_email(
        to="ada@example.com",
        template_key="order_confirmation",
        variables={"customer_name": "<img src=x onerror=alert(1)>", "order_number": "WS-1"},
    )

    sent = email_transport.sent[0]
    assert "<img" not in sent["html"]
    assert "&lt;img" in sent["html"]
    # Plain text keeps the raw value
    assert "<img src=x onerror=alert(1)>" in sent["text"]


async def test_escaping_can_be_disabled(db_session, settings, email_transport) -> None:
    await add_templates(db_session)
    provider = EmailProvider(
        db_session, settings.model_copy(update={"EMAIL_ESCAPE_HTML_VARIABLES": False}), transport=email_transport
    )

    await provider.send_email(to="a@example.com", template_key="reward_earned", variables={"customer_name": "<b>A</b>"})

    assert "<b>A</b>" in email_transport.sent[0]["html"]


async def test_unknown_template_fails_before_sending(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    result = await email_provider.send_email(to="ada@example.com", template_key="does_not_exist")

    assert result.success is False
    assert result.error == "Template not found"
    assert result.error_code == "TEMPLATE_NOT_FOUND"
    assert email_transport.sent == []


async def test_inactive_template_is_not_found(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    result = await email_provider.send_email(to="ada@example.com", template_key="retired")

    assert result.error_code == "TEMPLATE_NOT_FOUND"
    assert email_transport.sent == []


async def test_missing_content_is_validation_error(email_provider, email_transport) -> None:
    result = await email_provider.send_email(to="ada@example.com", subject="No body")

    assert result.success is False
    assert result.error_code == "VALIDATION_ERROR"
    assert email_transport.sent == []


async def test_unconfigured_transport_is_configuration_error(db_session, settings) -> None:
    transport = FakeEmailTransport(configured=False)
    provider = EmailProvider(db_session, settings, transport=transport)

    result = await provider.send_email(to="ada@example.com", subject="Hi", html="<p>Hi</p>")

    assert result.error_code == "CONFIGURATION_ERROR"
    assert transport.sent == []


async def test_every_call_writes_one_audit_row(db_session, settings) -> None:
    await add_templates(db_session)
    transport = FakeEmailTransport(fail_for={"bounce@example.com"})
    provider = EmailProvider(db_session, settings, transport=transport)

    await provider.send_email(to="ok@example.com", subject="Hi", html="<p>Hi</p>", user_id="u1")
    await provider.send_email(to="bounce@example.com", subject="Hi", html="<p>Hi</p>", user_id="u2")
    await provider.send_email(to="ok@example.com", template_key="nope", user_id="u3")

    logs = await email_logs(db_session)
    by_user = {log.user_id: log for log in logs}
    assert len(logs) == 3
    assert by_user["u1"].status == "sent"
    assert by_user["u1"].sent_at is not None
    assert by_user["u2"].status == "failed"
    assert by_user["u2"].error_message == "Mailbox unavailable"
    assert by_user["u3"].status == "failed"
    assert by_user["u3"].template_key == "nope"


async def test_order_status_helper_picks_template_per_status(db_session, email_provider, email_transport) -> None:
    await add_templates(db_session)

    await email_provider.send_order_status_email("a@example.com", "Ada", "ready", {"order_number": "WS-2"})
    await email_provider.send_order_status_email(
        "a@example.com", "Ada", "delivered", {"order_number": "WS-2", "points_earned": 50}
    )

    assert email_transport.sent[0]["subject"] == "Order #WS-2 update"
    assert email_transport.sent[1]["html"] == "<p>Enjoy! You earned 50 points</p>"


async def test_password_reset_email(db_session, email_provider, email_transport) -> None:
    db_session.add(
        EmailTemplate(
            template_key="password_reset",
            subject="Reset your Wingside password",
            html_content="<p>Hi {{customer_name}}, <a href=\"{{reset_url}}\">reset your password</a></p>",
            text_content="Hi {{customer_name}}, reset your password: {{reset_url}}",
        )
    )
    await db_session.commit()

    result = await email_provider.send_password_reset_email(
        "ada@example.com", "Ada", "https://wingside.ng/reset-password?token=abc123"
    )

    assert result.success is True
    sent = email_transport.sent[0]
    assert sent["subject"] == "Reset your Wingside password"
    assert sent["html"] == '<p>Hi Ada, <a href="https://wingside.ng/reset-password?token=abc123">reset your password</a></p>'
    assert sent["text"] == "Hi Ada, reset your password: https://wingside.ng/reset-password?token=abc123"
    log = (await email_logs(db_session))[0]
    assert (log.template_key, log.status) == ("password_reset", "sent")


async def test_resend_transport_posts_json(settings) -> None:
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "re_123"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = ResendTransport(settings, client)
        message_id = await transport.send(
            from_email="Wingside <notifications@wingside.ng>",
            to=["ada@example.com"],
            subject="Hi",
            html="<p>Hi</p>",
            reply_to="support@wingside.ng",
        )

    assert message_id == "re_123"
    request = requests[0]
    assert str(request.url) == "https://api.resend.com/emails"
    assert request.headers["Authorization"] == "Bearer re_test"
    body = json.loads(request.content)
    assert body["to"] == ["ada@example.com"]
    assert body["reply_to"] == "support@wingside.ng"
    assert "text" not in body


async def test_resend_error_becomes_failed_result(db_session, settings) -> None:
    def handler(request):
        return httpx.Response(422, json={"message": "Invalid `to` field"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = EmailProvider(db_session, settings, transport=ResendTransport(settings, client))
        result = await provider.send_email(to="bad", subject="Hi", html="<p>Hi</p>")

    assert result.success is False
    assert result.error == "Invalid `to` field"
    assert result.error_code == "PROVIDER_ERROR"


def test_transport_selection(settings) -> None:
    assert isinstance(build_transport(settings), ResendTransport)
    smtp = build_transport(settings.model_copy(update={"EMAIL_TRANSPORT": "smtp"}))
    assert isinstance(smtp, SMTPTransport)
    assert smtp.is_configured() is False
