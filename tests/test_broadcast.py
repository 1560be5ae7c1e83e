from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models import NotificationLog, Order, PushSubscription
from app.schemas.notification import BatchEmailRecipient, PushPayload
from app.services.broadcast import BroadcastService
from app.services.dispatcher import NotificationDispatcher
from app.services.email import EmailProvider

from tests.factories import FakeEmailTransport, add_preferences, add_profile, add_subscription, add_templates


@pytest.fixture
def dispatcher(db_session, sms_gateway, settings, email_provider, push_provider) -> NotificationDispatcher:
    return NotificationDispatcher(
        db_session, sms_gateway, settings, email_provider=email_provider, push_provider=push_provider
    )


@pytest.fixture
def broadcast(db_session, dispatcher) -> BroadcastService:
    return BroadcastService(db_session, dispatcher)


PROMO = {"promo_title": "Wing Wednesday", "promo_message": "Half price wings", "discount_code": "WED50"}


async def test_promotion_skips_users_without_profile(db_session, dispatcher) -> None:
    await add_templates(db_session)
    await add_profile(db_session, "u1", email="one@example.com", full_name="One")
    await add_profile(db_session, "u3", email="three@example.com", full_name="Three")

    results = await dispatcher.notify_promotion(["u1", "u2", "u3"], PROMO)

    assert [r.user_id for r in results] == ["u1", "u3"]
    assert all(r.result.email.sent for r in results)


async def test_channels_follow_contact_details(db_session, broadcast, email_transport, termii) -> None:
    await add_templates(db_session)
    await add_profile(db_session, "push-only")
    await add_profile(db_session, "with-phone", phone="08031234567")

    results = await broadcast.notify_many("promotion", PROMO, user_ids=["push-only", "with-phone"])

    by_user = {r.user_id: r.result for r in results}
    assert by_user["push-only"].email.sent is False
    assert by_user["push-only"].sms.sent is False
    assert by_user["push-only"].push.sent is True
    assert by_user["with-phone"].sms.sent is True
    assert email_transport.sent == []
    assert len(termii.requests) == 1


async def test_one_failing_recipient_does_not_stop_the_rest(db_session, settings, sms_gateway, push_provider) -> None:
    await add_templates(db_session)
    await add_profile(db_session, "u1", email="one@example.com")
    await add_profile(db_session, "u2", email="bounce@example.com")
    await add_profile(db_session, "u3", email="three@example.com")
    transport = FakeEmailTransport(fail_for={"bounce@example.com"})
    dispatcher = NotificationDispatcher(
        db_session,
        sms_gateway,
        settings,
        email_provider=EmailProvider(db_session, settings, transport=transport),
        push_provider=push_provider,
    )

    results = await BroadcastService(db_session, dispatcher).notify_many("promotion", PROMO, user_ids=["u1", "u2", "u3"])

    assert [r.result.email.sent for r in results] == [True, False, True]
    assert results[1].result.email.error == "Mailbox unavailable"


async def test_failed_audit_write_keeps_session_usable(db_session, broadcast, monkeypatch) -> None:
    await add_templates(db_session)
    await add_profile(db_session, "u1", email="one@example.com")
    await add_profile(db_session, "u2", email="two@example.com")
    await add_subscription(db_session, "u1", "https://push.example/u1")

    flush = db_session.flush
    failures = []

    async def flush_failing_once(*args, **kwargs):
        if not failures:
            failures.append(True)
            raise OperationalError("INSERT INTO notification_logs", {}, Exception("disk I/O error"))
        return await flush(*args, **kwargs)

    monkeypatch.setattr(db_session, "flush", flush_failing_once)

    results = await broadcast.notify_many("promotion", PROMO, user_ids=["u1", "u2"])

    assert [r.user_id for r in results] == ["u1", "u2"]
    assert all(r.result.email.sent for r in results)
    assert results[0].result.push.sent is True

    logs = (await db_session.execute(select(NotificationLog))).scalars().all()
    assert sorted((log.user_id, log.channel) for log in logs) == [("u1", "push"), ("u2", "email")]
    subscription = (await db_session.execute(select(PushSubscription))).scalar_one()
    assert subscription.last_used_at is not None


async def test_exclusions_are_applied(db_session, broadcast) -> None:
    await add_templates(db_session)
    await add_profile(db_session, "u1", email="one@example.com")
    await add_profile(db_session, "u2", email="two@example.com")

    results = await broadcast.notify_many("promotion", PROMO, user_ids=["u1", "u2"], exclude_user_ids=["u2"])

    assert [r.user_id for r in results] == ["u1"]


async def test_segments(db_session, broadcast) -> None:
    now = datetime.now(timezone.utc)
    await add_profile(db_session, "vip", reward_points=750, created_at=now - timedelta(days=90))
    await add_profile(db_session, "newbie", reward_points=0, created_at=now - timedelta(days=2))
    await add_profile(db_session, "regular", reward_points=120, created_at=now - timedelta(days=90))
    db_session.add_all(
        [
            Order(order_number="WS-1", user_id="regular", total_amount=Decimal("5000"), created_at=now - timedelta(days=3)),
            Order(order_number="WS-2", user_id="regular", total_amount=Decimal("2000"), created_at=now - timedelta(days=5)),
            Order(order_number="WS-3", user_id="vip", total_amount=Decimal("9000"), created_at=now - timedelta(days=60)),
        ]
    )
    await db_session.commit()
    await add_preferences(db_session, "vip", email_promotions=True)
    await add_preferences(db_session, "newbie", email_promotions=False, push_promotions=False)

    assert await broadcast.resolve_segment("vip") == ["vip"]
    assert await broadcast.resolve_segment("new") == ["newbie"]
    assert await broadcast.resolve_segment("active") == ["regular"]
    assert await broadcast.resolve_segment("all") == ["vip"]
    assert await broadcast.resolve_segment("nonsense") == []


async def test_batch_emails_count_failures(db_session, settings, sms_gateway, push_provider) -> None:
    await add_templates(db_session)
    transport = FakeEmailTransport(fail_for={"b@example.com"})
    dispatcher = NotificationDispatcher(
        db_session,
        sms_gateway,
        settings,
        email_provider=EmailProvider(db_session, settings, transport=transport),
        push_provider=push_provider,
    )
    service = BroadcastService(db_session, dispatcher)

    result = await service.send_batch_emails(
        [
            BatchEmailRecipient(email="a@example.com", variables={"promo_title": "A"}),
            BatchEmailRecipient(email="b@example.com", variables={"promo_title": "B"}),
            BatchEmailRecipient(email="c@example.com", variables={"promo_title": "C"}),
        ],
        "promotion",
    )

    assert result.success == 2
    assert result.failed == 1
    assert result.errors == ["b@example.com: Mailbox unavailable"]
    assert [sent["subject"] for sent in transport.sent] == ["A", "C"]


async def test_broadcast_push_passes_audience(db_session, broadcast, push_sender) -> None:
    await add_subscription(db_session, "u1", "https://push.example/1")
    await add_subscription(db_session, "u2", "https://push.example/2")

    result = await broadcast.send_broadcast_push(PushPayload(title="Hi"), exclude_users=["u2"])

    assert (result.success, result.failed) == (1, 0)
    assert len(push_sender.calls) == 1


async def test_newsletter_respects_opt_outs(db_session, broadcast, email_transport) -> None:
    await add_profile(db_session, "default", email="default@example.com")
    await add_profile(db_session, "opted-in", email="in@example.com")
    await add_profile(db_session, "opted-out", email="out@example.com")
    await add_profile(db_session, "email-off", email="off@example.com")
    await add_profile(db_session, "no-email")
    await add_preferences(db_session, "opted-in", email_newsletter=True)
    await add_preferences(db_session, "opted-out", email_newsletter=False)
    await add_preferences(db_session, "email-off", email_enabled=False)

    result = await broadcast.send_newsletter("October news", "<p>News</p>", "News")

    assert (result.success, result.failed) == (2, 0)
    recipients = sorted(sent["to"][0] for sent in email_transport.sent)
    assert recipients == ["default@example.com", "in@example.com"]
