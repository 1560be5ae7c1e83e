from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.api.deps import get_dispatcher, get_push_provider, get_sms_gateway
from app.core.database import get_db
from app.core.security import SecurityUtils
from app.main import app
from app.models import PushSubscription
from app.services.dispatcher import NotificationDispatcher

from tests.factories import AUTH_SECRET, P256DH_KEY, add_subscription, add_templates


def auth_headers(user_id: str = "u1", role: str = "customer") -> dict:
    token = SecurityUtils.create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(db_session, sms_gateway, settings, email_provider, push_provider) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    dispatcher = NotificationDispatcher(
        db_session, sms_gateway, settings, email_provider=email_provider, push_provider=push_provider
    )
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_provider] = lambda: push_provider
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_sms_gateway] = lambda: sms_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


SUBSCRIPTION = {
    "endpoint": "https://push.example/abc",
    "keys": {"p256dh": P256DH_KEY, "auth": AUTH_SECRET},
}


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_detailed_health_reports_channels(client: AsyncClient) -> None:
    response = await client.get("/health/detailed")

    data = response.json()
    assert data["components"]["database"]["status"] == "healthy"
    assert data["components"]["sms"] == {"provider": "termii", "configured": True}


async def test_requires_authentication(client: AsyncClient) -> None:
    response = await client.get("/api/v1/notifications/preferences")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


async def test_rejects_bad_token(client: AsyncClient) -> None:
    response = await client.get(
        "/api/v1/notifications/preferences", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


async def test_subscribe_and_unsubscribe(client: AsyncClient, db_session) -> None:
    response = await client.post(
        "/api/v1/notifications/push/subscribe",
        json={"subscription": SUBSCRIPTION},
        headers={**auth_headers(), "User-Agent": "Firefox"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    subscription = (await db_session.execute(select(PushSubscription))).scalar_one()
    assert subscription.user_id == "u1"
    assert subscription.user_agent == "Firefox"

    response = await client.request(
        "DELETE",
        "/api/v1/notifications/push/subscribe",
        json={"endpoint": SUBSCRIPTION["endpoint"]},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    await db_session.refresh(subscription)
    assert subscription.is_active is False


async def test_subscribe_rejects_malformed_keys(client: AsyncClient, db_session) -> None:
    response = await client.post(
        "/api/v1/notifications/push/subscribe",
        json={"subscription": {"endpoint": "https://push.example/bad", "keys": {"p256dh": "not-a-key", "auth": AUTH_SECRET}}},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert (await db_session.execute(select(PushSubscription))).scalars().all() == []


async def test_unsubscribe_action_on_post(client: AsyncClient, db_session) -> None:
    await add_subscription(db_session, "u1", SUBSCRIPTION["endpoint"])

    response = await client.post(
        "/api/v1/notifications/push/subscribe",
        json={"subscription": SUBSCRIPTION, "action": "unsubscribe"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    subscription = (await db_session.execute(select(PushSubscription))).scalar_one()
    await db_session.refresh(subscription)
    assert subscription.is_active is False


async def test_vapid_public_key(client: AsyncClient) -> None:
    response = await client.get("/api/v1/notifications/push/vapid-public-key")
    assert response.json() == {"public_key": "test-public-key"}


async def test_preferences_round_trip(client: AsyncClient) -> None:
    response = await client.get("/api/v1/notifications/preferences", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["preferences"]["email_promotions"] is True

    response = await client.put(
        "/api/v1/notifications/preferences",
        json={"email_promotions": False, "sms_enabled": False},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    preferences = response.json()["preferences"]
    assert preferences["email_promotions"] is False
    assert preferences["sms_enabled"] is False
    assert preferences["push_enabled"] is True


async def test_preferences_reject_unknown_fields(client: AsyncClient) -> None:
    response = await client.put(
        "/api/v1/notifications/preferences",
        json={"email_everything": False},
        headers=auth_headers(),
    )
    assert response.status_code == 422


async def test_empty_preference_update_is_bad_request(client: AsyncClient) -> None:
    response = await client.put("/api/v1/notifications/preferences", json={}, headers=auth_headers())
    assert response.status_code == 400


async def test_admin_send_requires_admin(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/notifications/admin/send",
        json={"type": "broadcast", "recipients": {}, "notification": {"title": "Hi"}},
        headers=auth_headers(role="customer"),
    )
    assert response.status_code == 403


async def test_admin_broadcast(client: AsyncClient, db_session, push_sender) -> None:
    await add_subscription(db_session, "u1", "https://push.example/1")
    await add_subscription(db_session, "u2", "https://push.example/2")

    response = await client.post(
        "/api/v1/notifications/admin/send",
        json={
            "type": "broadcast",
            "recipients": {"user_ids": ["u2"]},
            "notification": {"title": "Wing Wednesday", "message": "Half price"},
        },
        headers=auth_headers("admin-1", role="admin"),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "sent": 1, "failed": 0}
    assert push_sender.calls[0]["subscription_info"]["endpoint"] == "https://push.example/2"


async def test_admin_individual(client: AsyncClient, db_session, email_transport) -> None:
    await add_templates(db_session)

    response = await client.post(
        "/api/v1/notifications/admin/send",
        json={
            "type": "individual",
            "recipients": [
                {"user_id": "u1", "email": "one@example.com", "name": "One"},
                {"user_id": "u2"},
            ],
            "notification": {"type": "promotion", "data": {"promo_title": "Deal", "promo_message": "Wings"}},
            "channels": ["email"],
        },
        headers=auth_headers("admin-1", role="admin"),
    )

    assert response.status_code == 200
    results = {item["user_id"]: item["result"] for item in response.json()["results"]}
    assert results["u1"]["email"]["sent"] is True
    assert results["u2"]["email"]["sent"] is False
    assert results["u2"]["email"]["skipped_reason"] == "no_contact"
    assert email_transport.sent[0]["subject"] == "Deal"


async def test_admin_individual_needs_recipient_list(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/notifications/admin/send",
        json={"type": "individual", "recipients": {"user_ids": ["u1"]}, "notification": {}},
        headers=auth_headers("admin-1", role="admin"),
    )
    assert response.status_code == 400
