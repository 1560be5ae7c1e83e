import os

# Configure the app before anything under app/ reads settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.models import Base
from app.services.email import EmailProvider
from app.services.push import PushProvider
from app.services.sms import SMSGateway, TermiiBackend

from tests.factories import FakeEmailTransport, FakePushSender, TermiiRecorder


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=TEST_DATABASE_URL,
        SECRET_KEY="test-secret",
        RESEND_API_KEY="re_test",
        VAPID_PUBLIC_KEY="test-public-key",
        VAPID_PRIVATE_KEY="test-private-key",
        TERMII_API_KEY="termii-test",
        SMS_PROVIDER=None,
        AFRICASTALKING_USERNAME=None,
        AFRICASTALKING_API_KEY=None,
        TWILIO_ACCOUNT_SID=None,
        TWILIO_AUTH_TOKEN=None,
        TWILIO_PHONE_NUMBER=None,
    )


@pytest.fixture
def email_transport() -> FakeEmailTransport:
    return FakeEmailTransport()


@pytest.fixture
def push_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def termii() -> TermiiRecorder:
    return TermiiRecorder()


@pytest_asyncio.fixture
async def sms_client(termii: TermiiRecorder) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(termii)) as client:
        yield client


@pytest.fixture
def sms_gateway(settings: Settings, sms_client: httpx.AsyncClient) -> SMSGateway:
    return SMSGateway(TermiiBackend(settings, sms_client), settings)


@pytest.fixture
def email_provider(db_session, settings, email_transport) -> EmailProvider:
    return EmailProvider(db_session, settings, transport=email_transport)


@pytest.fixture
def push_provider(db_session, settings, push_sender) -> PushProvider:
    return PushProvider(db_session, settings, sender=push_sender)
