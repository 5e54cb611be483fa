"""
Global test fixtures and configuration.

This module provides base fixtures for all tests:
- In-memory SQLite credential store, fresh for every test
- Redis client (in-memory fake)
- Recording fake for code delivery, so tests can read the codes "sent"
- Fake Google adapter returning a configurable profile
- HTTP client with dependency overrides
- Base data fixtures (user, two_fa_user, auth_headers)
"""

import os
from dataclasses import dataclass
from typing import AsyncGenerator, List, Optional

import pytest
from cryptography.fernet import Fernet
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE importing app
os.environ["MODE"] = "test"
os.environ["JWT_SECRET"] = "test-secret-key-for-household-auth"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from household_auth.main import app
from household_auth.api.dependencies import get_db, get_delivery, get_oauth_adapter, get_redis
from household_auth.core.encryption import CodeCipher, get_code_cipher
from household_auth.core.errors import DeliveryFailed
from household_auth.core.oauth import GOOGLE, GoogleOAuthAdapter, OAuthProfile
from household_auth.core.security import create_session_token
from household_auth.db.session import Database
from household_auth.services.codes import CodePurpose
from household_auth.services.delivery import CodeDelivery, resolve_channel


# ==================== Fakes ====================

@dataclass
class SentCode:
    user_id: int
    code: str
    purpose: CodePurpose
    channel: str


class FakeDelivery(CodeDelivery):
    """Records codes instead of queueing Celery tasks."""

    def __init__(self):
        super().__init__(local=True)
        self.sent: List[SentCode] = []
        self.fail = False

    async def send(self, user, code, purpose, preferred=None):
        channel = resolve_channel(user, preferred)
        if self.fail:
            raise DeliveryFailed(channel=channel)
        self.sent.append(SentCode(user.id, code, purpose, channel))
        return channel

    def last(self, purpose: Optional[CodePurpose] = None) -> SentCode:
        matches = [s for s in self.sent if purpose is None or s.purpose == purpose]
        assert matches, f"no code sent for {purpose}"
        return matches[-1]

    def codes_for(self, purpose: CodePurpose) -> List[SentCode]:
        return [s for s in self.sent if s.purpose == purpose]


class FakeGoogleAdapter(GoogleOAuthAdapter):
    """Skips the network: the callback resolves to self.profile."""

    def __init__(self):
        super().__init__()
        self.profile = OAuthProfile(
            provider=GOOGLE,
            provider_account_id="google-sub-1",
            email="oauth@example.com",
            email_verified=True,
            name="OAuth User",
            picture="https://example.com/avatar.png",
            refresh_token="google-refresh-token",
        )
        self.seen_nonces: List[str] = []

    async def fetch_profile(self, code, nonce):
        self.seen_nonces.append(nonce)
        return self.profile


# ==================== Database ====================

@pytest.fixture(scope="function")
async def database() -> AsyncGenerator[Database, None]:
    """
    Fresh in-memory credential store per test.

    StaticPool keeps the single SQLite connection alive for the whole test.
    """
    db = Database(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.open(create_tables=True)
    yield db
    await db.close()


@pytest.fixture(scope="function")
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def cipher() -> CodeCipher:
    return get_code_cipher()


# ==================== Redis ====================

@pytest.fixture(scope="function")
async def redis_client() -> AsyncGenerator[FakeAsyncRedis, None]:
    """
    Create fake Redis client (in-memory) for each test.
    """
    redis = FakeAsyncRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


# ==================== Collaborators ====================

@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def google_adapter() -> FakeGoogleAdapter:
    return FakeGoogleAdapter()


# ==================== FastAPI Client ====================

@pytest.fixture(scope="function")
async def client(
    database: Database,
    db_session: AsyncSession,
    redis_client: FakeAsyncRedis,
    delivery: FakeDelivery,
    google_adapter: FakeGoogleAdapter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create HTTP client for testing FastAPI endpoints.

    Requests share the test's db_session, so state written by an endpoint is
    visible to assertions without a re-query.
    """

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        yield redis_client

    app.state.db = database
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_delivery] = lambda: delivery
    app.dependency_overrides[get_oauth_adapter] = lambda: google_adapter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Clear overrides after test
    app.dependency_overrides.clear()


# ==================== Base Data Fixtures ====================

@pytest.fixture
async def user(db_session: AsyncSession):
    """Verified user with 2FA off."""
    from tests.factories.user import UserFactory
    user = await UserFactory.create_async(db_session, email="user@example.com", name="Test User")
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def two_fa_user(db_session: AsyncSession):
    """User with email 2FA enabled."""
    from tests.factories.user import UserFactory
    user = await UserFactory.create_async(
        db_session,
        email="secure@example.com",
        name="Secure User",
        two_fa_enabled=True,
        two_fa_method="email",
    )
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def auth_headers(user):
    """Bearer header with a valid session token for `user`."""
    token = create_session_token(user.id, claims={"email": user.email}, token_version=user.token_version)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_auth_headers():
    """Build a Bearer header for any user, using its current token_version."""
    def _make(user):
        token = create_session_token(user.id, claims={"email": user.email}, token_version=user.token_version)
        return {"Authorization": f"Bearer {token}"}
    return _make
