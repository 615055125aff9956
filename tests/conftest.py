"""
Shared test fixtures for the rankhub test suite.

Every test gets its own in-memory aiosqlite database and its own app built by
``create_app``; outgoing email is captured instead of delivered.
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from rankhub.api.v1.deps import get_db, get_email_sender
from rankhub.core.config import Settings
from rankhub.core.security import PasswordHasher, TokenIssuer
from rankhub.db.base import Base
from rankhub.main import create_app
from rankhub.repositories.refresh_tokens import RefreshTokenRepository
from rankhub.repositories.users import UserRepository
from rankhub.services.auth_service import AuthService
from rankhub.services.captcha import CaptchaVerifier
from rankhub.services.email import EmailDeliveryError

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
DEFAULT_PASSWORD = "password123"


class RecordingEmailSender:
    """Collects outgoing emails as ``(kind, address, token)`` tuples.

    Set ``failing`` to make every send raise like an unreachable SMTP server.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.failing = False

    def _record(self, kind: str, email: str, token: str) -> None:
        if self.failing:
            raise EmailDeliveryError(f"Could not send {kind} email to {email}")
        self.sent.append((kind, email, token))

    async def send_confirmation_email(self, email: str, token: str) -> None:
        self._record("confirm", email, token)

    async def send_password_reset_email(self, email: str, token: str) -> None:
        self._record("reset", email, token)

    def of_kind(self, kind: str) -> list[tuple[str, str, str]]:
        return [m for m in self.sent if m[0] == kind]

    def last_token(self, kind: str) -> str:
        return self.of_kind(kind)[-1][2]


class StubCaptcha:
    def __init__(self, result: bool) -> None:
        self.result = result
        self.calls: list[tuple[str | None, str | None]] = []

    async def verify(self, token, remote_ip=None) -> bool:
        self.calls.append((token, remote_ip))
        return self.result


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=TEST_DATABASE_URL,
        ENVIRONMENT="test",
        JWT_SECRET="test-secret-key",
        BCRYPT_ROUNDS=4,
        RATE_LIMIT_ENABLED=False,
        RECAPTCHA_ENABLE=False,
        EMAIL_ENABLED=False,
        SITE_URL="http://test",
        CORS_ORIGINS=["*"],
    )


@pytest.fixture
async def engine():
    """Fresh in-memory database with all tables created."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def outbox() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def hasher(settings) -> PasswordHasher:
    return PasswordHasher(rounds=settings.BCRYPT_ROUNDS)


@pytest.fixture
def token_issuer(settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def app(settings, session_factory, outbox):
    application = create_app(settings)

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_email_sender] = lambda: outbox
    return application


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_service(db_session, settings, hasher, token_issuer, outbox) -> AuthService:
    return AuthService(
        UserRepository(db_session),
        RefreshTokenRepository(db_session),
        hasher,
        token_issuer,
        CaptchaVerifier(settings),
        outbox,
    )


@pytest.fixture
def captcha_auth_service(db_session, hasher, token_issuer, outbox):
    """Build an AuthService with CAPTCHA enforcement on and a stubbed verifier."""

    def _build(result: bool) -> tuple[AuthService, StubCaptcha]:
        captcha = StubCaptcha(result)
        service = AuthService(
            UserRepository(db_session),
            RefreshTokenRepository(db_session),
            hasher,
            token_issuer,
            captcha,
            outbox,
            captcha_enabled=True,
        )
        return service, captcha

    return _build


@pytest.fixture
def stub_captcha():
    return StubCaptcha


@pytest.fixture
def create_user(session_factory, hasher):
    """Insert a user straight into the database."""

    async def _create(
        email: str = "user@example.com",
        password: str = DEFAULT_PASSWORD,
        *,
        name: str = "Test User",
        role: str = "user",
        is_active: bool = True,
    ):
        async with session_factory() as session:
            return await UserRepository(session).create(
                email=email,
                name=name,
                password_hash=hasher.hash(password),
                role=role,
                is_active=is_active,
            )

    return _create


@pytest.fixture
def login(async_client):
    """Log in over HTTP and return the response body."""

    async def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        resp = await async_client.post(
            "/api/v1/auth/login", json={"email": email, "password": password}
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login
