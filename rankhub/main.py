"""
rankhub application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `repositories/` and `core/` packages.

Run with ``uvicorn --factory rankhub.main:create_app``.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rankhub.api.v1.api import api_router
from rankhub.api.v1.endpoints.auth import limiter
from rankhub.core.config import Settings
from rankhub.core.exceptions import register_exception_handlers
from rankhub.core.security import PasswordHasher, TokenIssuer
from rankhub.db.base import Base
from rankhub.db.session import build_engine, build_session_factory
# Ensure all models are imported so metadata.create_all can see them
from rankhub.models.refresh_token import RefreshToken  # noqa: F401
from rankhub.models.user import User  # noqa: F401
from rankhub.repositories.refresh_tokens import RefreshTokenRepository
from rankhub.repositories.users import UserRepository
from rankhub.services.captcha import CaptchaVerifier
from rankhub.services.email import build_email_sender

logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = app.state.engine

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    async with app.state.session_factory() as session:
        purged = await RefreshTokenRepository(session).delete_expired()
        if purged:
            logger.info("Purged %d expired refresh tokens", purged)

        # Seed the super admin on first run
        users = UserRepository(session)
        if not await users.exists_by_email(settings.FIRST_ADMIN_EMAIL):
            await users.create(
                email=settings.FIRST_ADMIN_EMAIL,
                name="System Administrator",
                password_hash=app.state.password_hasher.hash(settings.FIRST_ADMIN_PASSWORD),
                role="super_admin",
                is_active=True,
            )
            logger.info(
                "Default super admin created: %s (password: <redacted>)",
                settings.FIRST_ADMIN_EMAIL,
            )

    logger.info("rankhub v%s started", settings.VERSION)
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Content ranking API: accounts and sessions",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Components shared by every request
    engine = build_engine(settings)
    application.state.settings = settings
    application.state.engine = engine
    application.state.session_factory = build_session_factory(engine)
    application.state.password_hasher = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    application.state.token_issuer = TokenIssuer(settings)
    application.state.captcha_verifier = CaptchaVerifier(settings)
    application.state.email_sender = build_email_sender(settings)

    application.state.limiter = limiter
    application.state.rate_limit_scope = secrets.token_hex(8)

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application
