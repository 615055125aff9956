"""
FastAPI dependencies: components from app state, DB session, auth guards.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rankhub.core.config import Settings
from rankhub.core.exceptions import AuthError
from rankhub.core.security import PasswordHasher, TokenIssuer
from rankhub.models.user import User
from rankhub.repositories.refresh_tokens import RefreshTokenRepository
from rankhub.repositories.users import UserRepository
from rankhub.services.auth_service import AuthService
from rankhub.services.captcha import CaptchaVerifier
from rankhub.services.email import EmailSender

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ── Components built once in create_app ─────────────────────────────
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_captcha_verifier(request: Request) -> CaptchaVerifier:
    return request.app.state.captcha_verifier


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


# ── Database session ────────────────────────────────────────────────
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_user_repository(db: AsyncSession = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_refresh_token_repository(
    db: AsyncSession = Depends(get_db),
) -> RefreshTokenRepository:
    return RefreshTokenRepository(db)


def get_auth_service(
    users: UserRepository = Depends(get_user_repository),
    refresh_tokens: RefreshTokenRepository = Depends(get_refresh_token_repository),
    settings: Settings = Depends(get_settings),
    hasher: PasswordHasher = Depends(get_password_hasher),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
    email: EmailSender = Depends(get_email_sender),
) -> AuthService:
    return AuthService(
        users,
        refresh_tokens,
        hasher,
        token_issuer,
        captcha,
        email,
        captcha_enabled=settings.RECAPTCHA_ENABLE,
    )


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
    users: UserRepository = Depends(get_user_repository),
) -> User:
    """Resolve the bearer access token to an active user."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = token_issuer.verify_access_token(credentials.credentials)
    except AuthError as exc:
        logger.warning("Rejected access token: %s", exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    user = await users.find_by_id(claims.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only allow admin and super admin roles to proceed."""
    if not current_user.is_admin:
        logger.warning("Unauthorized admin access attempt by user id=%s", current_user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
