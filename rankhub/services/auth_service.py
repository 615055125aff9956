"""
Authentication and account lifecycle.

Account states: unconfirmed (inactive, confirm token set) → active →
disabled (inactive, re-enabled only by an administrator).  Domain operations
return ``User`` objects; ``issue_tokens`` is the only place that mints token
material, and it is called by the HTTP layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from rankhub.core.exceptions import AuthError, ErrorKind
from rankhub.core.security import (
    AccessTokenClaims,
    PasswordHasher,
    TokenIssuer,
    generate_secure_token,
)
from rankhub.models.user import User
from rankhub.repositories.refresh_tokens import RefreshTokenRepository
from rankhub.repositories.users import UserRepository
from rankhub.schemas.auth import LoginRequest, RegisterRequest
from rankhub.schemas.user import UserRead
from rankhub.services.captcha import CaptchaVerifier
from rankhub.services.email import EmailDeliveryError, EmailSender

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


@dataclass(frozen=True)
class AuthTokens:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        refresh_tokens: RefreshTokenRepository,
        hasher: PasswordHasher,
        token_issuer: TokenIssuer,
        captcha: CaptchaVerifier,
        email: EmailSender,
        *,
        captcha_enabled: bool = False,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._hasher = hasher
        self._tokens = token_issuer
        self._captcha = captcha
        self._email = email
        self._captcha_enabled = captcha_enabled

    @staticmethod
    def to_safe_user(user: User) -> UserRead:
        """Public view of ``user``: no password hash, no one-time tokens."""
        return UserRead.model_validate(user)

    async def _check_captcha(self, token: str | None, ip_address: str | None) -> None:
        if not self._captcha_enabled:
            return
        if not await self._captcha.verify(token, ip_address):
            raise AuthError(ErrorKind.CAPTCHA_FAILED, "CAPTCHA verification failed")

    # ── Registration & confirmation ─────────────────────────────────
    async def register(self, data: RegisterRequest, ip_address: str | None = None) -> User:
        """Create an inactive account and email its confirmation token."""
        await self._check_captcha(data.captcha_token, ip_address)

        if await self._users.exists_by_email(data.email):
            raise AuthError(ErrorKind.ALREADY_EXISTS, "User with this email already exists")

        user = await self._users.create(
            email=data.email,
            name=data.name,
            password_hash=self._hasher.hash(data.password),
            role="user",
            is_active=False,
            confirm_token=generate_secure_token(),
        )
        try:
            await self._email.send_confirmation_email(user.email, user.confirm_token)
        except EmailDeliveryError:
            # An account whose confirmation never went out can never be activated.
            logger.error("Confirmation email to %s failed; removing user id=%s", user.email, user.id)
            await self._users.delete(user)
            raise
        logger.info("User registered: id=%s email=%s", user.id, user.email)
        return user

    async def confirm(self, token: str) -> bool:
        """Activate the account holding ``token``; False when nothing matches."""
        if not token:
            return False
        user = await self._users.find_by_confirm_token(token)
        if user is None:
            return False
        await self._users.activate(user)
        logger.info("User confirmed: id=%s", user.id)
        return True

    # ── Sessions ────────────────────────────────────────────────────
    async def login(self, data: LoginRequest) -> User:
        user = await self._users.find_by_email(data.email)
        if user is None:
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        # Confirmation state is not secret, so this one is distinguishable.
        if not user.is_active:
            raise AuthError(
                ErrorKind.ACCOUNT_DISABLED,
                "Account is disabled. Please contact administrator.",
            )

        if not user.password_hash or not self._hasher.verify(data.password, user.password_hash):
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        return await self._users.update_last_login(user)

    async def refresh_token(self, refresh_token: str) -> User:
        """Consume a refresh token (single use) and return its owner."""
        record = await self._refresh_tokens.consume(refresh_token)
        if record is None:
            raise AuthError(ErrorKind.TOKEN_INVALID_OR_EXPIRED, "Invalid or expired refresh token")

        user = await self._users.find_by_id(record.user_id)
        if user is None:
            raise AuthError(ErrorKind.USER_NOT_FOUND, "User not found")
        if not user.is_active:
            raise AuthError(ErrorKind.ACCOUNT_DISABLED, "Account is disabled")
        return user

    async def logout(self, refresh_token: str) -> None:
        await self._refresh_tokens.revoke(refresh_token)

    async def issue_tokens(
        self,
        user: User,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthTokens:
        access_token = self._tokens.generate_access_token(
            AccessTokenClaims(user_id=user.id, email=user.email, role=user.role)
        )
        refresh_token = self._tokens.generate_refresh_token()
        await self._refresh_tokens.create(
            user_id=user.id,
            token=refresh_token,
            expires_at=self._tokens.get_refresh_token_expiration(),
            user_agent=user_agent,
            ip_address=ip_address,
        )
        return AuthTokens(user=user, access_token=access_token, refresh_token=refresh_token)

    # ── Password reset ──────────────────────────────────────────────
    async def request_password_reset(
        self,
        email: str,
        captcha_token: str | None = None,
        ip_address: str | None = None,
    ) -> None:
        """Email a reset link.  Silent for unknown emails and while a
        previously issued reset token is still valid."""
        await self._check_captcha(captcha_token, ip_address)

        user = await self._users.find_by_email(email)
        if user is None:
            return

        if user.password_reset_token and user.password_reset_expires is not None:
            expires = user.password_reset_expires
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=timezone.utc)
            if expires > datetime.now(timezone.utc):
                logger.info("Password reset already pending for user id=%s", user.id)
                return

        token = self._tokens.generate_password_reset_token()
        await self._users.set_password_reset_token(
            user, token, self._tokens.get_password_reset_expiration()
        )
        try:
            await self._email.send_password_reset_email(user.email, token)
        except EmailDeliveryError:
            # An unsent token must not hold the anti-spam window open.
            await self._users.clear_password_reset_token(user)
            raise

    async def reset_password(self, token: str, new_password: str) -> None:
        user = await self._users.find_by_password_reset_token(token)
        if user is None:
            raise AuthError(ErrorKind.TOKEN_INVALID_OR_EXPIRED, "Invalid or expired reset token")

        await self._users.update_password(user, self._hasher.hash(new_password))
        revoked = await self._refresh_tokens.revoke_all_for_user(user.id)
        logger.info("Password reset for user id=%s; %d sessions revoked", user.id, revoked)
