"""
Password hashing (bcrypt), JWT access tokens and opaque random tokens.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from rankhub.core.config import DEFAULT_JWT_SECRET, Settings
from rankhub.core.exceptions import AuthError, ErrorKind

logger = logging.getLogger(__name__)

_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


def parse_duration(value: str) -> timedelta:
    """Parse ``<int><d|h|m>`` (``7d``, ``12h``, ``30m``) into a timedelta."""
    value = value.strip()
    if len(value) < 2 or value[-1] not in _UNITS or not value[:-1].isdigit():
        raise ValueError(f"Invalid duration: {value!r}")
    return timedelta(**{_UNITS[value[-1]]: int(value[:-1])})


def generate_secure_token(nbytes: int = 32) -> str:
    """Hex-encoded random token (``2 * nbytes`` characters)."""
    return secrets.token_hex(nbytes)


# ── Passwords ───────────────────────────────────────────────────────
class PasswordHasher:
    """bcrypt via passlib; salt and cost are embedded in the hash string."""

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )

    def hash(self, plain: str) -> str:
        return self._context.hash(plain)

    def verify(self, plain: str, hashed: str) -> bool:
        return self._context.verify(plain, hashed)


# ── JWT tokens ──────────────────────────────────────────────────────
@dataclass(frozen=True)
class AccessTokenClaims:
    user_id: int
    email: str
    role: str


class TokenIssuer:
    """Signs access tokens and mints the opaque refresh / reset tokens."""

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.JWT_SECRET
        self._algorithm = settings.JWT_ALGORITHM
        self._access_ttl = parse_duration(settings.JWT_EXPIRES_IN)
        self._refresh_ttl = parse_duration(settings.JWT_REFRESH_EXPIRES_IN)
        self._reset_ttl = parse_duration(settings.PASSWORD_RESET_TOKEN_EXPIRES)

        if self._secret == DEFAULT_JWT_SECRET:
            logger.warning(
                "Using the default JWT secret. Set JWT_SECRET before running in production!"
            )

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    def generate_access_token(self, claims: AccessTokenClaims) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode(
            {
                "sub": str(claims.user_id),
                "email": claims.email,
                "role": claims.role,
                "type": "access",
                "iat": now,
                "exp": now + self._access_ttl,
            },
            self._secret,
            algorithm=self._algorithm,
        )

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Return the claims of a valid access token.

        Raises ``AuthError`` with ``ACCESS_TOKEN_EXPIRED`` for a well-formed
        token past its ``exp`` and ``ACCESS_TOKEN_INVALID`` for everything
        else (bad signature, garbage, wrong token type, missing claims).
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise AuthError(ErrorKind.ACCESS_TOKEN_EXPIRED, "Token expired") from exc
        except JWTError as exc:
            raise AuthError(ErrorKind.ACCESS_TOKEN_INVALID, "Invalid token") from exc

        if payload.get("type") != "access":
            raise AuthError(ErrorKind.ACCESS_TOKEN_INVALID, "Invalid token")
        try:
            return AccessTokenClaims(
                user_id=int(payload["sub"]),
                email=payload["email"],
                role=payload["role"],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError(ErrorKind.ACCESS_TOKEN_INVALID, "Invalid token") from exc

    def generate_refresh_token(self) -> str:
        return generate_secure_token(64)

    def get_refresh_token_expiration(self) -> datetime:
        return datetime.now(timezone.utc) + self._refresh_ttl

    def generate_password_reset_token(self) -> str:
        return generate_secure_token(32)

    def get_password_reset_expiration(self) -> datetime:
        return datetime.now(timezone.utc) + self._reset_ttl
