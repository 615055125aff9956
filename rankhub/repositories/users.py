"""
User store: all reads and writes of the ``users`` table.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankhub.models.user import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRepository:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _one(self, stmt) -> User | None:
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_id(self, user_id: int) -> User | None:
        return await self._one(select(User).where(User.id == user_id))

    async def find_by_email(self, email: str) -> User | None:
        return await self._one(select(User).where(User.email == email))

    async def exists_by_email(self, email: str) -> bool:
        result = await self._db.execute(select(User.id).where(User.email == email).limit(1))
        return result.first() is not None

    async def find_by_confirm_token(self, token: str) -> User | None:
        return await self._one(select(User).where(User.confirm_token == token))

    async def find_by_password_reset_token(self, token: str) -> User | None:
        """Match the token only while its expiry is still in the future."""
        return await self._one(
            select(User).where(
                User.password_reset_token == token,
                User.password_reset_expires > _utcnow(),
            )
        )

    async def list_all(self, skip: int = 0, limit: int = 50) -> list[User]:
        result = await self._db.execute(
            select(User).order_by(User.id).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def create(
        self,
        *,
        email: str,
        name: str,
        password_hash: str | None,
        role: str = "user",
        is_active: bool = True,
        confirm_token: str | None = None,
    ) -> User:
        user = User(
            email=email,
            name=name,
            password_hash=password_hash,
            role=role,
            is_active=is_active,
            confirm_token=confirm_token,
        )
        self._db.add(user)
        await self._db.commit()
        await self._db.refresh(user)
        return user

    async def _save(self, user: User) -> User:
        await self._db.commit()
        await self._db.refresh(user)
        return user

    async def update_last_login(self, user: User) -> User:
        user.last_login_at = _utcnow()
        return await self._save(user)

    async def set_password_reset_token(
        self, user: User, token: str, expires_at: datetime
    ) -> User:
        user.password_reset_token = token
        user.password_reset_expires = expires_at
        return await self._save(user)

    async def clear_password_reset_token(self, user: User) -> User:
        user.password_reset_token = None
        user.password_reset_expires = None
        return await self._save(user)

    async def update_password(self, user: User, password_hash: str) -> User:
        """Store a new hash and clear any pending reset token."""
        user.password_hash = password_hash
        user.password_reset_token = None
        user.password_reset_expires = None
        return await self._save(user)

    async def activate(self, user: User) -> User:
        user.confirm_token = None
        user.is_active = True
        return await self._save(user)

    async def set_active(self, user: User, is_active: bool) -> User:
        user.is_active = is_active
        return await self._save(user)

    async def set_role(self, user: User, role: str) -> User:
        user.role = role
        return await self._save(user)

    async def delete(self, user: User) -> None:
        await self._db.delete(user)
        await self._db.commit()
