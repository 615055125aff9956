"""
Refresh token store.

Bulk updates skip session synchronisation: callers never hold on to
``RefreshToken`` instances across a revoke.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete as sa_delete
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankhub.models.refresh_token import RefreshToken


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenRepository:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create(
        self,
        *,
        user_id: int,
        token: str,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            user_agent=user_agent[:500] if user_agent else None,
            ip_address=ip_address,
        )
        self._db.add(row)
        await self._db.commit()
        await self._db.refresh(row)
        return row

    async def find_valid(self, token: str) -> RefreshToken | None:
        """Return the row only if it is neither revoked nor expired."""
        result = await self._db.execute(
            select(RefreshToken).where(
                RefreshToken.token == token,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > _utcnow(),
            )
        )
        return result.scalar_one_or_none()

    async def consume(self, token: str) -> RefreshToken | None:
        """Atomically revoke a valid token and return it.

        The conditional UPDATE matches at most one live row, so two concurrent
        callers presenting the same token cannot both succeed.
        """
        result = await self._db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token == token,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > _utcnow(),
            )
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if result.rowcount != 1:
            return None
        row = await self._db.execute(
            select(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(populate_existing=True)
        )
        return row.scalar_one()

    async def revoke(self, token: str) -> None:
        await self._db.execute(
            update(RefreshToken)
            .where(RefreshToken.token == token)
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()

    async def revoke_all_for_user(self, user_id: int) -> int:
        result = await self._db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount

    async def delete_expired(self) -> int:
        result = await self._db.execute(
            sa_delete(RefreshToken)
            .where(RefreshToken.expires_at < _utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount
