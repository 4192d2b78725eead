"""Refresh token persistence.

Every query goes through ``guarded`` so a slow or failing database surfaces
as StorageTimeoutError / StorageError rather than a raw driver exception.
Nothing here commits; the request transaction does.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from evi_auth.core.config import settings
from evi_auth.models.refresh_token import RefreshToken
from evi_auth.services.storage import guarded

logger = logging.getLogger(__name__)

# Rows are read as plain columns so a stale instance in the session's
# identity map can never mask a concurrent revoke
_COLUMNS = (
    RefreshToken.id,
    RefreshToken.user_id,
    RefreshToken.token_hash,
    RefreshToken.issued_at,
    RefreshToken.expires_at,
    RefreshToken.revoked,
    RefreshToken.device_fingerprint_hash,
)


@dataclass(frozen=True)
class StoredToken:
    """Immutable snapshot of a tokens row."""

    id: int
    user_id: UUID
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool
    device_fingerprint_hash: str | None

    @classmethod
    def from_row(cls, row: Any) -> "StoredToken":
        return cls(
            id=row.id,
            user_id=row.user_id,
            token_hash=row.token_hash,
            issued_at=row.issued_at,
            expires_at=row.expires_at,
            revoked=row.revoked,
            device_fingerprint_hash=row.device_fingerprint_hash,
        )


class RefreshTokenStore:
    """Data access for the tokens table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(
        self,
        user_id: UUID,
        token_hash: str,
        issued_at: datetime,
        expires_at: datetime,
        fingerprint_hash: str | None,
    ) -> StoredToken:
        token = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            issued_at=issued_at,
            expires_at=expires_at,
            revoked=False,
            device_fingerprint_hash=fingerprint_hash,
        )
        self.db.add(token)
        # Flush so a constraint violation aborts issuance here, not at commit
        await guarded("insert_token", self.db.flush())
        return StoredToken.from_row(token)

    async def find_by_hash(self, token_hash: str) -> StoredToken | None:
        result = await guarded(
            "find_token_by_hash",
            self.db.execute(select(*_COLUMNS).where(RefreshToken.token_hash == token_hash)),
        )
        row = result.first()
        return StoredToken.from_row(row) if row else None

    async def count_active(self, user_id: UUID) -> int:
        """Count the user's non-revoked tokens, expired or not."""
        result = await guarded(
            "count_active_tokens",
            self.db.execute(
                select(func.count(RefreshToken.id)).where(
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked.is_(False),
                )
            ),
        )
        return result.scalar() or 0

    async def oldest_active(self, user_id: UUID, limit: int) -> list[StoredToken]:
        """The user's ``limit`` oldest non-revoked tokens, oldest first."""
        if limit <= 0:
            return []
        result = await guarded(
            "oldest_active_tokens",
            self.db.execute(
                select(*_COLUMNS)
                .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
                .order_by(RefreshToken.issued_at.asc(), RefreshToken.id.asc())
                .limit(limit)
            ),
        )
        return [StoredToken.from_row(row) for row in result.all()]

    async def revoke_by_id(self, token_id: int) -> bool:
        revoked = await self.revoke_by_ids([token_id])
        return revoked == 1

    async def revoke_by_ids(self, token_ids: list[int]) -> int:
        if not token_ids:
            return 0
        result = await guarded(
            "revoke_tokens_by_id",
            self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.id.in_(token_ids), RefreshToken.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def revoke_by_hash(self, token_hash: str) -> StoredToken | None:
        """Revoke an active token by hash. Returns the row if one was revoked."""
        result = await guarded(
            "revoke_token_by_hash",
            self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_hash == token_hash, RefreshToken.revoked.is_(False))
                .values(revoked=True)
                .returning(*_COLUMNS)
                .execution_options(synchronize_session=False)
            ),
        )
        row = result.first()
        return StoredToken.from_row(row) if row else None

    async def consume(
        self,
        token_hash: str,
        fingerprint_hash: str,
        now: datetime,
    ) -> StoredToken | None:
        """Atomically validate and revoke a refresh token.

        One conditional UPDATE: the row is revoked only if it is currently
        active, unexpired and (when bound) bound to this fingerprint. Two
        concurrent calls for the same hash cannot both get a row back.
        Returns None when nothing was consumed; use ``find_by_hash`` to learn why.
        """
        result = await guarded(
            "consume_token",
            self.db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_hash == token_hash,
                    RefreshToken.revoked.is_(False),
                    RefreshToken.expires_at >= now,
                    (RefreshToken.device_fingerprint_hash.is_(None))
                    | (RefreshToken.device_fingerprint_hash == fingerprint_hash),
                )
                .values(revoked=True)
                .returning(*_COLUMNS)
                .execution_options(synchronize_session=False)
            ),
        )
        row = result.first()
        return StoredToken.from_row(row) if row else None

    async def revoke_all_for_user(self, user_id: UUID) -> int:
        result = await guarded(
            "revoke_all_tokens_for_user",
            self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    async def purge_expired(self, before: datetime) -> int:
        """Hard-delete tokens that expired before ``before``."""
        result = await guarded(
            "purge_expired_tokens",
            self.db.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at < before)
                .execution_options(synchronize_session=False)
            ),
        )
        deleted = result.rowcount
        if deleted > 0:
            logger.info(f"Purged {deleted} refresh tokens expired before {before.isoformat()}")
        return deleted


async def expired_token_purge_loop(session_factory=None) -> None:
    """Periodically delete refresh tokens long past their expiry."""
    if session_factory is None:
        from evi_auth.core.database import async_session_maker

        session_factory = async_session_maker

    while True:
        try:
            await asyncio.sleep(settings.expired_token_purge_interval_seconds)
            cutoff = datetime.now(UTC) - timedelta(days=settings.expired_token_retention_days)
            async with session_factory() as db:
                await RefreshTokenStore(db).purge_expired(cutoff)
                await db.commit()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Error purging expired refresh tokens")
