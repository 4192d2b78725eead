"""Read-only adapter over the users table."""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evi_auth.models.user import User
from evi_auth.services.storage import guarded


@dataclass(frozen=True)
class UserRecord:
    user_id: UUID
    username: str
    hashed_password: str
    account_status: str


class IdentityStore:
    """Lookups the session core needs from the identity store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_user_by_username(self, username: str) -> UserRecord | None:
        result = await guarded(
            "find_user_by_username",
            self.db.execute(
                select(
                    User.id, User.username, User.hashed_password, User.account_status
                ).where(User.username == username)
            ),
        )
        row = result.first()
        if row is None:
            return None
        return UserRecord(
            user_id=row.id,
            username=row.username,
            hashed_password=row.hashed_password,
            account_status=row.account_status,
        )

    async def find_username_by_id(self, user_id: UUID) -> str | None:
        result = await guarded(
            "find_username_by_id",
            self.db.execute(select(User.username).where(User.id == user_id)),
        )
        return result.scalar_one_or_none()

    async def find_account_status(self, user_id: UUID) -> str | None:
        result = await guarded(
            "find_account_status",
            self.db.execute(select(User.account_status).where(User.id == user_id)),
        )
        return result.scalar_one_or_none()
