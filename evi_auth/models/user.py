"""User model - the identity store's view of an account."""

from enum import StrEnum

from sqlalchemy import Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from evi_auth.models.base import BaseModel


class AccountStatus(StrEnum):
    ACTIVE = "active"
    DISABLED = "disabled"
    REQUIRES_ACTION = "requires_user_action"


AccountStatusType = Enum(
    *(status.value for status in AccountStatus),
    name="account_status",
    create_constraint=True,
)


class User(BaseModel):
    """Application user.

    Owned and maintained by the user management side of the application.
    The session core only ever reads username, password hash and status.
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(Text, nullable=False)
    account_status: Mapped[str] = mapped_column(
        AccountStatusType,
        nullable=False,
        default=AccountStatus.ACTIVE.value,
        server_default=AccountStatus.ACTIVE.value,
    )

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.account_status})>"
