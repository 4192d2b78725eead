"""Refresh token model - hashed, revocable, optionally bound to a device."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, false, func
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from evi_auth.core.database import Base


class RefreshToken(Base):
    """A refresh token issued to one device of one user.

    Only the SHA-256 of the secret is stored. Rows are never updated except to
    flip ``revoked`` to true; eviction and logout revoke rather than delete so
    the issuance history stays auditable. Rows long past ``expires_at`` are
    purged by a background task.
    """

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    device_fingerprint_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        # Active-token counting and oldest-first eviction per user
        Index("ix_tokens_user_revoked_issued", "user_id", "revoked", "issued_at"),
        Index("ix_tokens_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        state = "revoked" if self.revoked else "active"
        return f"<RefreshToken {self.id} user={self.user_id} {state}>"
