"""Session core schema: users, refresh tokens, application settings.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:12:40

"""

import uuid
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SESSION_SECTION = "Application.Security.SessionManagement"

# Initial session policy. Values are editable at runtime; the application
# refuses to start sessions if any of them is missing.
SESSION_POLICY = [
    ("access.token.lifetime", "30", "Access token lifetime in minutes"),
    ("refresh.token.lifetime", "7", "Refresh token lifetime in days"),
    (
        "refresh.jwt.n.seconds.before.expiry",
        "30",
        "Clients refresh this many seconds before the access token expires",
    ),
    ("max.refresh.tokens.per.user", "5", "Maximum active refresh tokens per user"),
]


def upgrade() -> None:
    account_status = postgresql.ENUM(
        "active",
        "disabled",
        "requires_user_action",
        name="account_status",
        create_type=False,
    )
    account_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("hashed_password", sa.Text(), nullable=False),
        sa.Column(
            "account_status", account_status, nullable=False, server_default="active"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "tokens",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("device_fingerprint_hash", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash"),
    )
    op.create_index(
        "ix_tokens_user_revoked_issued", "tokens", ["user_id", "revoked", "issued_at"]
    )
    op.create_index("ix_tokens_expires_at", "tokens", ["expires_at"])

    app_settings = op.create_table(
        "app_settings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("section_path", sa.String(length=255), nullable=False),
        sa.Column("setting_name", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "section_path", "setting_name", name="uq_app_settings_section_name"
        ),
    )

    op.bulk_insert(
        app_settings,
        [
            {
                "id": _setting_id(name),
                "section_path": SESSION_SECTION,
                "setting_name": name,
                "value": value,
                "description": description,
            }
            for name, value, description in SESSION_POLICY
        ],
    )


def _setting_id(name: str) -> uuid.UUID:
    # Stable IDs so re-running against a fresh database yields identical rows
    return uuid.uuid5(uuid.NAMESPACE_URL, f"evi-auth:{SESSION_SECTION}:{name}")


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_index("ix_tokens_expires_at", table_name="tokens")
    op.drop_index("ix_tokens_user_revoked_issued", table_name="tokens")
    op.drop_table("tokens")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
    postgresql.ENUM(name="account_status").drop(op.get_bind(), checkfirst=True)
