"""AppSetting model for runtime-editable application policy."""

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from evi_auth.models.base import BaseModel


class AppSetting(BaseModel):
    """Application setting addressed by (section, name).

    Used for security policy an administrator can change without a redeploy:
    - token lifetimes
    - per-user refresh token cap
    - client refresh scheduling hints
    """

    __tablename__ = "app_settings"

    section_path: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Dotted section path, e.g. Application.Security.SessionManagement",
    )

    setting_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Setting name within the section",
    )

    value: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Raw setting value; parsed by the consumer",
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Human-readable description of this setting",
    )

    __table_args__ = (
        UniqueConstraint("section_path", "setting_name", name="uq_app_settings_section_name"),
    )

    def __repr__(self) -> str:
        return f"<AppSetting({self.section_path}/{self.setting_name})>"
