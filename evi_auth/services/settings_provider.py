"""Settings provider - security policy read from the app_settings table."""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evi_auth.models.setting import AppSetting
from evi_auth.services.errors import ConfigurationError
from evi_auth.services.storage import guarded

logger = logging.getLogger(__name__)

SESSION_SECTION = "Application.Security.SessionManagement"

ACCESS_TOKEN_LIFETIME = "access.token.lifetime"
REFRESH_TOKEN_LIFETIME = "refresh.token.lifetime"
REFRESH_BEFORE_EXPIRY = "refresh.jwt.n.seconds.before.expiry"
MAX_REFRESH_TOKENS_PER_USER = "max.refresh.tokens.per.user"


@dataclass(frozen=True)
class SessionPolicy:
    access_token_lifetime_minutes: int
    refresh_token_lifetime_days: int
    refresh_before_expiry_seconds: int
    max_tokens_per_user: int

    @property
    def access_token_lifetime_seconds(self) -> int:
        return self.access_token_lifetime_minutes * 60

    @property
    def refresh_token_lifetime_seconds(self) -> int:
        return self.refresh_token_lifetime_days * 86400


class SettingsProvider:
    """Reads settings addressed by (section, name).

    There are no defaults here. Lifetimes and caps are security relevant, so
    a missing or unparsable value raises ConfigurationError.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, section: str, key: str) -> str | None:
        """Get a raw setting value, or None if the row is absent."""
        result = await guarded(
            "get_setting",
            self.db.execute(
                select(AppSetting.value).where(
                    AppSetting.section_path == section,
                    AppSetting.setting_name == key,
                )
            ),
        )
        return result.scalar_one_or_none()

    async def get_positive_int(self, section: str, key: str) -> int:
        raw = await self.get(section, key)
        if raw is None or not raw.strip():
            logger.error(f"Required setting {section}/{key} is missing")
            raise ConfigurationError(f"Required setting {section}/{key} is missing")
        try:
            value = int(raw.strip())
        except ValueError as e:
            logger.error(f"Setting {section}/{key} is not an integer: {raw!r}")
            raise ConfigurationError(f"Setting {section}/{key} is not an integer") from e
        if value <= 0:
            logger.error(f"Setting {section}/{key} must be positive, got {value}")
            raise ConfigurationError(f"Setting {section}/{key} must be positive")
        return value

    async def load_session_policy(self) -> SessionPolicy:
        """Load the session management policy.

        Raises:
            ConfigurationError: If any of the four settings is missing or invalid
        """
        access_minutes = await self.get_positive_int(SESSION_SECTION, ACCESS_TOKEN_LIFETIME)
        refresh_days = await self.get_positive_int(SESSION_SECTION, REFRESH_TOKEN_LIFETIME)
        before_expiry = await self.get_positive_int(SESSION_SECTION, REFRESH_BEFORE_EXPIRY)
        max_tokens = await self.get_positive_int(SESSION_SECTION, MAX_REFRESH_TOKENS_PER_USER)

        if before_expiry >= access_minutes * 60:
            # Client would refresh immediately after every issuance
            raise ConfigurationError(
                f"{REFRESH_BEFORE_EXPIRY} ({before_expiry}s) must be shorter than "
                f"{ACCESS_TOKEN_LIFETIME} ({access_minutes}min)"
            )

        return SessionPolicy(
            access_token_lifetime_minutes=access_minutes,
            refresh_token_lifetime_days=refresh_days,
            refresh_before_expiry_seconds=before_expiry,
            max_tokens_per_user=max_tokens,
        )
