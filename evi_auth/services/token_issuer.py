"""Access/refresh token pair issuance with per-user token cap enforcement."""

import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from evi_auth.core.config import Settings, settings
from evi_auth.schemas.auth import DeviceFingerprint
from evi_auth.services.fingerprint import FingerprintMatcher
from evi_auth.services.settings_provider import SessionPolicy, SettingsProvider
from evi_auth.services.token_store import RefreshTokenStore

logger = logging.getLogger(__name__)


def hash_refresh_token(secret: str) -> str:
    """SHA-256 hex digest of a refresh token secret. Only this is ever stored."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_refresh_secret(prefix: str | None = None) -> str:
    """Opaque refresh secret: prefix + 256 random bits, URL-safe."""
    return (prefix or settings.refresh_token_prefix) + secrets.token_urlsafe(32)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime

    def __repr__(self) -> str:
        # Never let the plaintext secrets end up in a log line via repr()
        return (
            f"TokenPair(access_token_expires_at={self.access_token_expires_at.isoformat()}, "
            f"refresh_token_expires_at={self.refresh_token_expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class IssuedTokens:
    """Result of one issuance: the pair plus what it cost."""

    pair: TokenPair
    policy: SessionPolicy
    token_id: int
    fingerprint_short_hash: str
    evicted_token_ids: list[int] = field(default_factory=list)


class TokenIssuer:
    """Generates token pairs and persists the refresh token hash.

    Eviction, generation and persistence all run on the caller's session, so
    a storage failure at any step propagates before a pair is returned and
    the request transaction rolls back every write made here.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        settings_provider: SettingsProvider,
        signing_key: Any,
        fingerprints: FingerprintMatcher | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.settings_provider = settings_provider
        self.signing_key = signing_key
        self.fingerprints = fingerprints or FingerprintMatcher()
        self.config = config or settings
        self._clock = clock or (lambda: datetime.now(UTC))

    def create_access_token(
        self,
        username: str,
        user_id: UUID,
        now: datetime,
        lifetime: timedelta,
    ) -> str:
        payload = {
            "iss": self.config.jwt_issuer,
            "sub": username,
            "aud": self.config.jwt_audience,
            "jti": str(uuid.uuid4()),
            "uid": str(user_id),
            "iat": now,
            "exp": now + lifetime,
        }
        token = jwt.encode(payload, self.signing_key, algorithm=self.config.jwt_algorithm)
        # PyJWT 2.x returns str; older type stubs may declare bytes
        return str(token)

    async def evict_excess(self, user_id: UUID, max_tokens: int) -> list[int]:
        """Revoke the user's oldest active tokens so one slot is free.

        Returns:
            IDs of the revoked tokens, oldest first
        """
        active = await self.store.count_active(user_id)
        if active < max_tokens:
            return []

        excess = active - (max_tokens - 1)
        oldest = await self.store.oldest_active(user_id, excess)
        token_ids = [token.id for token in oldest]
        await self.store.revoke_by_ids(token_ids)
        logger.info(
            f"Evicted {len(token_ids)} refresh token(s) for user {user_id} "
            f"(active={active}, max={max_tokens})"
        )
        return token_ids

    async def issue(
        self,
        username: str,
        user_id: UUID,
        fingerprint: DeviceFingerprint | None,
    ) -> IssuedTokens:
        """Issue a new access/refresh pair for a user.

        Raises:
            ConfigurationError: Session policy is missing or invalid
            StorageError: Eviction or persistence failed; no pair is returned
        """
        policy = await self.settings_provider.load_session_policy()

        evicted = await self.evict_excess(user_id, policy.max_tokens_per_user)

        now = self._clock()
        access_expires_at = now + timedelta(minutes=policy.access_token_lifetime_minutes)
        refresh_expires_at = now + timedelta(days=policy.refresh_token_lifetime_days)

        access_token = self.create_access_token(
            username,
            user_id,
            now,
            timedelta(minutes=policy.access_token_lifetime_minutes),
        )
        refresh_token = generate_refresh_secret(self.config.refresh_token_prefix)

        fingerprint_hash = self.fingerprints.hash(fingerprint) if fingerprint else None
        stored = await self.store.insert(
            user_id=user_id,
            token_hash=hash_refresh_token(refresh_token),
            issued_at=now,
            expires_at=refresh_expires_at,
            fingerprint_hash=fingerprint_hash.hash if fingerprint_hash else None,
        )

        return IssuedTokens(
            pair=TokenPair(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=access_expires_at,
                refresh_token_expires_at=refresh_expires_at,
            ),
            policy=policy,
            token_id=stored.id,
            fingerprint_short_hash=fingerprint_hash.short_hash if fingerprint_hash else "",
            evicted_token_ids=evicted,
        )
