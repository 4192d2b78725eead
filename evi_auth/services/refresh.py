"""Refresh token rotation."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from evi_auth.core.config import settings
from evi_auth.schemas.auth import DeviceFingerprint
from evi_auth.services.credentials import status_failure_reason
from evi_auth.services.errors import FingerprintMismatchError, TokenError
from evi_auth.services.fingerprint import FingerprintMatcher
from evi_auth.services.identity import IdentityStore
from evi_auth.services.token_issuer import IssuedTokens, TokenIssuer, hash_refresh_token
from evi_auth.services.token_store import RefreshTokenStore, StoredToken

logger = logging.getLogger(__name__)

MALFORMED = "malformed"
NOT_FOUND = "not_found"
REVOKED = "revoked"
EXPIRED = "expired"
FINGERPRINT_MISMATCH = "fingerprint_mismatch"
TOKEN_OWNER_NOT_FOUND = "token_owner_not_found"
ACCOUNT_INACTIVE = "account_inactive"


@dataclass(frozen=True)
class RefreshResult:
    user_id: UUID
    username: str
    consumed_token_id: int
    issued: IssuedTokens


class RefreshCoordinator:
    """Exchanges a refresh token for a new pair, exactly once.

    The presented token is validated and revoked by a single conditional
    UPDATE (``RefreshTokenStore.consume``), so a replayed or concurrently
    presented secret cannot yield a second successor. When nothing is
    consumed the row is read back only to classify the failure.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        identity: IdentityStore,
        issuer: TokenIssuer,
        fingerprints: FingerprintMatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.identity = identity
        self.issuer = issuer
        self.fingerprints = fingerprints or FingerprintMatcher()
        self._clock = clock or (lambda: datetime.now(UTC))

    def classify(
        self,
        row: StoredToken | None,
        fingerprint_hash: str,
        now: datetime,
    ) -> TokenError:
        """Explain why a consume matched no row."""
        if row is None:
            return TokenError(NOT_FOUND)
        if row.revoked:
            return TokenError(REVOKED, user_id=row.user_id)
        if row.expires_at < now:
            return TokenError(EXPIRED, user_id=row.user_id)
        if row.device_fingerprint_hash and row.device_fingerprint_hash != fingerprint_hash:
            return FingerprintMismatchError(user_id=row.user_id)
        # Row looks valid now, so another request consumed it in between
        return TokenError(REVOKED, user_id=row.user_id)

    async def refresh(
        self,
        presented_secret: str,
        fingerprint: DeviceFingerprint,
    ) -> RefreshResult:
        """Validate and consume ``presented_secret``, then issue its successor.

        Raises:
            TokenError: Token unknown, revoked, expired, or its owner is gone
                or no longer active
            FingerprintMismatchError: Token is bound to a different device
            ConfigurationError / StorageError: From issuance
        """
        if not presented_secret.startswith(settings.refresh_token_prefix):
            raise TokenError(MALFORMED)

        token_hash = hash_refresh_token(presented_secret)
        fingerprint_hash = self.fingerprints.hash(fingerprint).hash
        now = self._clock()

        consumed = await self.store.consume(token_hash, fingerprint_hash, now)
        if consumed is None:
            row = await self.store.find_by_hash(token_hash)
            error = self.classify(row, fingerprint_hash, now)
            if isinstance(error, FingerprintMismatchError):
                logger.warning(f"Device fingerprint mismatch on refresh for user {error.user_id}")
            else:
                logger.info(f"Refresh rejected: {error.reason}")
            raise error

        username = await self.identity.find_username_by_id(consumed.user_id)
        if username is None:
            raise TokenError(TOKEN_OWNER_NOT_FOUND, user_id=consumed.user_id)

        account_status = await self.identity.find_account_status(consumed.user_id)
        if status_failure_reason(account_status) is not None:
            raise TokenError(ACCOUNT_INACTIVE, user_id=consumed.user_id)

        issued = await self.issuer.issue(username, consumed.user_id, fingerprint)
        return RefreshResult(
            user_id=consumed.user_id,
            username=username,
            consumed_token_id=consumed.id,
            issued=issued,
        )
