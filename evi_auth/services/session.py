"""Session service - orchestrates login, refresh and logout.

Components stay free of telemetry. SessionService records what happened as
AuthEvents and returns them with each outcome; on failure the events are
attached to the raised SessionError (``error.events``). The caller decides
when and where to publish them.

Each operation ends its own transaction: commit before a token is handed
back, rollback on any failure, so a token that was generated but not stored
is never observable.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from evi_auth.core.config import Settings, settings
from evi_auth.schemas.auth import DeviceFingerprint
from evi_auth.services import events as ev
from evi_auth.services.brute_force import BruteForceGuard
from evi_auth.services.credentials import CredentialValidator
from evi_auth.services.errors import (
    AuthenticationError,
    ConfigurationError,
    FingerprintMismatchError,
    RateLimitError,
    SessionError,
    StorageError,
    TokenError,
    ValidationError,
)
from evi_auth.services.events import AuthEvent
from evi_auth.services.fingerprint import FingerprintMatcher
from evi_auth.services.identity import IdentityStore
from evi_auth.services.refresh import EXPIRED, NOT_FOUND, REVOKED, RefreshCoordinator
from evi_auth.services.settings_provider import SettingsProvider
from evi_auth.services.storage import guarded
from evi_auth.services.token_issuer import IssuedTokens, TokenIssuer, hash_refresh_token
from evi_auth.services.token_store import RefreshTokenStore

logger = logging.getLogger(__name__)


@dataclass
class LoginOutcome:
    user_id: UUID
    username: str
    issued: IssuedTokens
    events: list[AuthEvent] = field(default_factory=list)


@dataclass
class RefreshOutcome:
    user_id: UUID
    username: str
    issued: IssuedTokens
    events: list[AuthEvent] = field(default_factory=list)


@dataclass
class LogoutOutcome:
    revoked_count: int
    user_id: UUID | None = None
    events: list[AuthEvent] = field(default_factory=list)


class SessionService:
    """Login / refresh / logout over one database session."""

    def __init__(
        self,
        db: AsyncSession,
        guard: BruteForceGuard,
        signing_key: Any,
        config: Settings | None = None,
        identity: IdentityStore | None = None,
        store: RefreshTokenStore | None = None,
        settings_provider: SettingsProvider | None = None,
        fingerprints: FingerprintMatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.guard = guard
        self.config = config or settings
        self.identity = identity or IdentityStore(db)
        self.store = store or RefreshTokenStore(db)
        self.fingerprints = fingerprints or FingerprintMatcher()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.validator = CredentialValidator(self.identity)
        self.issuer = TokenIssuer(
            self.store,
            settings_provider or SettingsProvider(db),
            signing_key,
            fingerprints=self.fingerprints,
            config=self.config,
            clock=clock,
        )
        self.coordinator = RefreshCoordinator(
            self.store,
            self.identity,
            self.issuer,
            fingerprints=self.fingerprints,
            clock=clock,
        )

    async def _commit(self) -> None:
        await guarded("commit", self.db.commit())

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            # The original failure is what the caller needs to see
            logger.warning(f"Rollback failed: {type(e).__name__}: {e}")

    def _failure_events(self, error: SessionError) -> list[AuthEvent]:
        if isinstance(error, StorageError):
            return [
                AuthEvent(
                    ev.STORAGE_ERROR,
                    {"operation": error.operation, "retryable": error.retryable},
                    severity="error",
                )
            ]
        if isinstance(error, ConfigurationError):
            return [AuthEvent(ev.CONFIG_ERROR, {"detail": str(error)}, severity="critical")]
        return []

    def _issuance_events(self, user_id: UUID, issued: IssuedTokens) -> list[AuthEvent]:
        events = []
        if issued.evicted_token_ids:
            events.append(
                AuthEvent(
                    ev.TOKEN_EVICTED,
                    {
                        "user_id": str(user_id),
                        "evicted_ids": issued.evicted_token_ids,
                        "count": len(issued.evicted_token_ids),
                        "max_tokens_per_user": issued.policy.max_tokens_per_user,
                    },
                )
            )
        events.append(
            AuthEvent(
                ev.TOKEN_ISSUED,
                {
                    "user_id": str(user_id),
                    "token_id": issued.token_id,
                    "fingerprint": issued.fingerprint_short_hash,
                    "access_expires_at": issued.pair.access_token_expires_at.isoformat(),
                },
            )
        )
        return events

    async def login(
        self,
        username: str,
        password: str,
        fingerprint: DeviceFingerprint,
        client_ip: str,
    ) -> LoginOutcome:
        """Authenticate and issue a token pair.

        Raises:
            RateLimitError: The client IP is blocked
            AuthenticationError: Unknown user, wrong password or inactive account
            ConfigurationError / StorageError: Issuance could not complete
        """
        username = username.strip()
        events = [
            AuthEvent(
                ev.LOGIN_ATTEMPT,
                {
                    "username": username,
                    "ip": client_ip,
                    "fingerprint": self.fingerprints.hash(fingerprint).short_hash,
                },
            )
        ]
        try:
            if self.guard.is_blocked(client_ip):
                retry_after = max(1, self.guard.retry_after(client_ip))
                events.append(
                    AuthEvent(
                        ev.LOGIN_BLOCKED,
                        {"username": username, "ip": client_ip, "retry_after": retry_after},
                        severity="warning",
                    )
                )
                raise RateLimitError(retry_after)

            check = await self.validator.validate(username, password)
            if not check.valid:
                failures = self.guard.record_failure(client_ip)
                events.append(
                    AuthEvent(
                        ev.LOGIN_FAILED,
                        {
                            "username": username,
                            "ip": client_ip,
                            "reason": check.reason,
                            "user_id": str(check.user_id) if check.user_id else None,
                            "failures": failures,
                        },
                        severity="warning",
                    )
                )
                raise AuthenticationError(check.reason or "unknown", user_id=check.user_id)

            issued = await self.issuer.issue(username, check.user_id, fingerprint)
            await self._commit()
        except SessionError as e:
            await self._rollback()
            e.events = events + self._failure_events(e)
            raise
        except BaseException:
            await self._rollback()
            raise

        events.extend(self._issuance_events(check.user_id, issued))
        events.append(
            AuthEvent(
                ev.LOGIN_SUCCESS,
                {"user_id": str(check.user_id), "username": username, "ip": client_ip},
            )
        )
        logger.info(f"User {username} logged in from {client_ip}")
        return LoginOutcome(user_id=check.user_id, username=username, issued=issued, events=events)

    async def refresh(
        self,
        presented_secret: str | None,
        fingerprint: DeviceFingerprint,
    ) -> RefreshOutcome:
        """Rotate a refresh token.

        Raises:
            ValidationError: No refresh token was presented
            TokenError: The token cannot be used (see RefreshCoordinator)
            ConfigurationError / StorageError: Issuance could not complete
        """
        events: list[AuthEvent] = []
        try:
            if not presented_secret:
                raise ValidationError("Refresh token is required", reason="missing_refresh_token")

            result = await self.coordinator.refresh(presented_secret, fingerprint)
            await self._commit()
        except SessionError as e:
            await self._rollback()
            if isinstance(e, TokenError):
                user_id = str(e.user_id) if e.user_id else None
                if isinstance(e, FingerprintMismatchError):
                    events.append(
                        AuthEvent(
                            ev.FINGERPRINT_MISMATCH,
                            {
                                "user_id": user_id,
                                "fingerprint": self.fingerprints.hash(fingerprint).short_hash,
                            },
                            severity="warning",
                        )
                    )
                events.append(
                    AuthEvent(
                        ev.TOKEN_REFRESH_FAILED,
                        {"reason": e.reason, "user_id": user_id},
                        severity="warning",
                    )
                )
            elif isinstance(e, ValidationError):
                events.append(
                    AuthEvent(
                        ev.TOKEN_REFRESH_FAILED,
                        {"reason": e.reason, "user_id": None},
                        severity="warning",
                    )
                )
            e.events = events + self._failure_events(e)
            raise
        except BaseException:
            await self._rollback()
            raise

        events.extend(self._issuance_events(result.user_id, result.issued))
        events.append(
            AuthEvent(
                ev.TOKEN_REFRESH_SUCCESS,
                {
                    "user_id": str(result.user_id),
                    "consumed_token_id": result.consumed_token_id,
                    "token_id": result.issued.token_id,
                },
            )
        )
        return RefreshOutcome(
            user_id=result.user_id,
            username=result.username,
            issued=result.issued,
            events=events,
        )

    async def logout(self, presented_secret: str | None) -> LogoutOutcome:
        """Revoke the presented token if it is known and active.

        A missing or malformed token is not an error; the caller still clears
        the cookie.
        """
        if not presented_secret or not presented_secret.startswith(
            self.config.refresh_token_prefix
        ):
            return LogoutOutcome(
                revoked_count=0,
                events=[AuthEvent(ev.LOGOUT_SUCCESS, {"revoked": False, "token_present": False})],
            )

        try:
            row = await self.store.revoke_by_hash(hash_refresh_token(presented_secret))
            await self._commit()
        except SessionError as e:
            await self._rollback()
            e.events = self._failure_events(e)
            raise
        except BaseException:
            await self._rollback()
            raise

        user_id = row.user_id if row else None
        return LogoutOutcome(
            revoked_count=1 if row else 0,
            user_id=user_id,
            events=[
                AuthEvent(
                    ev.LOGOUT_SUCCESS,
                    {
                        "user_id": str(user_id) if user_id else None,
                        "revoked": row is not None,
                        "token_present": True,
                    },
                )
            ],
        )

    async def logout_all(self, presented_secret: str | None) -> LogoutOutcome:
        """Revoke every active refresh token of the presented token's owner.

        Raises:
            ValidationError: No refresh token was presented
            TokenError: The presented token is unknown, revoked or expired
        """
        events: list[AuthEvent] = []
        try:
            if not presented_secret:
                raise ValidationError("Refresh token is required", reason="missing_refresh_token")

            row = None
            if presented_secret.startswith(self.config.refresh_token_prefix):
                row = await self.store.find_by_hash(hash_refresh_token(presented_secret))
            if row is None:
                raise TokenError(NOT_FOUND)
            if row.revoked:
                raise TokenError(REVOKED, user_id=row.user_id)
            if row.expires_at < self._clock():
                raise TokenError(EXPIRED, user_id=row.user_id)

            revoked_count = await self.store.revoke_all_for_user(row.user_id)
            await self._commit()
        except SessionError as e:
            await self._rollback()
            if isinstance(e, (TokenError, ValidationError)):
                user_id = getattr(e, "user_id", None)
                events.append(
                    AuthEvent(
                        ev.TOKEN_REFRESH_FAILED,
                        {
                            "reason": e.reason,
                            "user_id": str(user_id) if user_id else None,
                            "operation": "logout_all",
                        },
                        severity="warning",
                    )
                )
            e.events = events + self._failure_events(e)
            raise
        except BaseException:
            await self._rollback()
            raise

        logger.info(f"Revoked {revoked_count} refresh token(s) for user {row.user_id}")
        return LogoutOutcome(
            revoked_count=revoked_count,
            user_id=row.user_id,
            events=[
                AuthEvent(
                    ev.LOGOUT_ALL,
                    {"user_id": str(row.user_id), "revoked_count": revoked_count},
                )
            ],
        )
