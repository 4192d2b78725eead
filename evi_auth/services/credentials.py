"""Credential validation - password hashing and account status checks."""

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from evi_auth.models.user import AccountStatus
from evi_auth.services.identity import IdentityStore

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

USER_NOT_FOUND = "user_not_found"
INVALID_PASSWORD = "invalid_password"
ACCOUNT_DISABLED = "account_disabled"
ACCOUNT_REQUIRES_ACTION = "account_requires_action"


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    """Hash verified against when the username does not exist."""
    return ph.hash("evi-auth-dummy-password")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError) as e:
        # A corrupt stored hash must not let anyone in
        logger.error(f"Stored password hash could not be verified: {type(e).__name__}")
        return False


@dataclass(frozen=True)
class CredentialCheck:
    valid: bool
    user_id: UUID | None = None
    reason: str | None = None


def status_failure_reason(account_status: str | None) -> str | None:
    """Map an account status to a failure reason, or None when the account is active."""
    if account_status == AccountStatus.ACTIVE:
        return None
    if account_status == AccountStatus.REQUIRES_ACTION:
        return ACCOUNT_REQUIRES_ACTION
    return ACCOUNT_DISABLED


class CredentialValidator:
    """Verifies a username/password pair and the account's status.

    Inactive accounts short-circuit before any password comparison. Storage
    failures propagate as StorageError.
    """

    def __init__(self, identity: IdentityStore):
        self.identity = identity

    async def validate(self, username: str, password: str) -> CredentialCheck:
        user = await self.identity.find_user_by_username(username)

        if user is None:
            # Perform a dummy verification to prevent timing attacks
            await asyncio.to_thread(lambda: verify_password(password, _dummy_hash()))
            return CredentialCheck(valid=False, reason=USER_NOT_FOUND)

        reason = status_failure_reason(user.account_status)
        if reason is not None:
            return CredentialCheck(valid=False, user_id=user.user_id, reason=reason)

        # Argon2 is CPU bound; keep it off the event loop
        if not await asyncio.to_thread(verify_password, password, user.hashed_password):
            return CredentialCheck(valid=False, user_id=user.user_id, reason=INVALID_PASSWORD)

        return CredentialCheck(valid=True, user_id=user.user_id)
