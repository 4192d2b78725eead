"""In-memory stand-ins for the stores, for unit tests without a database."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from evi_auth.services.credentials import hash_password
from evi_auth.services.identity import UserRecord
from evi_auth.services.settings_provider import SESSION_SECTION, SettingsProvider
from evi_auth.services.token_store import StoredToken

from tests.conftest import TEST_PASSWORD, TEST_PRIVATE_KEY, TEST_USERNAME

# Argon2 at full cost for every fixture would dominate the unit test run
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


class FakeClock:
    """Settable wall clock (UTC)."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeIdentityStore:
    def __init__(self):
        self.users: dict[UUID, UserRecord] = {}

    def add(
        self,
        username: str = TEST_USERNAME,
        account_status: str = "active",
        hashed_password: str = _TEST_PASSWORD_HASH,
    ) -> UserRecord:
        record = UserRecord(
            user_id=uuid4(),
            username=username,
            hashed_password=hashed_password,
            account_status=account_status,
        )
        self.users[record.user_id] = record
        return record

    def set_status(self, user_id: UUID, account_status: str) -> None:
        self.users[user_id] = replace(self.users[user_id], account_status=account_status)

    async def find_user_by_username(self, username: str) -> UserRecord | None:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    async def find_username_by_id(self, user_id: UUID) -> str | None:
        user = self.users.get(user_id)
        return user.username if user else None

    async def find_account_status(self, user_id: UUID) -> str | None:
        user = self.users.get(user_id)
        return user.account_status if user else None


class FakeTokenStore:
    """Dict-backed tokens table with the same semantics as RefreshTokenStore."""

    def __init__(self):
        self.rows: dict[int, StoredToken] = {}
        self._next_id = 1

    def _set(self, token_id: int, **changes) -> None:
        self.rows[token_id] = replace(self.rows[token_id], **changes)

    def active_for(self, user_id: UUID) -> list[StoredToken]:
        return [r for r in self.rows.values() if r.user_id == user_id and not r.revoked]

    async def insert(self, user_id, token_hash, issued_at, expires_at, fingerprint_hash):
        if any(r.token_hash == token_hash for r in self.rows.values()):
            raise AssertionError("duplicate token hash")
        row = StoredToken(
            id=self._next_id,
            user_id=user_id,
            token_hash=token_hash,
            issued_at=issued_at,
            expires_at=expires_at,
            revoked=False,
            device_fingerprint_hash=fingerprint_hash,
        )
        self.rows[row.id] = row
        self._next_id += 1
        return row

    async def find_by_hash(self, token_hash):
        for row in self.rows.values():
            if row.token_hash == token_hash:
                return row
        return None

    async def count_active(self, user_id):
        return len(self.active_for(user_id))

    async def oldest_active(self, user_id, limit):
        rows = sorted(self.active_for(user_id), key=lambda r: (r.issued_at, r.id))
        return rows[: max(limit, 0)]

    async def revoke_by_id(self, token_id):
        return await self.revoke_by_ids([token_id]) == 1

    async def revoke_by_ids(self, token_ids):
        count = 0
        for token_id in token_ids:
            if token_id in self.rows and not self.rows[token_id].revoked:
                self._set(token_id, revoked=True)
                count += 1
        return count

    async def revoke_by_hash(self, token_hash):
        row = await self.find_by_hash(token_hash)
        if row is None or row.revoked:
            return None
        self._set(row.id, revoked=True)
        return self.rows[row.id]

    async def consume(self, token_hash, fingerprint_hash, now):
        row = await self.find_by_hash(token_hash)
        if (
            row is None
            or row.revoked
            or row.expires_at < now
            or (row.device_fingerprint_hash and row.device_fingerprint_hash != fingerprint_hash)
        ):
            return None
        self._set(row.id, revoked=True)
        return self.rows[row.id]

    async def revoke_all_for_user(self, user_id):
        rows = self.active_for(user_id)
        for row in rows:
            self._set(row.id, revoked=True)
        return len(rows)

    async def purge_expired(self, before):
        expired = [r.id for r in self.rows.values() if r.expires_at < before]
        for token_id in expired:
            del self.rows[token_id]
        return len(expired)


class FakeSettingsProvider(SettingsProvider):
    """Real policy parsing over an in-memory settings table."""

    def __init__(self, **overrides):
        self.values = {
            "access.token.lifetime": "15",
            "refresh.token.lifetime": "7",
            "refresh.jwt.n.seconds.before.expiry": "30",
            "max.refresh.tokens.per.user": "3",
        }
        self.values.update(overrides)

    async def get(self, section, key):
        if section != SESSION_SECTION:
            return None
        return self.values.get(key)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity():
    return FakeIdentityStore()


@pytest.fixture
def token_store():
    return FakeTokenStore()


@pytest.fixture
def settings_provider():
    return FakeSettingsProvider()


@pytest.fixture
def signing_key():
    return TEST_PRIVATE_KEY


@pytest.fixture
def fake_db():
    """Stands in for AsyncSession where only commit/rollback are used."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db
