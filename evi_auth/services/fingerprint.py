"""Device fingerprint canonicalization and hashing."""

import hashlib
import hmac
import json
from dataclasses import dataclass

from evi_auth.schemas.auth import DeviceFingerprint


@dataclass(frozen=True)
class FingerprintHash:
    hash: str
    short_hash: str


class FingerprintMatcher:
    """Hash device characteristics for soft session binding.

    The canonical form is compact JSON of the camelCase wire fields with
    sorted keys, so the same device always hashes the same regardless of the
    order the client sent the fields in. ``short_hash`` is for logs and events
    only; matching always compares the full digest.
    """

    SHORT_HASH_LENGTH = 16

    def canonicalize(self, fingerprint: DeviceFingerprint) -> str:
        data = fingerprint.model_dump(by_alias=True, mode="json")
        return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def hash(self, fingerprint: DeviceFingerprint) -> FingerprintHash:
        digest = hashlib.sha256(self.canonicalize(fingerprint).encode("utf-8")).hexdigest()
        return FingerprintHash(hash=digest, short_hash=digest[: self.SHORT_HASH_LENGTH])

    def matches(self, fingerprint: DeviceFingerprint, stored_hash: str) -> bool:
        """Recompute the hash and compare in constant time."""
        return hmac.compare_digest(self.hash(fingerprint).hash, stored_hash)
