"""Per-IP failed login throttle.

Designed for single-instance deployments: state lives in process memory and
is not shared between workers.
"""

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from evi_auth.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class BruteForceEntry:
    """Failure tracking for a single client IP."""

    count: int
    reset_at: float


class BruteForceGuard:
    """Leaky failed-attempt counter keyed by client IP.

    Each failure increments the count and pushes the window expiry to
    now + window. Once the count reaches ``max_attempts`` the IP stays blocked
    until the window expires without further failures; the entry is then
    dropped and counting restarts from zero. A successful login does not
    clear the counter.

    The clock is injectable (monotonic seconds) so tests can move time.
    """

    _instance: Optional["BruteForceGuard"] = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(
        self,
        max_attempts: int | None = None,
        window_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts or settings.brute_force_max_attempts
        self.window_seconds = window_seconds or settings.brute_force_window_seconds
        self._clock = clock
        self._entries: dict[str, BruteForceEntry] = {}
        # threading.Lock: the map may be touched from worker threads as well
        # as the event loop, and no operation awaits while holding it
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "BruteForceGuard":
        """Get the singleton instance (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                # Double-check locking pattern
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton so the next access builds a fresh guard."""
        with cls._instance_lock:
            cls._instance = None

    def _live_entry(self, ip: str, now: float) -> BruteForceEntry | None:
        # Caller holds self._lock
        entry = self._entries.get(ip)
        if entry is not None and now >= entry.reset_at:
            del self._entries[ip]
            return None
        return entry

    def is_blocked(self, ip: str) -> bool:
        """Check whether an IP has exhausted its attempts within the window."""
        with self._lock:
            entry = self._live_entry(ip, self._clock())
            return entry is not None and entry.count >= self.max_attempts

    def record_failure(self, ip: str) -> int:
        """Record a failed attempt. Returns the failure count in the current window."""
        with self._lock:
            now = self._clock()
            entry = self._live_entry(ip, now)
            if entry is None:
                entry = BruteForceEntry(count=1, reset_at=now + self.window_seconds)
                self._entries[ip] = entry
            else:
                entry.count += 1
                entry.reset_at = now + self.window_seconds
            count = entry.count

        if count == self.max_attempts:
            logger.warning(f"Blocking login attempts from {ip} after {count} failures")
        return count

    def retry_after(self, ip: str) -> int:
        """Seconds until the IP's window expires (0 if no live entry)."""
        with self._lock:
            now = self._clock()
            entry = self._live_entry(ip, now)
            if entry is None:
                return 0
            return max(1, math.ceil(entry.reset_at - now))

    def failure_count(self, ip: str) -> int:
        with self._lock:
            entry = self._live_entry(ip, self._clock())
            return entry.count if entry else 0

    def sweep(self) -> int:
        """Remove expired entries to bound memory.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [ip for ip, entry in self._entries.items() if now >= entry.reset_at]
            for ip in expired:
                del self._entries[ip]

        if expired:
            logger.debug(f"Swept {len(expired)} expired brute-force entries")
        return len(expired)

    def reset(self, ip: str | None = None) -> None:
        """Clear one IP, or every entry when no IP is given."""
        with self._lock:
            if ip:
                self._entries.pop(ip, None)
            else:
                self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def get_brute_force_guard() -> BruteForceGuard:
    """Get the brute-force guard singleton."""
    return BruteForceGuard.get_instance()


async def brute_force_sweep_loop(
    guard: BruteForceGuard | None = None,
    interval_seconds: int | None = None,
) -> None:
    """Periodic sweep of expired brute-force entries.

    Bounds how long an entry can outlive its window to one sweep interval.
    """
    guard = guard or get_brute_force_guard()
    interval = interval_seconds or settings.brute_force_sweep_interval_seconds
    while True:
        try:
            await asyncio.sleep(interval)
            guard.sweep()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Brute-force sweep error: {e}")
