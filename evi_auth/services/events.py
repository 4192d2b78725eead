"""Security event publishing for the session core.

Session components never publish anything themselves. SessionService collects
``AuthEvent`` objects and hands them back with each outcome (or attaches them
to the raised error); the API layer drains them into ``EventPublisher``.
"""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from evi_auth.core.config import settings

logger = logging.getLogger(__name__)

# Event log lines go to a dedicated logger so operators can route them
event_logger = logging.getLogger("evi_auth.events")

LOGIN_ATTEMPT = "auth.login.attempt"
LOGIN_SUCCESS = "auth.login.success"
LOGIN_FAILED = "auth.login.failed"
LOGIN_BLOCKED = "auth.login.blocked"
TOKEN_EVICTED = "auth.token.evicted"
TOKEN_ISSUED = "auth.token.issued"
TOKEN_REFRESH_SUCCESS = "auth.token.refresh.success"
TOKEN_REFRESH_FAILED = "auth.token.refresh.failed"
FINGERPRINT_MISMATCH = "auth.security.fingerprint.mismatch"
LOGOUT_SUCCESS = "auth.logout.success"
LOGOUT_ALL = "auth.logout.all"
STORAGE_ERROR = "auth.storage.error"
CONFIG_ERROR = "auth.config.error"

_SEVERITY_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True)
class AuthEvent:
    """One structured security event.

    Payloads hold identifiers, reasons, hashes and booleans only.
    """

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    severity: str = "info"
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class EventPublisher:
    """Fire-and-forget sink for AuthEvents.

    Features:
    - Writes every event to the ``evi_auth.events`` logger
    - In-memory buffer of recent events for diagnostics and tests
    - Listener callbacks (sync or async) for forwarding to an external bus
    - Payload sanitization so secrets never leave the process

    ``publish`` never raises into the caller.
    """

    _instance: Optional["EventPublisher"] = None
    _instance_lock: threading.Lock = threading.Lock()

    BROADCAST_BUFFER_SIZE = 1000

    # Maximum concurrent notification tasks to prevent unbounded task creation
    MAX_NOTIFICATION_TASKS = 100

    # Keys whose values are always replaced, matched as substrings
    SENSITIVE_KEY_PARTS = (
        "password",
        "secret",
        "authorization",
        "cookie",
        "private_key",
        "credential",
    )
    # Keys replaced only on exact match ("token_hash" style keys are fine)
    SENSITIVE_KEYS = {"token", "access_token", "refresh_token", "jwt", "bearer"}

    def __init__(self):
        self._listeners: list[Callable] = []
        self._broadcast_buffer: deque = deque(maxlen=self.BROADCAST_BUFFER_SIZE)
        self._notification_tasks: set[asyncio.Task] = set()

    @classmethod
    def get_instance(cls) -> "EventPublisher":
        """Get or create singleton instance (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                # Double-check locking pattern
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton. Used by tests."""
        with cls._instance_lock:
            cls._instance = None

    def add_listener(self, callback: Callable) -> None:
        """Add listener for published events.

        Callback receives the sanitized event dict.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable) -> None:
        """Remove a listener."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    def get_recent(self, count: int = 100) -> list[dict]:
        """Get recent events from the broadcast buffer."""
        return list(self._broadcast_buffer)[-count:]

    def sanitize(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Redact sensitive keys and anything that looks like a refresh secret."""
        if not payload:
            return {}

        def redact_value(key: str, value: Any) -> Any:
            key_lower = key.lower()
            if key_lower in self.SENSITIVE_KEYS:
                return "[REDACTED]"
            for sensitive in self.SENSITIVE_KEY_PARTS:
                if sensitive in key_lower:
                    return "[REDACTED]"
            if isinstance(value, dict):
                return {k: redact_value(k, v) for k, v in value.items()}
            if isinstance(value, str):
                if value.startswith(settings.refresh_token_prefix):
                    return "[REDACTED]"
                # Truncate long string values to prevent log bloat
                if len(value) > 200:
                    return value[:200] + "...[truncated]"
            return value

        return {k: redact_value(k, v) for k, v in payload.items()}

    async def publish(self, event: AuthEvent) -> dict | None:
        """Publish one event. Returns the sanitized entry, or None if it was dropped."""
        try:
            entry = event.to_dict()
            entry["payload"] = self.sanitize(event.payload)
        except Exception as e:
            logger.warning(f"Dropping unpublishable event {event.name!r}: {e}")
            return None

        level = _SEVERITY_LEVELS.get(event.severity, logging.INFO)
        event_logger.log(level, event.name, extra={"event": entry})
        self._broadcast_buffer.append(entry)

        if not self._listeners:
            return entry

        # Notify listeners (non-blocking, with error handling and task limiting)
        try:
            self._notification_tasks = {t for t in self._notification_tasks if not t.done()}

            if len(self._notification_tasks) < self.MAX_NOTIFICATION_TASKS:
                task = asyncio.create_task(self._notify_listeners_safe(entry))
                self._notification_tasks.add(task)
                task.add_done_callback(lambda t: self._notification_tasks.discard(t))
            else:
                logger.warning(
                    f"Notification task limit reached ({self.MAX_NOTIFICATION_TASKS}), "
                    "skipping listener notification"
                )
        except Exception as e:
            logger.warning(f"Failed to create listener notification task: {e}")

        return entry

    async def publish_all(self, events: Iterable[AuthEvent]) -> None:
        """Publish events in order."""
        for event in events:
            await self.publish(event)

    async def drain(self) -> None:
        """Wait for in-flight listener notifications to finish."""
        pending = [t for t in self._notification_tasks if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _notify_listeners(self, entry: dict) -> None:
        """Notify all listeners of a new event."""
        for listener in list(self._listeners):
            try:
                if asyncio.iscoroutinefunction(listener):
                    await listener(entry)
                else:
                    listener(entry)
            except Exception as e:
                logger.warning(f"Listener error: {e}")

    async def _notify_listeners_safe(self, entry: dict) -> None:
        """Safe wrapper for _notify_listeners that catches unhandled exceptions."""
        try:
            await self._notify_listeners(entry)
        except Exception as e:
            logger.error(f"Unhandled error in listener notification task: {e}")


# Convenience function for dependency injection
def get_event_publisher() -> EventPublisher:
    """Get the event publisher singleton."""
    return EventPublisher.get_instance()
