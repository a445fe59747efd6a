"""Per-principal attempt limiting for private key export.

The in-memory limiter is process-local. Multi-instance deployments need a
limiter backed by a shared store (e.g. a key-value store with TTL) that
implements the same interface.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional


class KeyExportLimiter(ABC):
    """Bounded attempts per time window per principal."""

    @abstractmethod
    def allow(self, principal_id: str) -> bool:
        """Record an attempt and return whether it is allowed."""
        pass

    @abstractmethod
    def retry_after(self, principal_id: str) -> float:
        """Seconds until the principal's window resets (0 if not limited)."""
        pass

    @abstractmethod
    def reset(self, principal_id: Optional[str] = None) -> None:
        """Forget attempts for one principal, or all of them."""
        pass


class InMemoryRateLimiter(KeyExportLimiter):
    """Fixed-window counter per principal.

    The window opens at the first attempt. Each call counts, including refused
    ones, and the attempt is refused once the count exceeds ``max_attempts``.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = float(window_seconds)
        self._clock = clock
        # principal_id -> (window_start, count)
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    @property
    def tracked(self) -> int:
        """Principals with a live window."""
        with self._lock:
            return len(self._windows)

    def _prune(self, now: float) -> None:
        expired = [
            pid for pid, (start, _) in self._windows.items() if now - start >= self.window_seconds
        ]
        for pid in expired:
            del self._windows[pid]

    def allow(self, principal_id: str) -> bool:
        now = self._clock()
        with self._lock:
            self._prune(now)
            start, count = self._windows.get(principal_id, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._windows[principal_id] = (start, count)
            return count <= self.max_attempts

    def retry_after(self, principal_id: str) -> float:
        now = self._clock()
        with self._lock:
            entry = self._windows.get(principal_id)
            if entry is None:
                return 0.0
            start, count = entry
            remaining = self.window_seconds - (now - start)
            if remaining <= 0:
                del self._windows[principal_id]
                return 0.0
            if count <= self.max_attempts:
                return 0.0
            return remaining

    def reset(self, principal_id: Optional[str] = None) -> None:
        with self._lock:
            if principal_id is None:
                self._windows.clear()
            else:
                self._windows.pop(principal_id, None)


def create_limiter_from_settings() -> InMemoryRateLimiter:
    from stablewallet.config import get_settings

    settings = get_settings()
    return InMemoryRateLimiter(
        max_attempts=settings.key_export_max_attempts,
        window_seconds=settings.key_export_window_seconds,
    )
