import threading
import time
from collections import deque
from datetime import timedelta
from typing import Callable, Deque, Dict, Optional

import structlog

from app.core.config import settings

logger = structlog.get_logger()


class BruteForceCounter:
    """Sliding-window attempt counter keyed by client address.

    Catches credential stuffing spread across many accounts from one source.
    State is process-local and resets on restart, so it is a best-effort
    throttle next to the per-account lockout, never a replacement for it.
    """

    def __init__(
        self,
        *,
        max_per_window: Optional[int] = None,
        window: Optional[timedelta] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_per_window is None:
            max_per_window = settings.MAX_ATTEMPTS_PER_IP
        if window is None:
            window = timedelta(minutes=settings.BRUTE_FORCE_WINDOW_MINUTES)
        self.max_per_window = max_per_window
        self.window = window
        self._window_seconds = self.window.total_seconds()
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _prune(self, attempts: Deque[float], now: float) -> None:
        window_start = now - self._window_seconds
        while attempts and attempts[0] <= window_start:
            attempts.popleft()

    def _sweep(self, now: float) -> None:
        # Caller holds self._lock. Runs at most once per window.
        for key in list(self._attempts):
            attempts = self._attempts[key]
            self._prune(attempts, now)
            if not attempts:
                del self._attempts[key]
        self._last_sweep = now

    def record_and_check(self, address: str) -> bool:
        """Record one attempt and return True when the address is over the limit."""
        key = address or "unknown"
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._window_seconds:
                self._sweep(now)
            attempts = self._attempts.setdefault(key, deque())
            self._prune(attempts, now)
            attempts.append(now)
            count = len(attempts)

        if count > self.max_per_window:
            logger.warning(
                "brute_force_suspected",
                client_ip=key,
                attempts=count,
                window_minutes=self._window_seconds / 60,
            )
            return True
        return False

    def attempts(self, address: str) -> int:
        key = address or "unknown"
        with self._lock:
            attempts = self._attempts.get(key)
            if attempts is None:
                return 0
            self._prune(attempts, self._clock())
            if not attempts:
                del self._attempts[key]
                return 0
            return len(attempts)

    def retry_after(self, address: str) -> timedelta:
        """Time until one more attempt from the address would be under the limit again."""
        key = address or "unknown"
        now = self._clock()
        with self._lock:
            attempts = self._attempts.get(key)
            if not attempts:
                return timedelta(0)
            self._prune(attempts, now)
            excess = len(attempts) - self.max_per_window
            if excess < 0:
                return timedelta(0)
            releasing = attempts[excess]
        return timedelta(seconds=max(0.0, releasing + self._window_seconds - now))

    def reset(self, address: Optional[str] = None) -> None:
        with self._lock:
            if address is None:
                self._attempts.clear()
            else:
                self._attempts.pop(address, None)
