"""
滑动窗口限流器（例如“每个平台每分钟最多 N 个动作”）。
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .console import LogFn, silent_log


@dataclass(frozen=True)
class RateCheck:
    allowed: bool
    wait_ms: float = 0.0


class RateLimiter:
    def __init__(
        self,
        max_actions: int,
        window_ms: int = 60_000,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.max_actions = max_actions
        self.window_ms = window_ms
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._log = log_fn or silent_log
        self._lock = threading.Lock()
        # 升序时间戳（ms），最旧的在左侧
        self._timestamps: deque[float] = deque()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def check(self) -> RateCheck:
        """
        Check whether an action is allowed right now.
        If not, ``wait_ms`` is how long until the oldest entry leaves the window.
        """
        with self._lock:
            return self._check_locked()

    def _check_locked(self) -> RateCheck:
        now = self._now_ms()
        self._prune(now)
        if len(self._timestamps) < self.max_actions:
            return RateCheck(allowed=True, wait_ms=0.0)
        oldest = self._timestamps[0]
        return RateCheck(allowed=False, wait_ms=max(0.0, oldest + self.window_ms - now))

    def acquire(self) -> None:
        """
        Take a slot, sleeping first if the window is full.
        Only the calling thread is suspended.
        """
        with self._lock:
            result = self._check_locked()

        if not result.allowed:
            self._log(f"Rate limit reached, waiting {int(result.wait_ms)}ms", "debug")
            self._sleep(result.wait_ms / 1000.0)

        with self._lock:
            now = self._now_ms()
            self._prune(now)
            self._timestamps.append(now)

    def get_count(self) -> int:
        with self._lock:
            self._prune(self._now_ms())
            return len(self._timestamps)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_ms
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()
