"""
熔断器（closed / open / half-open），基于 pybreaker

职责：
- 包裹任意可能失败的调用，连续失败达到阈值后直接拒绝
- open -> half-open 的转换在下一次调用时惰性判断，不启动后台定时器
- pybreaker 的 CircuitBreakerError 统一转换为 CircuitOpenError
"""

from __future__ import annotations

from typing import Callable, Literal, Optional, TypeVar

import pybreaker

from ..errors import CircuitOpenError
from .console import LogFn, console_log

T = TypeVar("T")

CircuitState = Literal["closed", "open", "half-open"]

_STATE_NAMES: dict[str, CircuitState] = {
    pybreaker.STATE_CLOSED: "closed",
    pybreaker.STATE_OPEN: "open",
    pybreaker.STATE_HALF_OPEN: "half-open",
}


class _LogListener(pybreaker.CircuitBreakerListener):
    """Forwards state transitions to the engine's log callback."""

    def __init__(self, log: LogFn) -> None:
        self._log = log

    def state_change(self, cb, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", None)
        new_name = getattr(new_state, "name", None)
        if new_name == pybreaker.STATE_OPEN:
            if old_name == pybreaker.STATE_HALF_OPEN:
                self._log("⚠️ Half-open trial failed, reopening circuit", "warn")
            else:
                self._log(
                    f"⚠️ Circuit breaker opened after {cb.fail_counter} consecutive failures",
                    "warn",
                )
        elif new_name == pybreaker.STATE_HALF_OPEN:
            self._log("Circuit breaker transitioning to half-open", "info")
        elif new_name == pybreaker.STATE_CLOSED and old_name == pybreaker.STATE_HALF_OPEN:
            self._log("✓ Circuit breaker recovered, closing", "info")


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_ms: int = 60_000,
        *,
        name: Optional[str] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._log = log_fn or console_log("CircuitBreaker")
        # 失败时抛出原始异常，只有 open 状态的拒绝才是 CircuitBreakerError
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=failure_threshold,
            reset_timeout=reset_timeout_ms / 1000.0,
            throw_new_error_on_trip=False,
            listeners=[_LogListener(self._log)],
            name=name,
        )

    @property
    def failure_count(self) -> int:
        return self._breaker.fail_counter

    def execute(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` under breaker protection.

        - closed: run normally and count failures
        - open: raise CircuitOpenError without calling ``fn``
        - half-open: run one trial call; success closes, failure reopens

        Calls through one breaker are serialized by pybreaker, so a
        half-open breaker never has more than one trial in flight.
        """
        try:
            return self._breaker.call(fn)
        except pybreaker.CircuitBreakerError as exc:
            raise CircuitOpenError() from exc

    def get_state(self) -> CircuitState:
        return _STATE_NAMES.get(self._breaker.current_state, "closed")

    def reset(self) -> None:
        """Force the breaker back to closed (manual recovery)."""
        self._breaker.close()
        self._log("Circuit breaker reset to closed", "info")
