"""
核心事件总线（发布/订阅）

职责：
- 状态、岗位、投递进度等事件的类型化推送
- 显式构造 / 显式 clear()，不依赖模块级单例
- 监听器数量有上限，单个监听器异常不影响其他监听器
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from .console import LogFn, console_log

CoreEvent = Literal[
    "automation:status",
    "jobs:new",
    "application:progress",
    "application:pause-question",
    "application:complete",
]

CORE_EVENTS: tuple[str, ...] = (
    "automation:status",
    "jobs:new",
    "application:progress",
    "application:pause-question",
    "application:complete",
)

Listener = Callable[[Any], None]


@dataclass
class ApplicationProgressData:
    job_id: int
    step: int
    current_action: str


@dataclass
class ApplicationPauseQuestionData:
    question: str
    job_id: int
    platform: Optional[str] = None


@dataclass
class ApplicationCompleteData:
    job_id: int
    success: bool
    error: Optional[str] = None


class CoreEventBus:
    def __init__(self, max_listeners: int = 20, log_fn: Optional[LogFn] = None) -> None:
        self.max_listeners = max_listeners
        self._log = log_fn or console_log("CoreEventBus")
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: CoreEvent, listener: Listener) -> Callable[[], None]:
        """注册监听器，返回取消订阅函数。"""
        if event not in CORE_EVENTS:
            raise ValueError(f"Unknown event: {event}")
        with self._lock:
            listeners = self._listeners.setdefault(event, [])
            if len(listeners) >= self.max_listeners:
                raise ValueError(
                    f"Too many listeners for {event} (max {self.max_listeners})"
                )
            listeners.append(listener)
        return lambda: self.off(event, listener)

    def once(self, event: CoreEvent, listener: Listener) -> Callable[[], None]:
        def _wrapper(payload: Any) -> None:
            self.off(event, _wrapper)
            listener(payload)

        return self.on(event, _wrapper)

    def off(self, event: CoreEvent, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event: CoreEvent, payload: Any) -> bool:
        """同步投递给当前所有监听器；返回是否有监听器。"""
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(payload)
            except Exception as exc:
                self._log(f"Listener for {event} failed: {exc}", "error")
        return bool(listeners)

    def listener_count(self, event: CoreEvent) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
