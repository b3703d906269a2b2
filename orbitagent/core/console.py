from __future__ import annotations

from typing import Callable

LogFn = Callable[[str, str], None]


def console_log(tag: str) -> LogFn:
    """默认日志输出：``[tag] [LEVEL] message``。"""

    def _log(message: str, level: str = "info") -> None:
        print(f"[{tag}] [{level.upper()}] {message}")

    return _log


def silent_log(message: str, level: str = "info") -> None:
    return None
