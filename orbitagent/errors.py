"""
统一错误类型。

- 准入拒绝（CircuitOpenError）可在延迟后重试
- 平台/认证错误由 Worker 捕获并写入状态，不向 Coordinator 外层传播
"""

from __future__ import annotations

from typing import Any, Optional


class OrbitAgentError(Exception):
    def __init__(
        self,
        message: str,
        code: str,
        context: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}
        self.recoverable = recoverable


class AutomationError(OrbitAgentError):
    def __init__(self, message: str, code: str, context: Optional[dict] = None) -> None:
        super().__init__(message, code, context, recoverable=False)


class PlatformError(OrbitAgentError):
    def __init__(self, message: str, platform: str, context: Optional[dict] = None) -> None:
        super().__init__(
            message, "PLATFORM_ERROR", {"platform": platform, **(context or {})}
        )


class AuthenticationError(OrbitAgentError):
    def __init__(self, message: str, platform: Optional[str] = None) -> None:
        super().__init__(
            message,
            "AUTH_REQUIRED",
            {"platform": platform} if platform else {},
            recoverable=True,
        )


class AIServiceError(OrbitAgentError):
    def __init__(self, message: str, code: str, context: Optional[dict] = None) -> None:
        super().__init__(message, code, context, recoverable=True)


class CircuitOpenError(OrbitAgentError):
    """熔断器处于 open 状态，请求被直接拒绝（未调用被保护的函数）。"""

    def __init__(self, message: str = "Circuit breaker is open, requests are blocked") -> None:
        super().__init__(message, "CIRCUIT_OPEN", recoverable=True)


def error_to_response(err: BaseException) -> dict:
    """Serialize an exception into the API error payload."""
    if isinstance(err, OrbitAgentError):
        payload: dict = {"ok": False, "error": err.message, "code": err.code}
        if err.context:
            payload["context"] = err.context
        return payload
    return {"ok": False, "error": str(err), "code": "UNKNOWN_ERROR"}
