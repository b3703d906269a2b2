"""
平台适配器接口与注册表

具体站点的字段提取 / 投递流程由扩展实现并注册；引擎在运行时按平台名解析。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from ..errors import PlatformError
from ..models.job_post import JobPost
from ..models.search_profile import SearchProfile
from .action_engine import ActionEngine


@dataclass
class Listing:
    external_id: str
    title: str = ""
    company: str = ""
    location: str = ""
    url: str = ""
    easy_apply: bool = False


@dataclass
class JobDetails:
    title: str = ""
    company: str = ""
    description: str = ""
    salary: Optional[str] = None


@dataclass
class ApplicationResult:
    success: bool
    answers_used: dict[str, str] = field(default_factory=dict)
    resume_used: Optional[str] = None
    error_message: Optional[str] = None
    needs_manual_intervention: bool = False
    intervention_reason: Optional[str] = None


ProgressFn = Callable[[int, str], None]
AskUserFn = Callable[[str, int], Optional[str]]


class PlatformAdapter(Protocol):
    def is_authenticated(self, page) -> bool: ...

    def navigate_to_login(self, page) -> None: ...

    def build_search_url(self, profile: SearchProfile, page_num: int = 1) -> str: ...

    def extract_listings(self, page) -> list[Listing]: ...

    def extract_job_details(self, page, url: str) -> JobDetails: ...

    def apply_to_job(
        self,
        page,
        job: JobPost,
        *,
        engine: ActionEngine,
        answers: dict[str, str],
        resume_path: str,
        on_progress: ProgressFn,
        ask_user: AskUserFn,
    ) -> ApplicationResult: ...


AdapterFactory = Callable[[], PlatformAdapter]

_registry: dict[str, AdapterFactory] = {}
_registry_lock = threading.Lock()


def register_adapter(platform: str, factory: AdapterFactory) -> None:
    with _registry_lock:
        _registry[platform] = factory


def unregister_adapter(platform: str) -> None:
    with _registry_lock:
        _registry.pop(platform, None)


def registered_platforms() -> list[str]:
    with _registry_lock:
        return sorted(_registry)


def get_adapter(platform: str) -> PlatformAdapter:
    with _registry_lock:
        factory = _registry.get(platform)
    if factory is None:
        raise PlatformError(f"Unsupported platform: {platform}", platform)
    return factory()
