"""
多平台协调器

每个平台一个 PlatformWorker，各自在线程池的一个线程里运行并持有独立的浏览器会话；
一个平台失败不会取消或阻塞其他平台。状态按需从各 Worker 的快照聚合。
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Optional, Sequence

from ..db import repositories
from ..errors import AutomationError
from .browser_manager import open_platform_session
from .console import LogFn, console_log
from .events import CoreEventBus
from .worker import PlatformWorker, WorkerState, WorkerStatus

SessionFactory = Callable[[str], Any]
WorkerFactory = Callable[..., PlatformWorker]


@dataclass
class PlatformStatus:
    platform: str
    state: WorkerState
    current_action: Optional[str] = None
    jobs_extracted: int = 0
    jobs_analyzed: int = 0
    applications_submitted: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class AggregateStatus:
    state: WorkerState = "idle"
    current_action: Optional[str] = None
    jobs_extracted: int = 0
    jobs_analyzed: int = 0
    applications_submitted: int = 0
    actions_per_minute: int = 0
    session_start_time: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    platforms: Optional[list[PlatformStatus]] = None

    def to_dict(self) -> dict:
        return asdict(self)


class Coordinator:
    def __init__(
        self,
        *,
        event_bus: Optional[CoreEventBus] = None,
        session_factory: Optional[SessionFactory] = None,
        worker_factory: Optional[WorkerFactory] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.event_bus = event_bus or CoreEventBus()
        self._session_factory = session_factory or open_platform_session
        self._worker_factory = worker_factory or PlatformWorker
        self._log = log_fn or console_log("Coordinator")
        self._lock = threading.Lock()
        self._workers: dict[str, PlatformWorker] = {}
        self._pages: dict[str, Any] = {}
        self._launching: set[str] = set()
        self.session_start_time: Optional[str] = None

    def _mark_session_start(self) -> None:
        self.session_start_time = datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def start_all(self) -> None:
        """按平台分组所有启用的搜索配置，并行运行，等待全部结束。"""
        profiles = repositories.list_enabled_profiles()
        if not profiles:
            self._log("No enabled profiles to run", "info")
            return

        by_platform: dict[str, list[int]] = {}
        for profile in profiles:
            by_platform.setdefault(profile.platform, []).append(profile.id)

        self._mark_session_start()
        self._fan_out(
            {
                platform: partial(self.start_platform, platform, ids)
                for platform, ids in by_platform.items()
            }
        )
        self.emit_aggregate_status()

    def start_profile(self, profile_id: int) -> None:
        profile = repositories.get_profile(profile_id)
        if profile is None:
            raise AutomationError(
                f"Profile not found: {profile_id}",
                "PROFILE_NOT_FOUND",
                {"profile_id": profile_id},
            )
        self._mark_session_start()
        self.start_platform(profile.platform, [profile_id])

    def start_platform(self, platform: str, profile_ids: Sequence[int]) -> None:
        worker = self._launch(platform)
        if worker is None:
            return
        try:
            worker.run_profiles(list(profile_ids))
        finally:
            self.cleanup_platform(platform, worker)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def apply_to_approved(self) -> None:
        """按平台并行投递所有已批准的岗位。"""
        approved = repositories.list_approved_jobs()
        if not approved:
            self._log("No approved jobs to apply to", "info")
            return

        platforms = sorted({job.platform for job in approved})
        self._mark_session_start()
        self._fan_out(
            {platform: partial(self._apply_for_platform, platform) for platform in platforms}
        )
        self.emit_aggregate_status()

    def _apply_for_platform(self, platform: str) -> None:
        worker = self._launch(platform)
        if worker is None:
            return
        try:
            worker.apply_to_approved()
        finally:
            self.cleanup_platform(platform, worker)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def _targets(self, platform: Optional[str]) -> list[PlatformWorker]:
        with self._lock:
            if platform is None:
                return list(self._workers.values())
            worker = self._workers.get(platform)
            return [worker] if worker is not None else []

    def stop(self, platform: Optional[str] = None) -> None:
        for worker in self._targets(platform):
            worker.stop()

    def pause(self, platform: Optional[str] = None) -> None:
        for worker in self._targets(platform):
            worker.pause()

    def resume(self, platform: Optional[str] = None) -> None:
        for worker in self._targets(platform):
            worker.resume()

    def resolve_answer(self, answer: Optional[str]) -> int:
        """把回答转交给所有有挂起问题的 Worker，返回被回答的数量。"""
        return sum(1 for worker in self._targets(None) if worker.resolve_answer(answer))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return any(worker.is_running() for worker in self._targets(None))

    def get_active_platforms(self) -> list[str]:
        with self._lock:
            workers = list(self._workers.items())
        return [platform for platform, worker in workers if worker.is_running()]

    def get_pages(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._pages)

    def get_status(self) -> AggregateStatus:
        """
        Aggregate every worker snapshot.

        Precedence: any running > any paused > any error > idle.
        """
        with self._lock:
            workers = list(self._workers.items())

        status = AggregateStatus(session_start_time=self.session_start_time)
        platforms: list[PlatformStatus] = []
        for platform, worker in workers:
            snapshot: WorkerStatus = worker.get_status()
            platforms.append(
                PlatformStatus(
                    platform=platform,
                    state=snapshot.state,
                    current_action=snapshot.current_action,
                    jobs_extracted=snapshot.jobs_extracted,
                    jobs_analyzed=snapshot.jobs_analyzed,
                    applications_submitted=snapshot.applications_submitted,
                    errors=list(snapshot.errors),
                )
            )
            status.jobs_extracted += snapshot.jobs_extracted
            status.jobs_analyzed += snapshot.jobs_analyzed
            status.applications_submitted += snapshot.applications_submitted
            status.actions_per_minute += snapshot.actions_per_minute
            status.errors.extend(snapshot.errors)

            if snapshot.state == "running":
                status.state = "running"
                status.current_action = snapshot.current_action
            elif snapshot.state == "paused" and status.state != "running":
                status.state = "paused"
            elif snapshot.state == "error" and status.state == "idle":
                status.state = "error"

        status.platforms = platforms or None
        return status

    def emit_aggregate_status(self) -> None:
        self.event_bus.emit("automation:status", self.get_status())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fan_out(self, tasks: dict[str, Callable[[], None]]) -> None:
        """每个平台一个线程；等待全部结束，单个平台的异常只记录日志。"""
        with ThreadPoolExecutor(
            max_workers=max(1, len(tasks)), thread_name_prefix="orbitagent-platform"
        ) as pool:
            futures = {pool.submit(task): platform for platform, task in tasks.items()}
            for future in as_completed(futures):
                platform = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    self._log(f"❌ Platform run failed ({platform}): {exc}", "error")

    def _launch(self, platform: str) -> Optional[PlatformWorker]:
        """
        为平台创建会话与 Worker。

        已有 Worker（包括已 stop 但尚未退出的）或正在启动时返回 None。
        会话在调用线程里创建，之后的浏览器操作也都在这个线程里。
        """
        with self._lock:
            if platform in self._workers or platform in self._launching:
                self._log(f"⚠️ Platform {platform} is already running", "warn")
                return None
            self._launching.add(platform)

        session = None
        try:
            session = self._session_factory(platform)
            worker = self._worker_factory(
                platform,
                session,
                event_bus=self.event_bus,
                on_status_update=self._on_worker_status,
            )
        except Exception:
            with self._lock:
                self._launching.discard(platform)
            if session is not None:
                session.close()
            raise

        with self._lock:
            self._launching.discard(platform)
            self._workers[platform] = worker
            self._pages[platform] = session.page
        return worker

    def _on_worker_status(self, _status: WorkerStatus) -> None:
        self.emit_aggregate_status()

    def cleanup_platform(self, platform: str, worker: Optional[PlatformWorker] = None) -> None:
        """关闭 Worker 的会话并移除 Worker / 页面映射。"""
        with self._lock:
            current = self._workers.get(platform)
            target = worker or current
            if target is not None and current is target:
                del self._workers[platform]
                self._pages.pop(platform, None)
        if target is not None:
            target.close()
        self._log(f"Cleaned up platform: {platform}", "info")
