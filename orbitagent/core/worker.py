"""
平台 Worker：一个平台一个实例，独占自己的浏览器会话

职责：
- 搜索结果分页抽取：去重、限流、熔断保护的详情抽取，失败时保存卡片基础信息
- 可选的岗位分析钩子
- 已批准岗位的批量投递：会话上限、熔断保护、等待用户回答表单问题
- stop / pause 只在动作之间的检查点生效，不打断正在执行的步骤

注意：所有浏览器调用都发生在运行 Worker 的线程里；
其他线程只能调用 stop / pause / resume / resolve_answer / get_status。
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional, Sequence

from .. import constants
from ..config import (
    get_breaker_settings,
    get_healer_settings,
    get_hints_dirs,
    get_rate_limit_settings,
    is_apply_disabled,
)
from ..db import repositories
from ..errors import AuthenticationError, AutomationError, CircuitOpenError
from ..models.job_post import JobPost, JobStatus
from ..models.search_profile import SearchProfile
from .action_engine import ActionEngine
from .adapters import ApplicationResult, JobDetails, Listing, PlatformAdapter, get_adapter
from .circuit_breaker import CircuitBreaker
from .console import LogFn, console_log
from .events import (
    ApplicationCompleteData,
    ApplicationPauseQuestionData,
    ApplicationProgressData,
    CoreEvent,
    CoreEventBus,
)
from .hint_executor import HintBasedExecutor
from .human_behavior import HumanBehavior
from .llm_runtime import OpenAICompletionService
from .rate_limiter import RateLimiter
from .selector_healer import SelectorHealer
from .skills_loader import SkillsLoader

WorkerState = Literal["idle", "running", "paused", "error"]


@dataclass
class WorkerStatus:
    platform: str
    state: WorkerState = "idle"
    current_action: Optional[str] = None
    jobs_extracted: int = 0
    jobs_analyzed: int = 0
    applications_submitted: int = 0
    actions_per_minute: int = 0
    session_start_time: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def copy(self) -> "WorkerStatus":
        return replace(self, errors=list(self.errors))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JobAnalysis:
    match_score: float
    reasoning: str = ""


JobAnalyzer = Callable[[JobPost], JobAnalysis]


def deduplicate_title(raw: str) -> str:
    """
    修复 DOM 抽取时重复的标题文本。

    嵌套 span 常让 inner_text 返回 "Title Title" 或 "Title Title with suffix"，
    此时返回后半段（更完整的版本）。
    """
    title = (raw or "").strip()
    if len(title) < 10:
        return title

    words = title.split()
    if len(words) < 4:
        return title

    for n in range(len(words) // 3, -(-len(words) // 2) + 1):
        prefix = " ".join(words[:n])
        rest = " ".join(words[n:])
        if rest.startswith(prefix):
            return rest
    return title


class _PendingQuestion:
    def __init__(self, question: str, job_id: int) -> None:
        self.question = question
        self.job_id = job_id
        self.answer: Optional[str] = None
        self.done = threading.Event()


class PlatformWorker:
    """
    单平台执行单元。

    ``session`` 是任意带 ``page`` 属性和 ``close()`` 方法的对象
    （默认是 BrowserManager 创建的 BrowserSession）。
    """

    def __init__(
        self,
        platform: str,
        session: Any,
        *,
        event_bus: Optional[CoreEventBus] = None,
        on_status_update: Optional[Callable[[WorkerStatus], None]] = None,
        adapter: Optional[PlatformAdapter] = None,
        engine: Optional[ActionEngine] = None,
        healer: Optional[SelectorHealer] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        behavior: Optional[HumanBehavior] = None,
        analyzer: Optional[JobAnalyzer] = None,
        login_timeout: float = constants.LOGIN_WAIT_TIMEOUT_SECONDS,
        login_poll_interval: float = constants.LOGIN_POLL_INTERVAL_SECONDS,
        question_timeout: float = constants.QUESTION_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.platform = platform
        self.session = session
        self.event_bus = event_bus
        self.on_status_update = on_status_update
        self._log = log_fn or console_log(f"Worker:{platform}")
        self._adapter = adapter

        if rate_limiter is None:
            rate_cfg = get_rate_limit_settings()
            rate_limiter = RateLimiter(rate_cfg.max_actions, rate_cfg.window_ms)
        if circuit_breaker is None:
            breaker_cfg = get_breaker_settings()
            circuit_breaker = CircuitBreaker(
                breaker_cfg.failure_threshold,
                breaker_cfg.reset_timeout_ms,
                name=f"{platform}-actions",
            )
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.healer = healer or self._build_default_healer()
        self.engine = engine or self._build_default_engine()
        self.behavior = behavior or HumanBehavior()
        self.analyzer = analyzer

        self.login_timeout = login_timeout
        self.login_poll_interval = login_poll_interval
        self.question_timeout = question_timeout
        self._clock = clock or time.monotonic

        self._running = False
        self._stop_event = threading.Event()
        # set = 未暂停
        self._resume_event = threading.Event()
        self._resume_event.set()

        self._status_lock = threading.Lock()
        self._status = WorkerStatus(platform=platform)

        self._question_lock = threading.Lock()
        self._pending: Optional[_PendingQuestion] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _build_default_healer(self) -> SelectorHealer:
        breaker_cfg = get_breaker_settings()
        healer_cfg = get_healer_settings()
        return SelectorHealer(
            self.platform,
            OpenAICompletionService() if healer_cfg.ai_enabled else None,
            cache_dir=healer_cfg.cache_dir,
            circuit_breaker=CircuitBreaker(
                breaker_cfg.failure_threshold,
                breaker_cfg.reset_timeout_ms,
                name=f"{self.platform}-ai",
            ),
        )

    def _build_default_engine(self) -> ActionEngine:
        executor = HintBasedExecutor()
        hint_file = SkillsLoader(get_hints_dirs()).load_skill(self.platform)
        if hint_file is not None:
            executor.load_hints(hint_file.site, hint_file)
        else:
            self._log(f"No hint file found for {self.platform}", "warn")
        return ActionEngine(
            executor,
            healer=self.healer,
            rate_limiter=self.rate_limiter,
            platform=self.platform,
        )

    @property
    def adapter(self) -> PlatformAdapter:
        if self._adapter is None:
            self._adapter = get_adapter(self.platform)
        return self._adapter

    @property
    def page(self):
        if self.session is None:
            raise AutomationError(
                f"Session for {self.platform} is closed",
                "SESSION_CLOSED",
                {"platform": self.platform},
            )
        return self.session.page

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        self._log("Stopping", "info")
        self._running = False
        self._stop_event.set()
        self._resume_event.set()
        self.resolve_answer(None)
        self._update_status("idle", None)

    def pause(self) -> None:
        if not self._running:
            return
        self._log("Pausing", "info")
        self._resume_event.clear()
        self._update_status("paused", "Paused by user")

    def resume(self) -> None:
        if not self._running:
            return
        self._log("Resuming", "info")
        self._resume_event.set()
        self._update_status("running", "Resumed")

    def is_running(self) -> bool:
        return self._running

    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def _checkpoint(self) -> bool:
        """动作之间调用：暂停时在这里阻塞；返回 False 表示已停止。"""
        self._resume_event.wait()
        return not self._stop_event.is_set()

    def close(self) -> None:
        """释放浏览器会话（可重复调用）。"""
        session, self.session = self.session, None
        if session is None:
            return
        try:
            session.close()
        except Exception as exc:
            self._log(f"Failed to close session: {exc}", "warn")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> WorkerStatus:
        with self._status_lock:
            snapshot = self._status.copy()
        snapshot.actions_per_minute = self.rate_limiter.get_count()
        return snapshot

    def _reset_stats(self) -> None:
        with self._status_lock:
            self._status = WorkerStatus(
                platform=self.platform,
                session_start_time=datetime.now(timezone.utc).isoformat(),
            )

    def _update_status(self, state: WorkerState, action: Optional[str]) -> None:
        with self._status_lock:
            # 暂停期间的进度更新只改 current_action
            if state == "running" and not self._resume_event.is_set():
                state = "paused"
            self._status.state = state
            self._status.current_action = action
        self._send_status()

    def _add_error(self, message: str) -> None:
        with self._status_lock:
            self._status.errors.append(message)

    def _increment(self, counter: str) -> None:
        with self._status_lock:
            setattr(self._status, counter, getattr(self._status, counter) + 1)

    def _send_status(self) -> None:
        snapshot = self.get_status()
        if self.on_status_update is not None:
            self.on_status_update(snapshot)
        else:
            self._emit("automation:status", snapshot)

    def _emit(self, event: CoreEvent, payload: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, payload)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _begin(self, action: str) -> None:
        # 不清除停止标志：注册后、开始前收到的 stop 仍然有效
        self._resume_event.set()
        self._running = True
        self.healer.reset_session()
        self._reset_stats()
        self._update_status("running", action)

    def _fail(self, exc: BaseException) -> None:
        self._log(f"❌ Run failed: {exc}", "error")
        self._add_error(str(exc))
        self._update_status("error", str(exc))

    def _finish(self) -> None:
        self._running = False
        self._stop_event.clear()
        with self._status_lock:
            state = self._status.state
        if state != "error":
            self._update_status("idle", None)
        else:
            self._send_status()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _ensure_authenticated(self) -> bool:
        if self.adapter.is_authenticated(self.page):
            return True
        if self.wait_for_login():
            return True
        err = AuthenticationError(
            f"Not authenticated on {self.platform}. Please log in first.", self.platform
        )
        self._add_error(err.message)
        self._update_status("error", err.message)
        return False

    def wait_for_login(self) -> bool:
        """打开登录页并轮询，直到用户登录、Worker 被停止或超时。"""
        self._log(f"Not authenticated on {self.platform}, navigating to login page", "info")
        self._update_status("running", f"Waiting for {self.platform} login...")
        self.adapter.navigate_to_login(self.page)

        deadline = self._clock() + self.login_timeout
        while self._clock() < deadline:
            if self._stop_event.wait(self.login_poll_interval):
                return False
            if self.adapter.is_authenticated(self.page):
                self._log(f"✓ Logged in to {self.platform}", "info")
                return True

        self._log(f"⚠️ Login timeout for {self.platform}", "warn")
        return False

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def run_profile(self, profile_id: int) -> None:
        if repositories.get_profile(profile_id) is None:
            raise AutomationError(
                f"Profile not found: {profile_id}",
                "PROFILE_NOT_FOUND",
                {"profile_id": profile_id},
            )
        self.run_profiles([profile_id])

    def run_profiles(self, profile_ids: Sequence[int]) -> None:
        """按顺序抽取多个搜索配置；熔断或登录失败会结束整个运行。"""
        self._begin(f"Running {len(profile_ids)} profile(s)")
        try:
            if self.is_stopped() or not self._ensure_authenticated():
                return
            for index, profile_id in enumerate(profile_ids):
                if not self._checkpoint():
                    break
                profile = repositories.get_profile(profile_id)
                if profile is None:
                    self._add_error(f"Profile not found: {profile_id}")
                    continue

                self._update_status("running", f"Extracting: {profile.name}")
                if not self._extract_from_profile(profile):
                    break

                if index < len(profile_ids) - 1 and not self.is_stopped():
                    self.behavior.between_applications()
        except Exception as exc:
            self._fail(exc)
        finally:
            self._finish()

    def _extract_from_profile(self, profile: SearchProfile) -> bool:
        """返回 False 表示熔断器已打开，调用方应结束本次运行。"""
        page = self.page
        search_url = self.adapter.build_search_url(profile, 1)
        self._log(f"Navigating to search: {search_url}", "info")
        self._update_status("running", f"Searching: {', '.join(profile.keywords or [])}")
        page.goto(search_url, wait_until="domcontentloaded")
        self.behavior.delay(2000, 4000)

        page_num = 1
        while page_num <= constants.MAX_SEARCH_PAGES:
            if not self._checkpoint():
                return True
            if self.get_status().jobs_extracted >= HumanBehavior.MAX_EXTRACTIONS_PER_SESSION:
                self._log("Extraction limit reached for session", "info")
                break

            self._update_status("running", f"Page {page_num}: extracting listings")
            listings = self.adapter.extract_listings(page)
            self._log(f"Found {len(listings)} listings on page {page_num}", "info")
            if not listings:
                break

            for listing in listings:
                if not self._checkpoint():
                    return True
                if not self._process_listing(profile, listing):
                    return False

            page_num += 1
            if page_num > constants.MAX_SEARCH_PAGES or not self._checkpoint():
                break
            next_url = self.adapter.build_search_url(profile, page_num)
            self._log(f"Navigating to page {page_num}: {next_url}", "info")
            page.goto(next_url, wait_until="domcontentloaded")
            self.behavior.delay(2000, 4000)

        self._log(
            f"Extraction complete for {profile.name}: "
            f"{self.get_status().jobs_extracted} jobs",
            "info",
        )
        self._analyze_new_jobs(profile)
        return True

    def _process_listing(self, profile: SearchProfile, listing: Listing) -> bool:
        if not listing.external_id:
            return True
        if repositories.job_exists(listing.external_id, self.platform):
            self._log(f"Skipping duplicate: {listing.title} ({listing.external_id})", "info")
            return True

        self._update_status("running", f"Extracting: {listing.title}")
        self.rate_limiter.acquire()

        try:
            details = self.circuit_breaker.execute(
                lambda: self._fetch_details(listing)
            )
            self._save_job(profile, listing, details)
        except CircuitOpenError:
            self._log("⚠️ Circuit breaker open, stopping extraction", "warn")
            self._add_error("Too many consecutive failures, extraction stopped")
            self._update_status("error", "Too many failures, extraction stopped")
            return False
        except Exception as exc:
            self._log(f"⚠️ Failed to extract details for {listing.title}: {exc}", "warn")
            try:
                self._save_job(profile, listing, None)
            except Exception as insert_exc:
                self._log(f"❌ Failed to save basic job: {insert_exc}", "error")
            return True

        self.behavior.between_listings()
        self.behavior.occasional_idle()
        return True

    def _fetch_details(self, listing: Listing) -> JobDetails:
        self.behavior.delay(1500, 3000)
        return self.adapter.extract_job_details(self.page, listing.url or "")

    def _save_job(
        self, profile: SearchProfile, listing: Listing, details: Optional[JobDetails]
    ) -> JobPost:
        if details is None:
            details = JobDetails()
            url = listing.url or ""
        else:
            url = listing.url or self.page.url

        job = repositories.insert_job(
            external_id=listing.external_id,
            platform=self.platform,
            profile_id=profile.id,
            url=url,
            title=deduplicate_title(details.title or listing.title or ""),
            company=details.company or listing.company or "",
            location=listing.location or "",
            salary=details.salary,
            description=details.description or "",
            easy_apply=bool(listing.easy_apply),
            status=JobStatus.NEW,
        )
        self._increment("jobs_extracted")
        self._log(f"✓ Saved job: {job.title} @ {job.company}", "info")
        self._emit("jobs:new", job.to_dict())
        self._send_status()
        return job

    def _analyze_new_jobs(self, profile: SearchProfile) -> None:
        if self.analyzer is None:
            return
        new_jobs = repositories.list_jobs(
            status=JobStatus.NEW, platform=self.platform, profile_id=profile.id
        )
        if not new_jobs:
            return

        self._update_status("running", f"Analyzing {len(new_jobs)} jobs")
        for job in new_jobs:
            if not self._checkpoint():
                break
            try:
                self._update_status("running", f"Analyzing: {job.title}")
                analysis = self.analyzer(job)
                repositories.update_job_analysis(
                    job.id, match_score=analysis.match_score, reasoning=analysis.reasoning
                )
                self._increment("jobs_analyzed")
                updated = repositories.get_job(job.id)
                if updated is not None:
                    self._emit("jobs:new", updated.to_dict())
                self._send_status()
            except Exception as exc:
                # 单个岗位分析失败不影响后续岗位
                self._log(f"⚠️ Failed to analyze job {job.title}: {exc}", "warn")

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def apply_to_approved(self) -> None:
        if is_apply_disabled():
            self._log("Auto-apply is disabled, skipping application batch", "info")
            return

        approved = repositories.list_approved_jobs(self.platform)
        if not approved:
            self._log("No approved jobs to apply to", "info")
            return

        self._begin(f"Applying to {len(approved)} jobs")
        try:
            if self.is_stopped() or not self._ensure_authenticated():
                return

            applied = 0
            for job in approved:
                if not self._checkpoint():
                    break
                if applied >= HumanBehavior.MAX_APPLICATIONS_PER_SESSION:
                    self._log("Session application limit reached", "info")
                    break

                outcome = self._apply_one(job)
                if outcome is None:
                    break
                if outcome:
                    applied += 1

                if not self.is_stopped():
                    self.behavior.between_applications()

            self._log(f"Application batch complete: {applied}/{len(approved)} applied", "info")
        except Exception as exc:
            self._fail(exc)
        finally:
            self._finish()

    def _apply_one(self, job: JobPost) -> Optional[bool]:
        """投递单个岗位；返回 None 表示熔断器已打开，应结束整批投递。"""
        self._update_status("running", f"Applying: {job.title} @ {job.company}")
        profile = repositories.get_profile(job.profile_id) if job.profile_id else None
        answers = dict(profile.default_answers or {}) if profile else {}
        resume_path = (profile.resume_file or "") if profile else ""

        def on_progress(step: int, current_action: str) -> None:
            self._emit(
                "application:progress",
                ApplicationProgressData(job_id=job.id, step=step, current_action=current_action),
            )

        try:
            page = self.page
            page.goto(job.url, wait_until="domcontentloaded")
            self.behavior.delay(1500, 3000)
            self.rate_limiter.acquire()
            result: ApplicationResult = self.circuit_breaker.execute(
                lambda: self.adapter.apply_to_job(
                    page,
                    job,
                    engine=self.engine,
                    answers=answers,
                    resume_path=resume_path,
                    on_progress=on_progress,
                    ask_user=self.wait_for_user_answer,
                )
            )
        except CircuitOpenError:
            self._log("⚠️ Circuit breaker open, stopping applications", "warn")
            self._add_error("Too many consecutive failures, applications stopped")
            self._update_status("error", "Too many failures, applications stopped")
            return None
        except Exception as exc:
            self._log(f"❌ Application error for {job.title}: {exc}", "error")
            repositories.update_job_status(job.id, JobStatus.ERROR, error_reason=str(exc))
            self._add_error(f"{job.title}: {exc}")
            self._emit(
                "application:complete",
                ApplicationCompleteData(job_id=job.id, success=False, error=str(exc)),
            )
            return False

        if result.success:
            repositories.mark_job_applied(job.id)
            self._increment("applications_submitted")
            self._log(f"✓ Applied to {job.title} @ {job.company}", "info")
        else:
            self._log(f"⚠️ Failed to apply to {job.title}: {result.error_message}", "warn")
            if result.needs_manual_intervention:
                repositories.update_job_status(
                    job.id, JobStatus.ERROR, error_reason=result.intervention_reason
                )
                self._add_error(f"{job.title}: {result.intervention_reason}")

        self._send_status()
        self._emit(
            "application:complete",
            ApplicationCompleteData(
                job_id=job.id, success=result.success, error=result.error_message
            ),
        )
        return result.success

    # ------------------------------------------------------------------
    # User questions
    # ------------------------------------------------------------------

    @property
    def has_pending_question(self) -> bool:
        with self._question_lock:
            return self._pending is not None

    def wait_for_user_answer(self, question: str, job_id: int) -> Optional[str]:
        """
        推送问题并阻塞当前 Worker 线程，直到 resolve_answer 被调用或超时。
        超时返回 None（跳过该问题）。
        """
        pending = _PendingQuestion(question, job_id)
        with self._question_lock:
            self._pending = pending

        self._emit(
            "application:pause-question",
            ApplicationPauseQuestionData(question=question, job_id=job_id, platform=self.platform),
        )

        answered = pending.done.wait(self.question_timeout)
        with self._question_lock:
            if self._pending is pending:
                self._pending = None
        if not answered:
            self._log(f"⚠️ No answer for question, skipping: {question}", "warn")
            return None
        return pending.answer

    def resolve_answer(self, answer: Optional[str]) -> bool:
        """回答当前挂起的问题；没有挂起问题时返回 False。"""
        with self._question_lock:
            pending, self._pending = self._pending, None
        if pending is None:
            return False
        pending.answer = answer
        pending.done.set()
        return True
