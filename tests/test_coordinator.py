from __future__ import annotations

import threading
import time

import pytest

from fakes import FakePage, FakeSession

from orbitagent.core.console import silent_log
from orbitagent.core.coordinator import Coordinator
from orbitagent.core.events import CoreEventBus
from orbitagent.core.worker import WorkerStatus
from orbitagent.db import repositories
from orbitagent.errors import AutomationError
from orbitagent.models.job_post import JobStatus


class _StubWorker:
    """Stands in for PlatformWorker: records calls, optionally blocks or raises."""

    def __init__(self, platform, session, *, event_bus, on_status_update):
        self.platform = platform
        self.session = session
        self.event_bus = event_bus
        self.on_status_update = on_status_update
        self.status = WorkerStatus(platform=platform)
        self.running = False
        self.closed = False
        self.stopped = False
        self.paused = False
        self.pending_question = False
        self.ran_profiles: list[int] = []
        self.applied = False
        self.gate: threading.Event | None = None
        self.started = threading.Event()
        self.error: Exception | None = None

    def _run(self):
        self.running = True
        self.status.state = "running"
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.error is not None:
                raise self.error
        finally:
            self.running = False
            self.status.state = "idle"

    def run_profiles(self, profile_ids):
        self.ran_profiles.extend(profile_ids)
        self.status.jobs_extracted += len(profile_ids)
        self.on_status_update(self.status.copy())
        self._run()

    def apply_to_approved(self):
        self.applied = True
        self._run()

    def stop(self):
        self.stopped = True

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def is_running(self):
        return self.running

    def get_status(self):
        return self.status.copy()

    def resolve_answer(self, answer):
        answered, self.pending_question = self.pending_question, False
        return answered

    def close(self):
        self.closed = True
        self.session.close()


class _Harness:
    def __init__(self, *, failing_sessions=(), configure=None):
        self.failing_sessions = set(failing_sessions)
        self.configure = configure
        self.sessions: dict[str, FakeSession] = {}
        self.workers: dict[str, list[_StubWorker]] = {}
        self.bus = CoreEventBus(log_fn=silent_log)
        self.coordinator = Coordinator(
            event_bus=self.bus,
            session_factory=self.open_session,
            worker_factory=self.make_worker,
            log_fn=silent_log,
        )

    def open_session(self, platform):
        if platform in self.failing_sessions:
            raise RuntimeError(f"{platform} browser crashed on launch")
        session = FakeSession(FakePage(url=f"https://{platform}.test/"))
        self.sessions[platform] = session
        return session

    def make_worker(self, platform, session, **kwargs):
        worker = _StubWorker(platform, session, **kwargs)
        if self.configure is not None:
            self.configure(worker)
        self.workers.setdefault(platform, []).append(worker)
        return worker


def _profile(name, platform, enabled=True):
    return repositories.create_profile(
        name=name, platform=platform, keywords=["python"], enabled=enabled
    )


def test_start_all_isolates_platform_failures(isolated_db):
    li_a = _profile("li-a", "linkedin")
    li_b = _profile("li-b", "linkedin")
    _profile("indeed", "indeed")
    _profile("upwork", "upwork")
    _profile("disabled", "glassdoor", enabled=False)

    def configure(worker):
        if worker.platform == "upwork":
            worker.error = RuntimeError("page crashed")

    harness = _Harness(failing_sessions={"indeed"}, configure=configure)
    statuses = []
    harness.bus.on("automation:status", statuses.append)

    harness.coordinator.start_all()

    assert harness.workers["linkedin"][0].ran_profiles == [li_a.id, li_b.id]
    assert "indeed" not in harness.workers
    assert "glassdoor" not in harness.workers
    assert harness.workers["upwork"][0].ran_profiles
    # both launched sessions were released even though upwork raised
    assert harness.sessions["linkedin"].closed is True
    assert harness.sessions["upwork"].closed is True
    assert harness.coordinator.get_pages() == {}
    assert harness.coordinator.session_start_time is not None
    assert statuses[-1].state == "idle"
    assert statuses[-1].platforms is None


def test_start_all_without_profiles_is_noop(isolated_db):
    harness = _Harness()
    harness.coordinator.start_all()
    assert harness.workers == {}
    assert harness.coordinator.session_start_time is None


def test_start_profile_unknown_raises(isolated_db):
    harness = _Harness()
    with pytest.raises(AutomationError) as exc_info:
        harness.coordinator.start_profile(42)
    assert exc_info.value.code == "PROFILE_NOT_FOUND"


def test_start_profile_runs_on_its_platform(isolated_db):
    profile = _profile("indeed", "indeed")
    harness = _Harness()

    harness.coordinator.start_profile(profile.id)

    assert harness.workers["indeed"][0].ran_profiles == [profile.id]


def test_duplicate_start_is_a_noop_while_running():
    gate = threading.Event()

    def configure(worker):
        worker.gate = gate

    harness = _Harness(configure=configure)
    coordinator = harness.coordinator
    thread = threading.Thread(target=coordinator.start_platform, args=("linkedin", [1]))
    thread.start()
    try:
        assert _wait_for_worker(harness, "linkedin").started.wait(5)

        coordinator.start_platform("linkedin", [2])

        assert len(harness.workers["linkedin"]) == 1
        assert coordinator.is_running() is True
        assert coordinator.get_active_platforms() == ["linkedin"]
        assert coordinator.get_pages()["linkedin"].url == "https://linkedin.test/"
    finally:
        gate.set()
        thread.join(5)

    assert harness.workers["linkedin"][0].ran_profiles == [1]
    assert coordinator.get_pages() == {}
    assert coordinator.is_running() is False


def _wait_for_worker(harness, platform, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not harness.workers.get(platform) and time.monotonic() < deadline:
        time.sleep(0.01)
    return harness.workers[platform][0]


def test_worker_factory_failure_releases_session_and_slot():
    harness = _Harness()
    calls = {"n": 0}
    original = harness.make_worker

    def flaky_factory(platform, session, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("bad config")
        return original(platform, session, **kwargs)

    harness.coordinator._worker_factory = flaky_factory

    with pytest.raises(RuntimeError):
        harness.coordinator.start_platform("linkedin", [1])
    assert harness.sessions["linkedin"].closed is True

    harness.coordinator.start_platform("linkedin", [1])
    assert harness.workers["linkedin"][0].ran_profiles == [1]


def test_status_precedence_and_totals():
    harness = _Harness()
    coordinator = harness.coordinator

    assert coordinator.get_status().state == "idle"
    assert coordinator.get_status().platforms is None

    errored = coordinator._launch("indeed")
    errored.status.state = "error"
    errored.status.errors.append("login failed")
    assert coordinator.get_status().state == "error"

    paused = coordinator._launch("upwork")
    paused.status.state = "paused"
    paused.status.jobs_extracted = 4
    assert coordinator.get_status().state == "paused"

    running = coordinator._launch("linkedin")
    running.status.state = "running"
    running.status.current_action = "Extracting: Backend Engineer"
    running.status.jobs_extracted = 3
    running.status.applications_submitted = 2

    status = coordinator.get_status()
    assert status.state == "running"
    assert status.current_action == "Extracting: Backend Engineer"
    assert status.jobs_extracted == 7
    assert status.applications_submitted == 2
    assert status.errors == ["login failed"]
    assert sorted(p.platform for p in status.platforms) == ["indeed", "linkedin", "upwork"]
    assert status.to_dict()["platforms"][0]["platform"] in {"indeed", "linkedin", "upwork"}


def test_control_targets_one_platform_or_all():
    harness = _Harness()
    coordinator = harness.coordinator
    linkedin = coordinator._launch("linkedin")
    indeed = coordinator._launch("indeed")

    coordinator.pause("linkedin")
    assert linkedin.paused is True and indeed.paused is False

    coordinator.resume()
    assert linkedin.paused is False

    coordinator.stop("indeed")
    assert indeed.stopped is True and linkedin.stopped is False

    coordinator.stop()
    assert linkedin.stopped is True

    # unknown platform is ignored
    coordinator.pause("glassdoor")


def test_resolve_answer_reaches_workers_with_pending_questions():
    harness = _Harness()
    coordinator = harness.coordinator
    linkedin = coordinator._launch("linkedin")
    coordinator._launch("indeed")
    linkedin.pending_question = True

    assert coordinator.resolve_answer("5 years") == 1
    assert coordinator.resolve_answer("again") == 0


def test_cleanup_with_stale_worker_keeps_current_mapping():
    harness = _Harness()
    coordinator = harness.coordinator
    first = coordinator._launch("linkedin")
    coordinator.cleanup_platform("linkedin", first)
    second = coordinator._launch("linkedin")

    coordinator.cleanup_platform("linkedin", first)

    assert "linkedin" in coordinator.get_pages()
    assert second.closed is False
    coordinator.cleanup_platform("linkedin")
    assert second.closed is True
    assert coordinator.get_pages() == {}


def test_apply_to_approved_fans_out_per_platform(isolated_db):
    for n, platform in enumerate(["linkedin", "indeed", "linkedin"]):
        repositories.insert_job(
            external_id=f"job-{n}",
            platform=platform,
            url=f"https://{platform}.test/jobs/{n}",
            status=JobStatus.APPROVED,
        )
    repositories.insert_job(
        external_id="new", platform="upwork", url="https://upwork.test/jobs/new"
    )
    harness = _Harness()

    harness.coordinator.apply_to_approved()

    assert sorted(harness.workers) == ["indeed", "linkedin"]
    assert all(worker.applied for workers in harness.workers.values() for worker in workers)
    assert len(harness.workers["linkedin"]) == 1


def test_worker_status_updates_publish_aggregate(isolated_db):
    profile = _profile("li", "linkedin")
    harness = _Harness()
    seen = []
    harness.bus.on("automation:status", seen.append)

    harness.coordinator.start_profile(profile.id)

    assert seen[0].jobs_extracted == 1
    assert seen[0].platforms[0].platform == "linkedin"
