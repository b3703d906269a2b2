from contextlib import asynccontextmanager
import threading

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.adapters import registered_platforms
from .core.console import console_log
from .core.coordinator import Coordinator
from .db import repositories
from .db.database import init_db
from .errors import AutomationError, OrbitAgentError, error_to_response
from .models.job_post import JobStatus


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 初始化数据库等资源
    init_db()
    yield
    coordinator.stop()


app = FastAPI(title="OrbitAgent - Job Board Automation Engine", lifespan=lifespan)

# 全局单例协调器
coordinator = Coordinator()
_log = console_log("api")


@app.exception_handler(OrbitAgentError)
async def orbitagent_error_handler(request: Request, exc: OrbitAgentError) -> JSONResponse:
    return JSONResponse(error_to_response(exc), status_code=400)


def _run_in_background(name: str, target, *args) -> None:
    """自动化运行是阻塞的，放到后台线程里，接口立即返回。"""

    def _runner() -> None:
        try:
            target(*args)
        except Exception as e:
            _log(f"❌ {name} failed: {e}", "error")

    threading.Thread(target=_runner, name=f"orbitagent-{name}", daemon=True).start()


# ----------------------------------------------------------------------
# Jobs / profiles
# ----------------------------------------------------------------------


@app.get("/api/jobs")
def list_jobs(status: JobStatus | None = None, platform: str | None = None):
    """列出岗位（按状态 / 平台过滤）。"""
    jobs = repositories.list_jobs(status=status, platform=platform)
    return [job.to_dict() for job in jobs]


@app.post("/api/jobs/{job_id}/status")
def set_job_status(job_id: int, payload: dict):
    """人工审核：approved / skipped 等。"""
    raw = (payload.get("status") or "").strip()
    try:
        status = JobStatus(raw)
    except ValueError:
        return {"ok": False, "error": f"invalid status: {raw}"}
    if repositories.get_job(job_id) is None:
        return {"ok": False, "error": "job not found"}
    repositories.update_job_status(job_id, status)
    return {"ok": True, "id": job_id, "status": status.value}


@app.get("/api/profiles")
def list_profiles():
    return [profile.to_dict() for profile in repositories.list_profiles()]


@app.post("/api/profiles")
def create_profile(payload: dict):
    name = (payload.get("name") or "").strip()
    platform = (payload.get("platform") or "").strip()
    if not name or not platform:
        return {"ok": False, "error": "name and platform are required"}
    profile = repositories.create_profile(
        name=name,
        platform=platform,
        enabled=bool(payload.get("enabled", True)),
        keywords=list(payload.get("keywords") or []),
        locations=list(payload.get("locations") or []),
        job_type=payload.get("job_type") or "full-time",
        default_answers=dict(payload.get("default_answers") or {}),
        resume_file=payload.get("resume_file"),
    )
    return {"ok": True, "profile": profile.to_dict()}


@app.get("/api/platforms")
def list_platforms():
    return {"ok": True, "platforms": registered_platforms()}


@app.get("/api/actions")
def list_actions(site: str | None = None, limit: int = 100):
    """最近的动作执行记录（hint / 修复 / 失败）。"""
    return [log.to_dict() for log in repositories.list_action_logs(site=site, limit=limit)]


# ----------------------------------------------------------------------
# Automation control
# ----------------------------------------------------------------------


@app.post("/api/automation/start")
def start_all():
    """启动所有启用的搜索配置（按平台并行）。"""
    if coordinator.is_running():
        return {"ok": False, "error": "automation already running"}
    _run_in_background("start-all", coordinator.start_all)
    return {"ok": True, "message": "automation started"}


@app.post("/api/automation/start/{platform}")
def start_platform(platform: str):
    profiles = repositories.list_enabled_profiles(platform)
    if not profiles:
        raise AutomationError(
            f"No enabled profiles for {platform}",
            "NO_PROFILES",
            {"platform": platform},
        )
    _run_in_background(
        f"start-{platform}",
        coordinator.start_platform,
        platform,
        [profile.id for profile in profiles],
    )
    return {"ok": True, "message": f"{platform} started"}


@app.post("/api/automation/apply")
def apply_to_approved():
    """投递所有已批准岗位。"""
    _run_in_background("apply", coordinator.apply_to_approved)
    return {"ok": True, "message": "application batch started"}


@app.post("/api/automation/stop")
def stop(platform: str | None = None):
    coordinator.stop(platform)
    return {"ok": True, "message": "stopped"}


@app.post("/api/automation/pause")
def pause(platform: str | None = None):
    coordinator.pause(platform)
    return {"ok": True, "message": "paused"}


@app.post("/api/automation/resume")
def resume(platform: str | None = None):
    coordinator.resume(platform)
    return {"ok": True, "message": "resumed"}


@app.get("/api/automation/status")
def automation_status():
    status = coordinator.get_status()
    return {
        "ok": True,
        "status": status.to_dict(),
        "active_platforms": coordinator.get_active_platforms(),
    }


@app.post("/api/automation/answer")
def answer_question(payload: dict):
    """回答 Worker 挂起的表单问题；answer 为空表示跳过。"""
    answer = payload.get("answer")
    resolved = coordinator.resolve_answer(answer if answer else None)
    return {"ok": True, "resolved": resolved}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("orbitagent.app:app", host="127.0.0.1", port=8000, reload=True)
