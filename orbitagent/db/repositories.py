"""
仓储辅助函数：Coordinator / Worker 只通过这里读写 profiles / jobs / action_logs。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ..models.action_log import ActionLog
from ..models.job_post import JobPost, JobStatus
from ..models.search_profile import SearchProfile
from .database import get_session


def list_enabled_profiles(platform: Optional[str] = None) -> list[SearchProfile]:
    with get_session() as session:
        query = session.query(SearchProfile).filter(SearchProfile.enabled.is_(True))
        if platform is not None:
            query = query.filter(SearchProfile.platform == platform)
        return query.order_by(SearchProfile.id.asc()).all()


def list_profiles() -> list[SearchProfile]:
    with get_session() as session:
        return session.query(SearchProfile).order_by(SearchProfile.id.asc()).all()


def create_profile(**fields) -> SearchProfile:
    profile = SearchProfile(**fields)
    with get_session() as session:
        session.add(profile)
        session.flush()
        session.refresh(profile)
    return profile


def get_profile(profile_id: int) -> Optional[SearchProfile]:
    with get_session() as session:
        return session.get(SearchProfile, profile_id)


def job_exists(external_id: str, platform: str) -> bool:
    with get_session() as session:
        return (
            session.query(JobPost.id)
            .filter(JobPost.external_id == external_id, JobPost.platform == platform)
            .first()
            is not None
        )


def insert_job(**fields) -> JobPost:
    job = JobPost(**fields)
    with get_session() as session:
        session.add(job)
        session.flush()
        session.refresh(job)
    return job


def get_job(job_id: int) -> Optional[JobPost]:
    with get_session() as session:
        return session.get(JobPost, job_id)


def list_jobs(
    *,
    status: Optional[JobStatus] = None,
    platform: Optional[str] = None,
    profile_id: Optional[int] = None,
) -> list[JobPost]:
    with get_session() as session:
        query = session.query(JobPost)
        if status is not None:
            query = query.filter(JobPost.status == status)
        if platform is not None:
            query = query.filter(JobPost.platform == platform)
        if profile_id is not None:
            query = query.filter(JobPost.profile_id == profile_id)
        return query.order_by(JobPost.create_time.asc()).all()


def list_approved_jobs(platform: Optional[str] = None) -> list[JobPost]:
    return list_jobs(status=JobStatus.APPROVED, platform=platform)


def update_job_status(
    job_id: int, status: JobStatus, *, error_reason: Optional[str] = None
) -> None:
    with get_session() as session:
        job = session.get(JobPost, job_id)
        if not job:
            return
        job.status = status
        job.error_reason = error_reason
        session.add(job)


def update_job_analysis(job_id: int, *, match_score: float, reasoning: str) -> None:
    with get_session() as session:
        job = session.get(JobPost, job_id)
        if not job:
            return
        job.match_score = match_score
        job.match_reasoning = reasoning
        job.status = JobStatus.REVIEWED
        session.add(job)


def mark_job_applied(job_id: int) -> None:
    with get_session() as session:
        job = session.get(JobPost, job_id)
        if not job:
            return
        job.status = JobStatus.APPLIED
        job.error_reason = None
        job.apply_time = datetime.now(timezone.utc)
        session.add(job)


def record_action(**fields) -> None:
    with get_session() as session:
        session.add(ActionLog(**fields))


def list_action_logs(site: Optional[str] = None, limit: int = 100) -> list[ActionLog]:
    with get_session() as session:
        query = session.query(ActionLog)
        if site is not None:
            query = query.filter(ActionLog.site == site)
        return query.order_by(ActionLog.create_time.desc()).limit(limit).all()
