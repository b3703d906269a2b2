from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from ..config import get_data_dir


def get_database_url() -> str:
    """ORBITAGENT_DATABASE_URL 优先，否则放在数据目录下的 orbitagent.db。"""
    override = os.getenv("ORBITAGENT_DATABASE_URL")
    if override:
        return override
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{data_dir / 'orbitagent.db'}"


class Base(DeclarativeBase):
    """SQLAlchemy Base."""


def build_engine(url: str) -> Engine:
    """
    各平台 Worker 在各自线程里写库：
    SQLite 需要跨线程连接、WAL 与 busy_timeout，否则并发写会直接报 database is locked。
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(sqlite_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout = 10000")
        cursor.close()

    return sqlite_engine


engine = build_engine(get_database_url())

# 禁用 expire_on_commit，Worker 拿到的对象离开 Session 后仍可读
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
)


def init_db() -> None:
    """建表：profiles / jobs / action_logs。"""
    from ..models.action_log import ActionLog  # noqa: F401
    from ..models.job_post import JobPost  # noqa: F401
    from ..models.search_profile import SearchProfile  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_session():
    """with get_session() as session: 正常退出提交，异常回滚后继续抛出。"""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
