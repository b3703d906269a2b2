from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base


class SearchProfile(Base):
    """搜索配置（一个平台上的一组关键词/地点），对应 profiles 表。"""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    locations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False, default="full-time")
    default_answers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    resume_file: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    create_time: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "platform": self.platform,
            "enabled": self.enabled,
            "keywords": list(self.keywords or []),
            "locations": list(self.locations or []),
            "job_type": self.job_type,
            "default_answers": dict(self.default_answers or {}),
            "resume_file": self.resume_file,
            "create_time": self.create_time.isoformat() if self.create_time else None,
        }
