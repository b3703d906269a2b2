from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base


class ActionLog(Base):
    """每次 intent 执行的记录（hint / 缓存修复 / AI 修复），按站点追踪。"""

    __tablename__ = "action_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    platform: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    site: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    intent: Mapped[str] = mapped_column(String(128), nullable=False)
    method: Mapped[str] = mapped_column(String(32), default="hint", nullable=False)
    selector: Mapped[str | None] = mapped_column(Text, nullable=True)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    needs_escalation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    create_time: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "platform": self.platform,
            "site": self.site,
            "url": self.url,
            "intent": self.intent,
            "method": self.method,
            "selector": self.selector,
            "label": self.label,
            "text": self.text,
            "success": self.success,
            "needs_escalation": self.needs_escalation,
            "error_message": self.error_message,
            "create_time": self.create_time.isoformat() if self.create_time else None,
        }
