"""
Модель расписания уведомлений.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ScheduleType(str, enum.Enum):
    """Тип расписания."""
    FIXED = "fixed"    # повторяющееся по cron
    MANUAL = "manual"  # разовое на конкретный момент
    EVENT = "event"    # только для отображения в сводке


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class ScheduledNotification(Base):
    """Запланированное уведомление в чат."""
    __tablename__ = "scheduled_notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chat_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    cron: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # naive UTC
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    event_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    def __repr__(self) -> str:
        return f"<ScheduledNotification {self.id} {self.type} {self.name!r}>"
