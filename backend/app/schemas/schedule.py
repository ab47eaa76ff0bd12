"""
Pydantic схемы для расписаний уведомлений.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.schedule import ScheduleType

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ScheduleCreate(BaseModel):
    """
    Схема создания расписания.
    cron обязателен для fixed, scheduled_at — для manual и event;
    эти правила проверяет ScheduleService.
    """
    type: ScheduleType
    name: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    chat_id: Optional[str] = Field(default=None, max_length=50)
    cron: Optional[str] = Field(default=None, max_length=100)
    scheduled_at: Optional[datetime] = None
    event_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    description: Optional[str] = None


class ScheduleUpdate(BaseModel):
    """Схема частичного обновления. Тип расписания менять нельзя."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    message: Optional[str] = Field(default=None, min_length=1)
    chat_id: Optional[str] = Field(default=None, max_length=50)
    cron: Optional[str] = Field(default=None, max_length=100)
    scheduled_at: Optional[datetime] = None
    enabled: Optional[bool] = None
    event_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    description: Optional[str] = None


class ScheduleResponse(BaseModel):
    """Схема ответа с данными расписания."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: ScheduleType
    name: str
    message: str
    description: Optional[str] = None
    chat_id: str
    enabled: bool
    created_at: datetime
    cron: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    event_time: Optional[str] = None

    @field_validator("created_at", "scheduled_at")
    @classmethod
    def attach_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # В БД время хранится в naive UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ScheduleListResponse(BaseModel):
    """Схема списка расписаний."""
    items: list[ScheduleResponse]
    total: int
