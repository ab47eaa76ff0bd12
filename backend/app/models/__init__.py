"""
Модели SQLAlchemy — импортируем все для корректной регистрации в metadata.
"""
from app.models.schedule import ScheduledNotification, ScheduleType  # noqa: F401
