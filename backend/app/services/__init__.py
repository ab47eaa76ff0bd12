"""
Сервисный слой: расписания, их живые задачи, отправка и ежедневная сводка.
"""
from app.services.schedule_storage import ScheduleStorage
from app.services.notification_sender import NotificationSender
from app.services.schedule_service import ScheduleService
from app.services.daily_summary import DailySummaryService

__all__ = [
    "ScheduleStorage",
    "NotificationSender",
    "ScheduleService",
    "DailySummaryService",
]
