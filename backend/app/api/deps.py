"""
Зависимости FastAPI.
"""
from fastapi import Request

from app.services.notification_sender import Dispatcher
from app.services.schedule_service import ScheduleService


def get_schedule_service(request: Request) -> ScheduleService:
    """Планировщик, созданный в lifespan приложения."""
    return request.app.state.schedule_service


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher
