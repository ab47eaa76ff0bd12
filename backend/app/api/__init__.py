"""
API endpoints.
"""
from fastapi import APIRouter

from app.api import schedules, notifications

# Главный роутер API
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(schedules.router)
api_router.include_router(notifications.router)

__all__ = ["api_router"]
