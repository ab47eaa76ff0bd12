"""
API endpoints для расписаний уведомлений.

Эндпоинты асинхронные: живые задачи планировщика создаются в event loop приложения.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_schedule_service
from app.core.security import verify_api_key
from app.models.schedule import ScheduleType
from app.schemas.schedule import (
    ScheduleCreate,
    ScheduleUpdate,
    ScheduleResponse,
    ScheduleListResponse,
)
from app.services.schedule_service import ScheduleService

router = APIRouter(
    prefix="/schedules",
    tags=["schedules"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    data: ScheduleCreate,
    service: ScheduleService = Depends(get_schedule_service),
):
    """Создать расписание."""
    schedule = await service.create(data)
    return ScheduleResponse.model_validate(schedule)


@router.get("", response_model=ScheduleListResponse)
async def list_schedules(
    schedule_type: Optional[ScheduleType] = Query(None, alias="type", description="fixed, manual или event"),
    chat_id: Optional[str] = Query(None),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Получить список расписаний."""
    schedules = await service.find_all(
        schedule_type=schedule_type.value if schedule_type else None,
        chat_id=chat_id,
    )
    return ScheduleListResponse(
        items=[ScheduleResponse.model_validate(s) for s in schedules],
        total=len(schedules),
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    service: ScheduleService = Depends(get_schedule_service),
):
    """Получить расписание по ID."""
    schedule = await service.find_by_id(schedule_id)
    return ScheduleResponse.model_validate(schedule)


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    data: ScheduleUpdate,
    service: ScheduleService = Depends(get_schedule_service),
):
    """Обновить расписание."""
    schedule = await service.update(schedule_id, data)
    return ScheduleResponse.model_validate(schedule)


@router.patch("/{schedule_id}/toggle", response_model=ScheduleResponse)
async def toggle_schedule(
    schedule_id: str,
    service: ScheduleService = Depends(get_schedule_service),
):
    """Включить или выключить расписание."""
    schedule = await service.toggle_enabled(schedule_id)
    return ScheduleResponse.model_validate(schedule)


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    service: ScheduleService = Depends(get_schedule_service),
):
    """Удалить расписание."""
    await service.delete(schedule_id)
    return {"success": True, "id": schedule_id}
