"""
Хранилище расписаний поверх SQLAlchemy.
Каждая операция открывает свою сессию: планировщик живёт дольше HTTP-запроса.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import PersistenceError
from app.models.schedule import ScheduledNotification

logger = logging.getLogger(__name__)


class ScheduleStorage:
    """CRUD над таблицей scheduled_notifications."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find_all(self) -> list[ScheduledNotification]:
        """Все расписания, старые первыми."""
        with self._session_factory() as db:
            try:
                stmt = select(ScheduledNotification).order_by(
                    ScheduledNotification.created_at, ScheduledNotification.id
                )
                return list(db.scalars(stmt).all())
            except SQLAlchemyError as e:
                logger.error("Failed to load schedules: %s", e)
                raise PersistenceError("Не удалось прочитать расписания") from e

    def find_by_id(self, schedule_id: str) -> Optional[ScheduledNotification]:
        """Расписание по ID или None."""
        with self._session_factory() as db:
            try:
                return db.get(ScheduledNotification, schedule_id)
            except SQLAlchemyError as e:
                logger.error("Failed to load schedule %s: %s", schedule_id, e)
                raise PersistenceError(f"Не удалось прочитать расписание {schedule_id}") from e

    def create(self, **fields) -> ScheduledNotification:
        """Сохраняет новое расписание; id и created_at назначаются здесь."""
        with self._session_factory() as db:
            schedule = ScheduledNotification(**fields)
            db.add(schedule)
            try:
                db.commit()
                db.refresh(schedule)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to create schedule %r: %s", fields.get("name"), e)
                raise PersistenceError("Не удалось сохранить расписание") from e
            return schedule

    def update(self, schedule_id: str, **fields) -> Optional[ScheduledNotification]:
        """Частичное обновление. None, если расписания нет."""
        with self._session_factory() as db:
            try:
                schedule = db.get(ScheduledNotification, schedule_id)
                if schedule is None:
                    return None
                for key, value in fields.items():
                    setattr(schedule, key, value)
                db.commit()
                db.refresh(schedule)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to update schedule %s: %s", schedule_id, e)
                raise PersistenceError(f"Не удалось обновить расписание {schedule_id}") from e
            return schedule

    def delete(self, schedule_id: str) -> bool:
        """Удаляет расписание. True, если запись была."""
        with self._session_factory() as db:
            try:
                schedule = db.get(ScheduledNotification, schedule_id)
                if schedule is None:
                    return False
                db.delete(schedule)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to delete schedule %s: %s", schedule_id, e)
                raise PersistenceError(f"Не удалось удалить расписание {schedule_id}") from e
            return True
