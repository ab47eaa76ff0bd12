"""
Планировщик уведомлений.

Превращает расписания из БД в живые задачи asyncio: fixed — повторяющаяся
задача по cron, manual — разовый таймер. Реестр живых задач (id -> LiveJob)
хранится только в памяти и пересобирается при каждом старте процесса
через restore_on_start().

На каждый id в реестре не больше одной живой задачи: любая регистрация
начинается со снятия предыдущей (_stop_job, затем _start_*).
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Callable, Optional

from app.core.exceptions import (
    InvalidCronExpression,
    MissingCronForFixed,
    MissingTimestampForManualOrEvent,
    NotFoundException,
    PastScheduledTime,
    ValidationException,
    DispatchError,
)
from app.core.utils import LOCAL_TZ, as_utc, local_date, now_utc, sanitize_text, to_db_datetime
from app.models.schedule import ScheduledNotification, ScheduleType
from app.schemas.schedule import ScheduleCreate, ScheduleUpdate
from app.services.cron_matcher import is_valid_expression, next_fire
from app.services.notification_sender import Dispatcher
from app.services.schedule_storage import ScheduleStorage

logger = logging.getLogger(__name__)

DAILY_SUMMARY_JOB_ID = "daily-summary"

# Поля, которые нельзя обнулить частичным обновлением
_NOT_NULL_FIELDS = ("name", "message", "enabled")

JobCallback = Callable[[], Awaitable[None]]


@dataclass
class LiveJob:
    """Запись реестра: повторяющаяся задача или разовый таймер."""
    kind: str  # "cron" | "timer"
    task: asyncio.Task
    cron: Optional[str] = None
    fire_at: Optional[datetime] = None


class ScheduleService:
    """Управление расписаниями и их живыми задачами."""

    def __init__(
        self,
        storage: ScheduleStorage,
        dispatcher: Dispatcher,
        default_chat_id: str,
        tz: timezone = LOCAL_TZ,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._default_chat_id = default_chat_id
        self._tz = tz
        self._sleep = sleep

        self._jobs: dict[str, LiveJob] = {}
        self._system_jobs: dict[str, LiveJob] = {}
        self._in_flight: set[str] = set()
        self._dispatch_tasks: set[asyncio.Task] = set()

        logger.info("Default chat_id: %s", default_chat_id or "<not set>")

    # ===== Жизненный цикл =====

    async def restore_on_start(self) -> dict[str, int]:
        """Поднимает живые задачи для всех включённых расписаний из БД."""
        schedules = self._storage.find_all()
        logger.info("[RESTORE] Found %d total schedules in DB", len(schedules))
        restored = skipped = expired = 0

        for schedule in schedules:
            if not schedule.enabled:
                logger.debug('[RESTORE] Skip disabled: "%s" (%s)', schedule.name, schedule.id)
                skipped += 1
                continue

            if schedule.type == ScheduleType.FIXED.value:
                if self._start_job(schedule):
                    restored += 1
            elif schedule.type == ScheduleType.MANUAL.value:
                if self._is_future(schedule.scheduled_at):
                    self._start_job(schedule)
                    restored += 1
                else:
                    self._storage.update(schedule.id, enabled=False)
                    logger.warning('[RESTORE] Expired manual schedule disabled: "%s"', schedule.name)
                    expired += 1

        logger.info(
            "[RESTORE] Complete: %d active, %d disabled, %d expired",
            restored, skipped, expired,
        )
        return {"restored": restored, "skipped": skipped, "expired": expired}

    def start_daily_summary(self, summary, at: str = "08:00") -> None:
        """Регистрирует ежедневную сводку как повторяющуюся задачу (локальное время)."""
        hour, minute = (int(part) for part in at.split(":"))
        cron = f"{minute} {hour} * * *"

        previous = self._system_jobs.pop(DAILY_SUMMARY_JOB_ID, None)
        if previous is not None:
            previous.task.cancel()

        task = asyncio.create_task(
            self._run_recurring(DAILY_SUMMARY_JOB_ID, cron, summary.send_daily_summary),
            name=f"cron:{DAILY_SUMMARY_JOB_ID}",
        )
        self._system_jobs[DAILY_SUMMARY_JOB_ID] = LiveJob(kind="cron", task=task, cron=cron)
        logger.info("[DAILY SUMMARY] Registered cron: %s (%s)", cron, self._tz)

    def shutdown(self) -> None:
        """Снимает все живые задачи. Безопасно вызывать при пустом реестре."""
        cron_count = sum(1 for job in self._jobs.values() if job.kind == "cron")
        timer_count = len(self._jobs) - cron_count
        for job in (*self._jobs.values(), *self._system_jobs.values()):
            job.task.cancel()
        self._jobs.clear()
        self._system_jobs.clear()
        logger.info("Cleared all jobs: %d cron, %d timer", cron_count, timer_count)

    async def drain(self, timeout: float = 10.0) -> None:
        """Ждёт завершения уже начатых отправок."""
        pending = list(self._dispatch_tasks)
        if not pending:
            return
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("%d dispatches still running after %.1fs", len(not_done), timeout)

    def live_job_ids(self) -> frozenset[str]:
        """Снимок ключей реестра (только чтение)."""
        return frozenset(self._jobs)

    # ===== CRUD =====

    async def create(self, data: ScheduleCreate) -> ScheduledNotification:
        """Создаёт расписание и, для fixed/manual, его живую задачу."""
        chat_id = self._resolve_chat_id(data.chat_id)
        logger.info('[CREATE] type: %s, name: "%s", chat_id: %s', data.type.value, data.name, chat_id)

        cron = data.cron.strip() if data.cron else None
        scheduled_at = to_db_datetime(data.scheduled_at, self._tz)
        if data.type == ScheduleType.FIXED:
            self._validate_cron(cron)
        else:
            if scheduled_at is None:
                raise MissingTimestampForManualOrEvent(data.type.value)
            if data.type == ScheduleType.MANUAL and not self._is_future(scheduled_at):
                logger.warning('[CREATE REJECT] "%s" scheduled_at is in the past: %s', data.name, data.scheduled_at)
                raise PastScheduledTime()

        schedule = self._storage.create(
            type=data.type.value,
            name=self._clean_name(data.name),
            message=data.message,
            chat_id=chat_id,
            enabled=True,
            cron=cron,
            scheduled_at=scheduled_at,
            event_time=data.event_time,
            description=data.description,
        )

        self._start_job(schedule)
        logger.info('[CREATE OK] "%s" id: %s', schedule.name, schedule.id)
        return schedule

    async def find_all(
        self,
        schedule_type: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> list[ScheduledNotification]:
        """
        Список расписаний с фильтрами.
        Отработавшие и выключенные manual скрываются, event показываются только в свой день.
        """
        try:
            type_value = ScheduleType(schedule_type).value if schedule_type else None
        except ValueError:
            raise ValidationException(f"Неизвестный тип расписания: {schedule_type}")
        all_schedules = self._storage.find_all()
        now = now_utc()
        today = now.astimezone(self._tz).date()

        def is_visible(s: ScheduledNotification) -> bool:
            if chat_id and s.chat_id != chat_id:
                return False
            if type_value and s.type != type_value:
                return False
            if s.type == ScheduleType.MANUAL.value and s.scheduled_at is not None:
                if not s.enabled and as_utc(s.scheduled_at) <= now:
                    return False
            if s.type == ScheduleType.EVENT.value and s.scheduled_at is not None:
                if local_date(s.scheduled_at, self._tz) != today:
                    return False
            return True

        filtered = [s for s in all_schedules if is_visible(s)]
        logger.debug(
            "[FIND ALL] total: %d, filtered: %d (type: %s, chat_id: %s)",
            len(all_schedules), len(filtered), type_value or "all", chat_id or "any",
        )
        return filtered

    async def find_by_id(self, schedule_id: str) -> ScheduledNotification:
        """Расписание по ID или NotFoundException."""
        schedule = self._storage.find_by_id(schedule_id)
        if schedule is None:
            logger.warning("[FIND] Not found: %s", schedule_id)
            raise NotFoundException("Расписание", schedule_id)
        return schedule

    async def update(self, schedule_id: str, data: ScheduleUpdate) -> ScheduledNotification:
        """Частичное обновление: снять задачу, записать, при необходимости зарегистрировать заново."""
        existing = await self.find_by_id(schedule_id)
        changes = data.model_dump(exclude_unset=True)
        logger.info('[UPDATE] "%s" (%s) -> %s', existing.name, schedule_id, sorted(changes))

        for key in _NOT_NULL_FIELDS:
            if key in changes and changes[key] is None:
                del changes[key]
        if "scheduled_at" in changes:
            changes["scheduled_at"] = to_db_datetime(changes["scheduled_at"], self._tz)
        self._validate_update(existing, changes)

        if "chat_id" in changes:
            changes["chat_id"] = self._resolve_chat_id(changes["chat_id"])
        if changes.get("cron"):
            changes["cron"] = changes["cron"].strip()
        if changes.get("name"):
            changes["name"] = self._clean_name(changes["name"])

        self._stop_job(schedule_id)

        updated = self._storage.update(schedule_id, **changes)
        if updated is None:
            raise NotFoundException("Расписание", schedule_id)

        if updated.enabled:
            if updated.type == ScheduleType.FIXED.value:
                self._start_job(updated)
            elif updated.type == ScheduleType.MANUAL.value:
                if self._is_future(updated.scheduled_at):
                    self._start_job(updated)
                else:
                    updated = self._storage.update(schedule_id, enabled=False)
                    logger.warning('[UPDATE] "%s" auto-disabled (past scheduled_at)', existing.name)

        logger.info('[UPDATE OK] "%s" (%s)', updated.name, schedule_id)
        return updated

    async def delete(self, schedule_id: str) -> None:
        """Удаляет расписание вместе с живой задачей."""
        schedule = await self.find_by_id(schedule_id)
        self._stop_job(schedule_id)
        if not self._storage.delete(schedule_id):
            raise NotFoundException("Расписание", schedule_id)
        logger.info('[DELETE OK] "%s" (%s)', schedule.name, schedule_id)

    async def toggle_enabled(self, schedule_id: str) -> ScheduledNotification:
        """Переключает enabled. Отработавший manual включить обратно нельзя."""
        schedule = await self.find_by_id(schedule_id)
        new_enabled = not schedule.enabled
        logger.info('[TOGGLE] "%s" (%s) %s -> %s', schedule.name, schedule_id, schedule.enabled, new_enabled)

        if new_enabled and schedule.type == ScheduleType.MANUAL.value:
            if not self._is_future(schedule.scheduled_at):
                logger.warning('[TOGGLE REJECT] "%s" cannot re-enable past manual schedule', schedule.name)
                raise PastScheduledTime("Разовое уведомление, время которого прошло, нельзя включить снова")

        self._stop_job(schedule_id)

        updated = self._storage.update(schedule_id, enabled=new_enabled)
        if updated is None:
            raise NotFoundException("Расписание", schedule_id)
        if new_enabled:
            self._start_job(updated)

        logger.info('[TOGGLE OK] "%s" now %s', updated.name, "enabled" if new_enabled else "disabled")
        return updated

    # ===== Валидация =====

    def _resolve_chat_id(self, chat_id: Optional[str]) -> str:
        resolved = (chat_id or "").strip() or self._default_chat_id
        if not resolved:
            raise ValidationException("chat_id не указан, и TELEGRAM_DEFAULT_CHAT_ID не настроен")
        return resolved

    @staticmethod
    def _clean_name(name: str) -> str:
        cleaned = sanitize_text(name, max_length=255)
        if not cleaned:
            raise ValidationException("Название расписания не может быть пустым")
        return cleaned

    @staticmethod
    def _validate_cron(cron: Optional[str]) -> None:
        if not cron:
            raise MissingCronForFixed()
        if not is_valid_expression(cron):
            raise InvalidCronExpression(cron)

    def _validate_update(self, existing: ScheduledNotification, changes: dict) -> None:
        if existing.type == ScheduleType.FIXED.value and "cron" in changes:
            self._validate_cron((changes["cron"] or "").strip())

        if existing.type in (ScheduleType.MANUAL.value, ScheduleType.EVENT.value):
            if "scheduled_at" in changes and changes["scheduled_at"] is None:
                raise MissingTimestampForManualOrEvent(existing.type)

        if existing.type == ScheduleType.MANUAL.value and changes.get("scheduled_at") is not None:
            if not self._is_future(changes["scheduled_at"]):
                logger.warning(
                    '[UPDATE REJECT] "%s" scheduled_at is in the past: %s',
                    existing.name, changes["scheduled_at"],
                )
                raise PastScheduledTime()

    @staticmethod
    def _is_future(moment: Optional[datetime]) -> bool:
        """moment — значение в формате БД (naive UTC) или aware datetime."""
        if moment is None:
            return False
        return as_utc(moment) > now_utc()

    # ===== Реестр живых задач =====

    def _start_job(self, schedule: ScheduledNotification) -> bool:
        """Снимает старую задачу и регистрирует новую по типу расписания."""
        self._stop_job(schedule.id)
        if schedule.type == ScheduleType.FIXED.value:
            return self._start_cron_job(schedule)
        if schedule.type == ScheduleType.MANUAL.value:
            return self._start_timer(schedule)
        return False

    def _start_cron_job(self, schedule: ScheduledNotification) -> bool:
        if not is_valid_expression(schedule.cron):
            logger.error('[CRON FAIL] "%s" [%s] failed to start', schedule.name, schedule.cron)
            return False
        task = asyncio.create_task(
            self._run_recurring(schedule.id, schedule.cron, partial(self._fire_recurring, schedule.id)),
            name=f"cron:{schedule.id}",
        )
        self._jobs[schedule.id] = LiveJob(kind="cron", task=task, cron=schedule.cron)
        logger.info('[CRON START] "%s" [%s] -> chat_id: %s', schedule.name, schedule.cron, schedule.chat_id)
        return True

    def _start_timer(self, schedule: ScheduledNotification) -> bool:
        fire_at = as_utc(schedule.scheduled_at)
        delay = (fire_at - now_utc()).total_seconds() if fire_at else 0
        if delay <= 0:
            logger.warning('[TIMER SKIP] "%s" scheduled_at already passed', schedule.name)
            return False
        task = asyncio.create_task(
            self._run_timer(schedule.id, fire_at),
            name=f"timer:{schedule.id}",
        )
        self._jobs[schedule.id] = LiveJob(kind="timer", task=task, fire_at=fire_at)
        logger.info(
            '[TIMER START] "%s" fires at %s (in %dmin) -> chat_id: %s',
            schedule.name, fire_at.isoformat(), round(delay / 60), schedule.chat_id,
        )
        return True

    def _stop_job(self, schedule_id: str) -> None:
        """Снимает живую задачу. Уже начатая отправка не прерывается."""
        job = self._jobs.pop(schedule_id, None)
        if job is None:
            return
        job.task.cancel()
        logger.debug("[%s STOP] id: %s", job.kind.upper(), schedule_id)

    # ===== Таймеры =====

    async def _run_recurring(self, key: str, cron: str, callback: JobCallback) -> None:
        """Цикл повторяющейся задачи: спать до следующего срабатывания по cron и запускать callback."""
        last_fire: Optional[datetime] = None
        while True:
            base = datetime.now(self._tz)
            if last_fire is not None and last_fire > base:
                base = last_fire
            fire_at = next_fire(cron, base)
            delay = (fire_at - datetime.now(self._tz)).total_seconds()
            if delay > 0:
                await self._sleep(delay)
            last_fire = fire_at
            self._launch(key, callback)

    async def _run_timer(self, schedule_id: str, fire_at: datetime) -> None:
        """Разовый таймер: дождаться момента и запустить отправку."""
        delay = (fire_at - now_utc()).total_seconds()
        if delay > 0:
            await self._sleep(delay)
        job = self._jobs.get(schedule_id)
        if job is None or job.task is not asyncio.current_task():
            return
        # Таймер не смотрит на _in_flight: перерегистрированный во время
        # отправки таймер срабатывает и при незавершённой старой отправке.
        self._spawn(schedule_id, partial(self._fire_timer, schedule_id, job))

    def _launch(self, key: str, callback: JobCallback) -> None:
        """Запускает тик повторяющейся задачи, пропуская его, если предыдущая отправка ещё идёт."""
        if key in self._in_flight:
            logger.warning("[SKIP] %s: previous dispatch still in flight", key)
            return
        self._in_flight.add(key)
        task = self._spawn(key, callback)
        task.add_done_callback(lambda _: self._in_flight.discard(key))

    def _spawn(self, key: str, callback: JobCallback) -> asyncio.Task:
        task = asyncio.create_task(self._run_guarded(key, callback), name=f"dispatch:{key}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        return task

    async def _run_guarded(self, key: str, callback: JobCallback) -> None:
        try:
            await callback()
        except Exception:
            logger.exception("Scheduled job %s failed", key)

    async def _fire_recurring(self, schedule_id: str) -> None:
        schedule = self._storage.find_by_id(schedule_id)
        if schedule is None or not schedule.enabled:
            logger.warning("[CRON FIRE] %s is no longer active, skipping", schedule_id)
            return
        logger.info('[CRON FIRE] "%s" -> chat_id: %s', schedule.name, schedule.chat_id)
        await self._deliver(schedule)

    async def _fire_timer(self, schedule_id: str, job: LiveJob) -> None:
        """
        Отправка разового уведомления. После попытки расписание выключается
        независимо от результата: повторной отправки не будет.
        """
        try:
            schedule = self._storage.find_by_id(schedule_id)
            if schedule is None:
                logger.warning("[TIMER FIRE] %s was deleted, skipping", schedule_id)
                return
            logger.info('[TIMER FIRE] "%s" -> chat_id: %s', schedule.name, schedule.chat_id)
            await self._deliver(schedule)
        finally:
            current = self._jobs.get(schedule_id)
            if current is not None and current is not job:
                logger.info("[TIMER DONE] %s was re-registered while firing, keeping new timer", schedule_id)
            else:
                self._jobs.pop(schedule_id, None)
                self._storage.update(schedule_id, enabled=False)
                logger.info("[TIMER DONE] %s fired and disabled", schedule_id)

    async def _deliver(self, schedule: ScheduledNotification) -> bool:
        chat_id = schedule.chat_id or self._default_chat_id
        try:
            await self._dispatcher.send(chat_id, schedule.message)
        except DispatchError as e:
            logger.error('[SEND FAIL] "%s" -> chat_id: %s: %s', schedule.name, chat_id, e.detail)
            return False
        logger.info('[SEND OK] "%s" -> chat_id: %s', schedule.name, chat_id)
        return True
