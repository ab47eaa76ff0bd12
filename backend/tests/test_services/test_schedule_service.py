"""Тесты планировщика уведомлений."""
import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import (
    DispatchError,
    InvalidCronExpression,
    MissingCronForFixed,
    MissingTimestampForManualOrEvent,
    NotFoundException,
    PastScheduledTime,
    ValidationException,
)
from app.core.utils import LOCAL_TZ, now_utc
from app.schemas.schedule import ScheduleCreate, ScheduleUpdate
from app.services.cron_matcher import fires_on_date
from app.services.schedule_service import ScheduleService
from tests.conftest import DEFAULT_CHAT_ID, FakeSleep, wait_until


def fixed(cron: str = "0 9 * * 1-5", **extra) -> ScheduleCreate:
    return ScheduleCreate(type="fixed", name="Планёрка", message="<b>Планёрка</b>", cron=cron, **extra)


def manual(scheduled_at: datetime | None, **extra) -> ScheduleCreate:
    return ScheduleCreate(type="manual", name="Созвон", message="Созвон с клиентом", scheduled_at=scheduled_at, **extra)


def in_future(**kwargs) -> datetime:
    return now_utc() + timedelta(**kwargs)


class TestCreateValidation:
    """Ошибки валидации при создании: реестр и БД не меняются."""

    @pytest.mark.asyncio
    async def test_fixed_without_cron(self, service, storage):
        with pytest.raises(MissingCronForFixed):
            await service.create(fixed(cron=None))
        assert storage.find_all() == []
        assert service.live_job_ids() == frozenset()

    @pytest.mark.asyncio
    async def test_fixed_with_blank_cron(self, service):
        with pytest.raises(MissingCronForFixed):
            await service.create(fixed(cron="   "))

    @pytest.mark.asyncio
    async def test_fixed_with_invalid_cron(self, service, storage):
        with pytest.raises(InvalidCronExpression) as exc_info:
            await service.create(fixed(cron="61 9 * * *"))
        assert exc_info.value.error_code == "INVALID_CRON"
        assert storage.find_all() == []

    @pytest.mark.asyncio
    async def test_manual_without_scheduled_at(self, service):
        with pytest.raises(MissingTimestampForManualOrEvent):
            await service.create(manual(None))

    @pytest.mark.asyncio
    async def test_event_without_scheduled_at(self, service):
        data = ScheduleCreate(type="event", name="Инвентаризация", message="Инвентаризация")
        with pytest.raises(MissingTimestampForManualOrEvent):
            await service.create(data)

    @pytest.mark.asyncio
    async def test_manual_in_the_past(self, service, storage):
        with pytest.raises(PastScheduledTime):
            await service.create(manual(now_utc() - timedelta(minutes=1)))
        assert storage.find_all() == []
        assert service.live_job_ids() == frozenset()

    @pytest.mark.asyncio
    async def test_missing_chat_id_without_default(self, storage, dispatcher):
        svc = ScheduleService(storage, dispatcher, default_chat_id="", sleep=FakeSleep())
        with pytest.raises(ValidationException):
            await svc.create(fixed())


class TestCreate:
    """Создание расписаний."""

    @pytest.mark.asyncio
    async def test_scenario_fixed_weekdays(self, service):
        """Fixed '0 9 * * 1-5' виден в списке и срабатывает по будням."""
        schedule = await service.create(fixed(chat_id="C1"))

        found = await service.find_all(schedule_type="fixed")
        assert [s.id for s in found] == [schedule.id]
        assert fires_on_date(schedule.cron, date(2025, 3, 5)) is True
        assert fires_on_date(schedule.cron, date(2025, 3, 8)) is False

    @pytest.mark.asyncio
    async def test_fixed_registers_cron_job(self, service):
        schedule = await service.create(fixed())
        assert schedule.enabled is True
        assert schedule.id in service.live_job_ids()
        assert service._jobs[schedule.id].kind == "cron"

    @pytest.mark.asyncio
    async def test_cron_is_trimmed(self, service):
        schedule = await service.create(fixed(cron="  0 9 * * 1-5  "))
        assert schedule.cron == "0 9 * * 1-5"

    @pytest.mark.asyncio
    async def test_manual_registers_timer(self, service):
        schedule = await service.create(manual(in_future(hours=1)))
        job = service._jobs[schedule.id]
        assert job.kind == "timer"
        assert job.fire_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_event_has_no_live_job(self, service):
        data = ScheduleCreate(type="event", name="Инвентаризация", message="Инвентаризация", scheduled_at=now_utc())
        schedule = await service.create(data)
        assert schedule.enabled is True
        assert schedule.id not in service.live_job_ids()

    @pytest.mark.asyncio
    async def test_default_chat_id(self, service):
        schedule = await service.create(fixed())
        assert schedule.chat_id == DEFAULT_CHAT_ID

    @pytest.mark.asyncio
    async def test_naive_scheduled_at_is_local_time(self, service):
        local = datetime.now(LOCAL_TZ).replace(tzinfo=None, microsecond=0) + timedelta(hours=2)
        schedule = await service.create(manual(local))
        expected = local.replace(tzinfo=LOCAL_TZ).astimezone(timezone.utc).replace(tzinfo=None)
        assert schedule.scheduled_at == expected

    @pytest.mark.asyncio
    async def test_create_then_find_by_id(self, service):
        schedule = await service.create(fixed(chat_id="C1", description="Утренняя планёрка"))
        found = await service.find_by_id(schedule.id)
        assert found.name == "Планёрка"
        assert found.chat_id == "C1"
        assert found.description == "Утренняя планёрка"


class TestFindAll:
    """Фильтры и видимость в списке."""

    @pytest.mark.asyncio
    async def test_filter_by_type_and_chat(self, service):
        a = await service.create(fixed(chat_id="C1"))
        await service.create(fixed(chat_id="C2"))
        b = await service.create(manual(in_future(hours=1), chat_id="C1"))

        assert [s.id for s in await service.find_all(chat_id="C1")] == [a.id, b.id]
        assert [s.id for s in await service.find_all(schedule_type="manual", chat_id="C1")] == [b.id]

    @pytest.mark.asyncio
    async def test_unknown_type(self, service):
        with pytest.raises(ValidationException):
            await service.find_all(schedule_type="weekly")

    @pytest.mark.asyncio
    async def test_fired_manual_is_hidden(self, service, storage):
        record = storage.create(
            type="manual", name="Старое", message="Старое", chat_id="C1",
            enabled=False, scheduled_at=now_utc().replace(tzinfo=None) - timedelta(hours=1),
        )
        assert record.id not in [s.id for s in await service.find_all()]

    @pytest.mark.asyncio
    async def test_disabled_future_manual_is_visible(self, service):
        schedule = await service.create(manual(in_future(hours=1)))
        await service.toggle_enabled(schedule.id)
        assert schedule.id in [s.id for s in await service.find_all()]

    @pytest.mark.asyncio
    async def test_event_visible_only_on_its_day(self, service, storage):
        today = await service.create(
            ScheduleCreate(type="event", name="Сегодня", message="Сегодня", scheduled_at=now_utc())
        )
        other = storage.create(
            type="event", name="Через неделю", message="Через неделю", chat_id="C1",
            enabled=True, scheduled_at=now_utc().replace(tzinfo=None) + timedelta(days=7),
        )
        ids = [s.id for s in await service.find_all(schedule_type="event")]
        assert today.id in ids
        assert other.id not in ids

    @pytest.mark.asyncio
    async def test_find_by_id_unknown(self, service):
        with pytest.raises(NotFoundException):
            await service.find_by_id("missing")


class TestToggle:
    """Переключение enabled."""

    @pytest.mark.asyncio
    async def test_toggle_fixed_off_and_on(self, service):
        schedule = await service.create(fixed())

        off = await service.toggle_enabled(schedule.id)
        assert off.enabled is False
        assert schedule.id not in service.live_job_ids()

        on = await service.toggle_enabled(schedule.id)
        assert on.enabled is True
        assert schedule.id in service.live_job_ids()

    @pytest.mark.asyncio
    async def test_repeated_toggles_keep_single_job(self, service):
        schedule = await service.create(fixed())
        first_task = service._jobs[schedule.id].task

        for _ in range(4):
            await service.toggle_enabled(schedule.id)

        assert list(service.live_job_ids()) == [schedule.id]
        await asyncio.gather(first_task, return_exceptions=True)
        assert first_task.cancelled()

    @pytest.mark.asyncio
    async def test_toggle_unknown(self, service):
        with pytest.raises(NotFoundException):
            await service.toggle_enabled("missing")

    @pytest.mark.asyncio
    async def test_toggle_event_has_no_job(self, service):
        data = ScheduleCreate(type="event", name="Событие", message="Событие", scheduled_at=now_utc())
        schedule = await service.create(data)
        off = await service.toggle_enabled(schedule.id)
        on = await service.toggle_enabled(schedule.id)
        assert off.enabled is False
        assert on.enabled is True
        assert service.live_job_ids() == frozenset()


class TestUpdate:
    """Частичное обновление."""

    @pytest.mark.asyncio
    async def test_update_cron_reregisters_job(self, service):
        schedule = await service.create(fixed())
        old_task = service._jobs[schedule.id].task

        updated = await service.update(schedule.id, ScheduleUpdate(cron="30 18 * * *"))

        assert updated.cron == "30 18 * * *"
        assert service._jobs[schedule.id].cron == "30 18 * * *"
        assert service._jobs[schedule.id].task is not old_task

    @pytest.mark.asyncio
    async def test_update_invalid_cron_keeps_job(self, service):
        schedule = await service.create(fixed())
        task = service._jobs[schedule.id].task

        with pytest.raises(InvalidCronExpression):
            await service.update(schedule.id, ScheduleUpdate(cron="0 9 * *"))

        assert service._jobs[schedule.id].task is task
        assert (await service.find_by_id(schedule.id)).cron == "0 9 * * 1-5"

    @pytest.mark.asyncio
    async def test_update_manual_into_past_rejected(self, service):
        schedule = await service.create(manual(in_future(hours=1)))
        with pytest.raises(PastScheduledTime):
            await service.update(schedule.id, ScheduleUpdate(scheduled_at=now_utc() - timedelta(hours=1)))
        assert schedule.id in service.live_job_ids()

    @pytest.mark.asyncio
    async def test_update_manual_time_moves_timer(self, service):
        schedule = await service.create(manual(in_future(hours=1)))
        new_time = in_future(hours=3)

        await service.update(schedule.id, ScheduleUpdate(scheduled_at=new_time))

        job = service._jobs[schedule.id]
        assert abs((job.fire_at - new_time).total_seconds()) < 1

    @pytest.mark.asyncio
    async def test_update_disable(self, service):
        schedule = await service.create(fixed())
        updated = await service.update(schedule.id, ScheduleUpdate(enabled=False))
        assert updated.enabled is False
        assert schedule.id not in service.live_job_ids()

    @pytest.mark.asyncio
    async def test_update_name_only(self, service):
        schedule = await service.create(fixed())
        updated = await service.update(schedule.id, ScheduleUpdate(name="Созвон команды"))
        assert updated.name == "Созвон команды"
        assert updated.cron == "0 9 * * 1-5"
        assert schedule.id in service.live_job_ids()

    @pytest.mark.asyncio
    async def test_update_unknown(self, service):
        with pytest.raises(NotFoundException):
            await service.update("missing", ScheduleUpdate(name="x"))


class TestDelete:
    """Удаление."""

    @pytest.mark.asyncio
    async def test_delete_removes_job_and_record(self, service):
        schedule = await service.create(fixed())
        await service.delete(schedule.id)

        assert schedule.id not in service.live_job_ids()
        with pytest.raises(NotFoundException):
            await service.find_by_id(schedule.id)

    @pytest.mark.asyncio
    async def test_delete_twice(self, service):
        schedule = await service.create(manual(in_future(hours=1)))
        await service.delete(schedule.id)
        with pytest.raises(NotFoundException):
            await service.delete(schedule.id)


class TestOneShotFiring:
    """Разовые уведомления."""

    @pytest.mark.asyncio
    async def test_scenario_manual_fires_once_and_disables(self, storage, dispatcher):
        """Таймер срабатывает один раз, запись выключается, включить её снова нельзя."""
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID)
        try:
            schedule = await svc.create(manual(in_future(milliseconds=300), chat_id="C1"))
            assert svc._jobs[schedule.id].kind == "timer"

            await svc._jobs[schedule.id].task
            await svc.drain()

            dispatcher.send.assert_awaited_once_with("C1", "Созвон с клиентом")
            assert storage.find_by_id(schedule.id).enabled is False
            assert schedule.id not in svc.live_job_ids()

            with pytest.raises(PastScheduledTime):
                await svc.toggle_enabled(schedule.id)
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_manual_disabled_even_if_send_fails(self, storage, dispatcher):
        dispatcher.send.side_effect = DispatchError("C1", "chat not found")
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=1))
        try:
            schedule = await svc.create(manual(in_future(hours=1), chat_id="C1"))
            await svc._jobs[schedule.id].task
            await svc.drain()

            dispatcher.send.assert_awaited_once()
            assert storage.find_by_id(schedule.id).enabled is False
            assert schedule.id not in svc.live_job_ids()
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_deleted_manual_is_not_sent(self, storage, dispatcher):
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=1))
        try:
            schedule = await svc.create(manual(in_future(hours=1)))
            job = svc._jobs[schedule.id]
            await svc.delete(schedule.id)
            await asyncio.gather(job.task, return_exceptions=True)
            await svc.drain()

            dispatcher.send.assert_not_awaited()
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_rescheduled_timer_fires_while_old_send_in_flight(self, storage, dispatcher):
        """Новый таймер срабатывает, пока отправка по старому ещё висит."""
        release = asyncio.Event()

        async def send(chat_id, text):
            if dispatcher.send.await_count == 1:
                await release.wait()

        dispatcher.send.side_effect = send
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=2))
        try:
            schedule = await svc.create(manual(in_future(hours=1), chat_id="C1"))
            await wait_until(lambda: dispatcher.send.await_count == 1)

            await svc.update(schedule.id, ScheduleUpdate(scheduled_at=in_future(hours=2)))
            await wait_until(lambda: dispatcher.send.await_count == 2)
            release.set()
            await svc.drain()

            assert storage.find_by_id(schedule.id).enabled is False
            assert schedule.id not in svc.live_job_ids()
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_old_send_keeps_rescheduled_timer(self, storage, dispatcher):
        """Старая отправка завершилась после перерегистрации: новый таймер остаётся."""
        release = asyncio.Event()

        async def send(chat_id, text):
            await release.wait()

        dispatcher.send.side_effect = send
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=1))
        try:
            schedule = await svc.create(manual(in_future(hours=1), chat_id="C1"))
            await wait_until(lambda: dispatcher.send.await_count == 1)

            await svc.update(schedule.id, ScheduleUpdate(scheduled_at=in_future(hours=2)))
            new_job = svc._jobs[schedule.id]
            release.set()
            await svc.drain()

            assert svc._jobs[schedule.id] is new_job
            assert not new_job.task.done()
            assert storage.find_by_id(schedule.id).enabled is True
            dispatcher.send.assert_awaited_once()
        finally:
            svc.shutdown()


class TestRecurringFiring:
    """Повторяющиеся уведомления."""

    @pytest.mark.asyncio
    async def test_tick_sends_message(self, storage, dispatcher):
        sleep = FakeSleep(ticks=1)
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=sleep)
        try:
            schedule = await svc.create(fixed(cron="*/5 * * * *", chat_id="C1"))
            await wait_until(lambda: dispatcher.send.await_count == 1)
            await svc.drain()

            dispatcher.send.assert_awaited_once_with("C1", "<b>Планёрка</b>")
            assert sleep.calls and sleep.calls[0] <= 300
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_job(self, storage, dispatcher):
        dispatcher.send.side_effect = DispatchError("C1", "bot was blocked")
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=1))
        try:
            schedule = await svc.create(fixed(cron="*/5 * * * *", chat_id="C1"))
            await wait_until(lambda: dispatcher.send.await_count == 1)
            await svc.drain()

            assert schedule.id in svc.live_job_ids()
            assert not svc._jobs[schedule.id].task.done()
            assert storage.find_by_id(schedule.id).enabled is True
        finally:
            svc.shutdown()

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, storage, dispatcher):
        release = asyncio.Event()

        async def slow_send(chat_id, text):
            await release.wait()

        dispatcher.send.side_effect = slow_send
        svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, sleep=FakeSleep(ticks=3))
        try:
            schedule = await svc.create(fixed(cron="* * * * *"))
            await wait_until(lambda: len(svc._in_flight) == 1 and len(svc._dispatch_tasks) == 1)
            for _ in range(20):
                await asyncio.sleep(0)

            assert dispatcher.send.await_count == 1
            release.set()
            await svc.drain()
            assert schedule.id not in svc._in_flight
        finally:
            svc.shutdown()


class TestRestoreOnStart:
    """Восстановление реестра после рестарта."""

    @pytest.mark.asyncio
    async def test_scenario_restart_recovery(self, service, storage):
        for cron in ("0 9 * * 1-5", "30 18 * * *", "0 12 1 * *"):
            storage.create(type="fixed", name=cron, message=cron, chat_id="C1", enabled=True, cron=cron)
        future = storage.create(
            type="manual", name="Будущее", message="Будущее", chat_id="C1",
            enabled=True, scheduled_at=now_utc().replace(tzinfo=None) + timedelta(hours=2),
        )
        past = storage.create(
            type="manual", name="Прошедшее", message="Прошедшее", chat_id="C1",
            enabled=True, scheduled_at=now_utc().replace(tzinfo=None) - timedelta(hours=2),
        )

        result = await service.restore_on_start()

        assert len(service.live_job_ids()) == 4
        assert future.id in service.live_job_ids()
        assert past.id not in service.live_job_ids()
        assert storage.find_by_id(past.id).enabled is False
        assert result == {"restored": 4, "skipped": 0, "expired": 1}

    @pytest.mark.asyncio
    async def test_disabled_and_events_not_registered(self, service, storage):
        storage.create(type="fixed", name="Выкл", message="x", chat_id="C1", enabled=False, cron="0 9 * * *")
        storage.create(type="event", name="Событие", message="x", chat_id="C1", enabled=True, scheduled_at=now_utc().replace(tzinfo=None))

        result = await service.restore_on_start()

        assert service.live_job_ids() == frozenset()
        assert result["skipped"] == 1

    @pytest.mark.asyncio
    async def test_broken_cron_in_db_is_skipped(self, service, storage):
        storage.create(type="fixed", name="Битый", message="x", chat_id="C1", enabled=True, cron="0 9 *")
        ok = storage.create(type="fixed", name="Рабочий", message="x", chat_id="C1", enabled=True, cron="0 9 * * *")

        result = await service.restore_on_start()

        assert service.live_job_ids() == frozenset({ok.id})
        assert result["restored"] == 1


class TestShutdown:
    """Остановка."""

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, service):
        a = await service.create(fixed())
        b = await service.create(manual(in_future(hours=1)))
        tasks = [service._jobs[a.id].task, service._jobs[b.id].task]

        service.shutdown()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert service.live_job_ids() == frozenset()
        assert all(t.cancelled() for t in tasks)

    @pytest.mark.asyncio
    async def test_shutdown_on_empty_registry(self, service):
        service.shutdown()
        service.shutdown()
        assert service.live_job_ids() == frozenset()

    @pytest.mark.asyncio
    async def test_daily_summary_job(self, service):
        class Summary:
            async def send_daily_summary(self):
                return 0

        service.start_daily_summary(Summary(), at="08:00")
        service.start_daily_summary(Summary(), at="09:30")

        assert len(service._system_jobs) == 1
        job = next(iter(service._system_jobs.values()))
        assert job.cron == "30 9 * * *"
        # системная задача не попадает в реестр расписаний
        assert service.live_job_ids() == frozenset()
