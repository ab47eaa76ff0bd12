"""
Ежедневная сводка: раз в день каждому чату уходит список того,
что сработает сегодня (повторяющиеся и разовые уведомления, события).
"""
import html
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from app.core.exceptions import DispatchError
from app.core.utils import LOCAL_TZ, as_utc, local_date, now_utc, truncate
from app.models.schedule import ScheduledNotification, ScheduleType
from app.services.cron_matcher import display_time, fires_on_date
from app.services.notification_sender import Dispatcher
from app.services.schedule_storage import ScheduleStorage

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Пн", "Вт", "Ср", "Чт", "Пт", "Сб", "Вс"]
SEPARATOR = "━━━━━━━━━━━━━━━━━━━━"
DESCRIPTION_LIMIT = 40

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class DigestAlarm:
    """Уведомление в сводке."""
    name: str
    time: Optional[tuple[int, int]]
    summary: str

    @property
    def sort_key(self) -> tuple[int, int]:
        # без конкретного времени — в конец списка
        return self.time if self.time is not None else (24, 0)

    @property
    def time_label(self) -> str:
        if self.time is None:
            return "в течение дня"
        return f"{self.time[0]:02d}:{self.time[1]:02d}"


@dataclass
class DigestEvent:
    """Событие в сводке."""
    name: str
    summary: str


def _plain(text: str) -> str:
    """Текст без HTML-тегов, экранированный для вставки в сообщение."""
    return html.escape(truncate(_TAG_RE.sub("", text).strip(), DESCRIPTION_LIMIT))


def _parse_hhmm(value: Optional[str]) -> Optional[tuple[int, int]]:
    if not value or ":" not in value:
        return None
    hour, _, minute = value.partition(":")
    if not (hour.isdigit() and minute.isdigit()):
        return None
    return int(hour), int(minute)


class DailySummaryService:
    """Собирает и рассылает ежедневную сводку по чатам."""

    def __init__(
        self,
        storage: ScheduleStorage,
        dispatcher: Dispatcher,
        default_chat_id: str,
        tz: timezone = LOCAL_TZ,
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._default_chat_id = default_chat_id
        self._tz = tz

    def build_digests(self, now: Optional[datetime] = None) -> dict[str, str]:
        """Тексты сводки по chat_id. Чаты без сегодняшних записей не попадают в результат."""
        local_now = as_utc(now or now_utc()).astimezone(self._tz)
        today = local_now.date()

        groups: dict[str, list[ScheduledNotification]] = {}
        for schedule in self._storage.find_all():
            if not schedule.enabled:
                continue
            chat_id = schedule.chat_id or self._default_chat_id
            groups.setdefault(chat_id, []).append(schedule)

        digests: dict[str, str] = {}
        for chat_id, schedules in groups.items():
            alarms, events = self._collect_today(schedules, today)
            if not alarms and not events:
                continue
            alarms.sort(key=lambda alarm: alarm.sort_key)
            digests[chat_id] = self._render(today, events, alarms)
        return digests

    async def send_daily_summary(self, now: Optional[datetime] = None) -> int:
        """Рассылает сводку. Возвращает число успешно отправленных сообщений."""
        digests = self.build_digests(now)
        logger.info("[DAILY SUMMARY] Triggered, %d chat(s) to notify", len(digests))

        sent = 0
        for chat_id, text in digests.items():
            try:
                await self._dispatcher.send(chat_id, text)
            except DispatchError as e:
                logger.error("[DAILY SUMMARY] Failed to send to chat_id: %s: %s", chat_id, e.detail)
                continue
            sent += 1
            logger.info("[DAILY SUMMARY] Sent to chat_id: %s", chat_id)
        return sent

    def _collect_today(
        self,
        schedules: list[ScheduledNotification],
        today: date,
    ) -> tuple[list[DigestAlarm], list[DigestEvent]]:
        alarms: list[DigestAlarm] = []
        events: list[DigestEvent] = []

        for s in schedules:
            summary = _plain(s.description or s.message)
            shown_time = _parse_hhmm(s.event_time)

            if s.type == ScheduleType.FIXED.value and s.cron:
                if fires_on_date(s.cron, today):
                    alarms.append(DigestAlarm(s.name, shown_time or display_time(s.cron), summary))
            elif s.type == ScheduleType.MANUAL.value and s.scheduled_at:
                if local_date(s.scheduled_at, self._tz) == today:
                    fire_at = as_utc(s.scheduled_at).astimezone(self._tz)
                    alarms.append(DigestAlarm(s.name, shown_time or (fire_at.hour, fire_at.minute), summary))
            elif s.type == ScheduleType.EVENT.value and s.scheduled_at:
                if local_date(s.scheduled_at, self._tz) == today:
                    events.append(DigestEvent(s.name, summary))

        return alarms, events

    @staticmethod
    def _render(today: date, events: list[DigestEvent], alarms: list[DigestAlarm]) -> str:
        lines = [
            "📆 <b>Сводка уведомлений на сегодня</b>",
            f"📅 {today.isoformat()} ({WEEKDAY_NAMES[today.weekday()]})",
            SEPARATOR,
        ]

        if events:
            lines += ["", "🗓 <b>События сегодня</b>", ""]
            for event in events:
                lines.append(f"📌 <b>{html.escape(event.name)}</b>")
                lines.append(f"   💬 {event.summary}")

        if alarms:
            lines += ["", f"🔔 <b>Запланированные уведомления</b> ({len(alarms)})", ""]
            for i, alarm in enumerate(alarms, start=1):
                if i > 1:
                    lines.append("")
                lines.append(f"{i}. <b>{html.escape(alarm.name)}</b>")
                lines.append(f"   ⏰ {alarm.time_label}")
                lines.append(f"   💬 {alarm.summary}")

        total = len(alarms) + len(events)
        lines += [
            "",
            SEPARATOR,
            f"Всего <b>{total}</b> (уведомлений: {len(alarms)}, событий: {len(events)})",
        ]
        return "\n".join(lines)
