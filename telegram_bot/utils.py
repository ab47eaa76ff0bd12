"""
Утилитарные функции для Telegram-бота.
"""
import html
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from telegram_bot.config import bot_config

logger = logging.getLogger(__name__)

# Нумерация cron: 0 и 7 — воскресенье
CRON_DAY_NAMES = {
    "0": "Вс",
    "1": "Пн",
    "2": "Вт",
    "3": "Ср",
    "4": "Чт",
    "5": "Пт",
    "6": "Сб",
    "7": "Вс",
}
WEEKDAY_NAMES = ["Пн", "Вт", "Ср", "Чт", "Пт", "Сб", "Вс"]


_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def parse_offset(value: str) -> timezone:
    """'+09:00' -> фиксированная таймзона. Формат тот же, что у бэкенда; ошибка -> ValueError."""
    match = _OFFSET_RE.match(value.strip())
    if not match:
        raise ValueError(f"Некорректное смещение UTC: {value!r}")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


LOCAL_TZ = parse_offset(bot_config.LOCAL_UTC_OFFSET)


def parse_iso(iso_string: Optional[str]) -> Optional[datetime]:
    """ISO-строка из API -> aware datetime. Naive-значения считаются UTC."""
    if not iso_string:
        return None
    try:
        dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to parse datetime '{iso_string}': {e}")
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_date(iso_string: Optional[str], tz: timezone = LOCAL_TZ) -> str:
    """
    Дата в локальном времени: '2025-03-01 (Сб) 14:30'.
    При невалидной дате возвращает исходную строку как fallback.
    """
    dt = parse_iso(iso_string)
    if dt is None:
        return iso_string or "не указано"
    local = dt.astimezone(tz)
    return f"{local:%Y-%m-%d} ({WEEKDAY_NAMES[local.weekday()]}) {local:%H:%M}"


def format_remaining(iso_string: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """Сколько осталось до момента: '2 д 3 ч', '45 мин'. None, если время прошло."""
    dt = parse_iso(iso_string)
    if dt is None:
        return None
    now = now or datetime.now(timezone.utc)
    diff = dt - now
    if diff.total_seconds() <= 0:
        return None

    total_minutes = int(diff.total_seconds() // 60)
    days, rest = divmod(total_minutes, 1440)
    hours, minutes = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f"{days} д")
    if hours:
        parts.append(f"{hours} ч")
    if minutes and not days:
        parts.append(f"{minutes} мин")
    return f"осталось {' '.join(parts)}" if parts else "вот-вот"


def describe_day_of_week(field: str) -> str:
    """Поле дня недели cron -> текст."""
    if field == "*":
        return "Ежедневно"
    if "-" in field and "," not in field:
        start, _, end = field.partition("-")
        first = CRON_DAY_NAMES.get(start, start)
        last = CRON_DAY_NAMES.get(end, end)
        if (first, last) == ("Пн", "Пт"):
            return "По будням (Пн–Пт)"
        return f"Еженедельно {first}–{last}"
    if "," in field:
        days = [CRON_DAY_NAMES.get(d.strip(), d.strip()) for d in field.split(",")]
        return f"Еженедельно {', '.join(days)}"
    name = CRON_DAY_NAMES.get(field)
    return f"Еженедельно {name}" if name else field


def describe_cron(cron: Optional[str]) -> str:
    """'30 9 * * 1-5' -> 'По будням (Пн–Пт) 09:30'."""
    if not cron:
        return "—"
    parts = cron.split()
    if len(parts) < 5:
        return cron
    minute, hour, _, _, day_of_week = parts[:5]
    time_str = f"{hour.zfill(2)}:{minute.zfill(2)}"
    return f"{describe_day_of_week(day_of_week)} {time_str}"


def truncate(text: str, max_length: int = 50) -> str:
    """Одна строка, не длиннее max_length, с экранированием HTML."""
    one_line = (text or "").replace("\n", " ")
    if len(one_line) > max_length:
        one_line = one_line[:max_length] + "…"
    return html.escape(one_line)
