"""
Утилиты приложения: локальное время и работа с текстом.
"""
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from app.core.config import settings

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def parse_utc_offset(value: str) -> timezone:
    """Преобразует строку вида '+09:00' в фиксированную таймзону."""
    match = _OFFSET_RE.match(value.strip())
    if not match:
        raise ValueError(f"Некорректное смещение UTC: {value!r}")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    if sign == "-":
        delta = -delta
    return timezone(delta, name=f"UTC{sign}{hours}:{minutes}")


LOCAL_TZ = parse_utc_offset(settings.LOCAL_UTC_OFFSET)


def now_utc() -> datetime:
    """Текущее время в UTC (aware)."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive-значения из БД считаются UTC; возвращает aware datetime."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db_datetime(dt: Optional[datetime], tz: timezone = LOCAL_TZ) -> Optional[datetime]:
    """
    Приводит время к naive UTC для хранения.
    Значение без смещения трактуется как локальное время.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_date(dt: datetime, tz: timezone = LOCAL_TZ) -> date:
    """Календарная дата момента времени в локальном смещении."""
    return as_utc(dt).astimezone(tz).date()


def sanitize_text(text: str | None, max_length: int = 1000) -> str | None:
    """Очистить текст от управляющих символов и ограничить длину."""
    if text is None:
        return None
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text[:max_length].strip()


def truncate(text: str, max_length: int) -> str:
    """Склеивает текст в одну строку и обрезает с многоточием."""
    one_line = text.replace("\n", " ")
    if len(one_line) > max_length:
        return one_line[:max_length] + "…"
    return one_line
