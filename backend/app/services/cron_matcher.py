"""
Сопоставление cron-выражений с календарными днями.

Поддерживается подмножество синтаксиса из 5 полей
`минута час день-месяца месяц день-недели`: `*`, число, диапазон `a-b`,
шаг `*/n` и списки через запятую. В поле дня недели 7 — синоним 0 (воскресенье).

Время следующего срабатывания считает croniter (next_fire). Шаг `*/n` здесь
означает `value % n == 0`, а croniter отсчитывает шаг от минимума поля
(день месяца `*/5` у него 1,6,11,...), поэтому шаги перед передачей в croniter
раскрываются в явные списки значений (to_croniter_expression).
"""
import re
from datetime import date, datetime
from typing import Optional

from croniter import croniter

_TERM_RE = re.compile(r"^(\*|\d+|\d+-\d+|\*/\d+)$")

# (минимум, максимум) для каждого поля
FIELD_BOUNDS = (
    (0, 59),  # минута
    (0, 23),  # час
    (1, 31),  # день месяца
    (1, 12),  # месяц
    (0, 7),   # день недели
)


def _match_term(term: str, value: int) -> bool:
    if term == "*":
        return True
    if term.startswith("*/"):
        step = term[2:]
        return step.isdigit() and int(step) > 0 and value % int(step) == 0
    if "-" in term:
        start, _, end = term.partition("-")
        if not (start.isdigit() and end.isdigit()):
            return False
        return int(start) <= value <= int(end)
    return term.isdigit() and int(term) == value


def match_field(field: str, value: int) -> bool:
    """Подходит ли значение под поле cron-выражения."""
    if field == "*":
        return True
    return any(_match_term(term.strip(), value) for term in field.split(","))


def match_day_of_week(field: str, dow: int) -> bool:
    """
    То же, что match_field, но для дня недели (0 = воскресенье).
    7 в поле тоже означает воскресенье, в том числе как граница диапазона.
    """
    if match_field(field, dow):
        return True
    return dow == 0 and match_field(field, 7)


def cron_weekday(day: date) -> int:
    """День недели в нумерации cron: 0 = воскресенье, 6 = суббота."""
    return (day.weekday() + 1) % 7


def fires_on_date(cron: str, day: date) -> bool:
    """Срабатывает ли расписание в указанный календарный день (минуты и часы не важны)."""
    parts = cron.split()
    if len(parts) < 5:
        return False
    _, _, day_of_month, month, day_of_week = parts[:5]
    return (
        match_field(month, day.month)
        and match_field(day_of_month, day.day)
        and match_day_of_week(day_of_week, cron_weekday(day))
    )


def _field_in_bounds(field: str, low: int, high: int) -> bool:
    for term in field.split(","):
        if not _TERM_RE.match(term):
            return False
        if term == "*":
            continue
        if term.startswith("*/"):
            if int(term[2:]) == 0:
                return False
            continue
        numbers = [int(n) for n in term.split("-")]
        if any(n < low or n > high for n in numbers):
            return False
        if len(numbers) == 2 and numbers[0] > numbers[1]:
            return False
    return True


def _expand_steps(field: str, low: int, high: int) -> str:
    terms = []
    for term in field.split(","):
        if term.startswith("*/"):
            values = [str(v) for v in range(low, high + 1) if _match_term(term, v)]
            if not values:
                raise ValueError(f"Шаг {term!r} не попадает ни в одно значение {low}-{high}")
            terms.extend(values)
        else:
            terms.append(term)
    return ",".join(terms)


def to_croniter_expression(cron: str) -> str:
    """
    Переписывает выражение для croniter с той же семантикой, что у match_field:
    каждый шаг `*/n` заменяется списком значений поля, кратных n.
    ValueError, если шаг не даёт ни одного значения.
    """
    parts = cron.split()
    # у дня недели 7 дублирует 0, для раскрытия шага хватает 0-6
    bounds = FIELD_BOUNDS[:4] + ((0, 6),)
    return " ".join(
        _expand_steps(field, low, high) for field, (low, high) in zip(parts, bounds)
    )


def next_fire(cron: str, base: datetime) -> datetime:
    """Первое срабатывание строго после base (в таймзоне base); день месяца И день недели."""
    return croniter(to_croniter_expression(cron), base, day_or=False).get_next(datetime)


def is_valid_expression(cron: Optional[str]) -> bool:
    """Выражение из 5 полей в поддерживаемом подмножестве синтаксиса."""
    if not cron or not cron.strip():
        return False
    parts = cron.split()
    if len(parts) != 5:
        return False
    for field, (low, high) in zip(parts, FIELD_BOUNDS):
        if not _field_in_bounds(field, low, high):
            return False
    try:
        expanded = to_croniter_expression(cron)
    except ValueError:
        return False
    return croniter.is_valid(expanded)


def display_time(cron: str) -> Optional[tuple[int, int]]:
    """(час, минута) для выражений с конкретным временем, иначе None."""
    parts = cron.split()
    if len(parts) < 2:
        return None
    minute, hour = parts[0], parts[1]
    if not (minute.isdigit() and hour.isdigit()):
        return None
    return int(hour), int(minute)
