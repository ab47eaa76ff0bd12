"""
Просмотр расписаний текущего чата: /schedules, /fixed, /manual.
"""
import html
import logging

import httpx
from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from telegram_bot.services.api_client import get_api_client
from telegram_bot.utils import describe_cron, format_date, format_remaining, truncate

logger = logging.getLogger(__name__)
router = Router()

SEPARATOR = "━━━━━━━━━━━━━━━━━━━━"
API_ERROR_TEXT = "⚠️ Не удалось получить расписания. Попробуйте позже."


def format_schedule(schedule: dict) -> str:
    """Одна запись списка: статус, название, время и начало текста."""
    status = "✅" if schedule.get("enabled") else "⏸"
    name = html.escape(schedule.get("name", ""))

    if schedule.get("type") == "fixed":
        when = f"⏰ {describe_cron(schedule.get('cron'))}"
    else:
        scheduled_at = schedule.get("scheduled_at")
        when = f"📅 {format_date(scheduled_at)}"
        remaining = format_remaining(scheduled_at)
        if remaining:
            when += f"\n   ⏳ {remaining}"

    return f"{status} <b>{name}</b>\n   {when}\n   💬 {truncate(schedule.get('message', ''), 50)}"


def format_list(schedules: list[dict]) -> str:
    return "\n\n".join(format_schedule(s) for s in schedules)


async def _load(message: Message, schedule_type: str | None = None) -> list[dict] | None:
    """Расписания текущего чата. None, если API недоступен (ответ пользователю уже отправлен)."""
    chat_id = str(message.chat.id)
    try:
        return await get_api_client().get_schedules(schedule_type=schedule_type, chat_id=chat_id)
    except httpx.HTTPError as e:
        logger.error(f"Failed to load schedules for chat {chat_id}: {e}")
        await message.answer(API_ERROR_TEXT)
        return None


@router.message(Command("schedules"))
async def cmd_schedules(message: Message) -> None:
    """Все расписания чата, сгруппированные по типу."""
    schedules = await _load(message)
    if schedules is None:
        return
    if not schedules:
        await message.answer("📭 Для этого чата нет расписаний.")
        return

    fixed = [s for s in schedules if s.get("type") == "fixed"]
    manual = [s for s in schedules if s.get("type") == "manual"]

    text = f"📋 <b>Расписания уведомлений</b> (всего {len(schedules)})"
    if fixed:
        text += f"\n\n{SEPARATOR}\n🔁 <b>Повторяющиеся</b> ({len(fixed)})\n{SEPARATOR}\n\n"
        text += format_list(fixed)
    if manual:
        text += f"\n\n{SEPARATOR}\n📌 <b>Разовые</b> ({len(manual)})\n{SEPARATOR}\n\n"
        text += format_list(manual)

    await message.answer(text)


@router.message(Command("fixed"))
async def cmd_fixed(message: Message) -> None:
    schedules = await _load(message, "fixed")
    if schedules is None:
        return
    if not schedules:
        await message.answer("📭 Повторяющихся уведомлений нет.")
        return
    await message.answer(f"🔁 <b>Повторяющиеся уведомления</b> ({len(schedules)})\n\n{format_list(schedules)}")


@router.message(Command("manual"))
async def cmd_manual(message: Message) -> None:
    schedules = await _load(message, "manual")
    if schedules is None:
        return
    if not schedules:
        await message.answer("📭 Разовых уведомлений нет.")
        return
    await message.answer(f"📌 <b>Разовые уведомления</b> ({len(schedules)})\n\n{format_list(schedules)}")
