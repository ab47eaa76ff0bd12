"""
Базовые команды: /start, /help, /chatid, /ping.
"""
import logging
from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

logger = logging.getLogger(__name__)
router = Router()


def _is_group(message: Message) -> bool:
    return message.chat.type != "private"


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    """Приветствие и Chat ID текущего чата."""
    user = message.from_user
    if user:
        logger.info(f"User {user.id} ({user.username}) started the bot in chat {message.chat.id}")

    await message.answer(
        "👋 Привет! Я бот уведомлений.\n\n"
        "📌 Я отправляю сообщения по расписанию, которое настраивается через API.\n\n"
        f"🔑 Chat ID этого чата: <code>{message.chat.id}</code>\n"
        "Укажите его в TELEGRAM_DEFAULT_CHAT_ID в файле .env.\n\n"
        "Список команд: /help"
    )


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    """Справка по командам. В группах команды пишутся через упоминание бота."""
    if _is_group(message):
        me = await message.bot.me()
        tag = f"@{me.username}" if me.username else ""
        prefix = f"{tag} "
        hint = f"\n💡 В группе пишите команды в виде <code>{tag} команда</code>.\n"
    else:
        prefix = "/"
        hint = ""

    await message.answer(
        "📖 <b>Доступные команды</b>\n"
        f"{hint}"
        "\n<b>🔧 Основные</b>\n"
        f"{prefix}start - запуск бота и Chat ID\n"
        f"{prefix}help - эта справка\n"
        f"{prefix}chatid - Chat ID текущего чата\n"
        f"{prefix}ping - проверка, что бот работает\n\n"
        "<b>📋 Расписания</b>\n"
        f"{prefix}schedules - все уведомления этого чата\n"
        f"{prefix}fixed - повторяющиеся уведомления\n"
        f"{prefix}manual - разовые уведомления"
    )


@router.message(Command("chatid"))
async def cmd_chatid(message: Message) -> None:
    await message.answer(f"🔑 Chat ID: <code>{message.chat.id}</code>")


@router.message(Command("ping"))
async def cmd_ping(message: Message) -> None:
    await message.answer("🏓 Pong! Бот работает.")
