"""
Главный файл Telegram бота на aiogram 3.x.
"""
import logging
import asyncio
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware, Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import Message, MessageEntity, TelegramObject, Update

from telegram_bot.config import bot_config
from telegram_bot.handlers import basic, schedules
from telegram_bot.services.api_client import close_api_client

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseMiddleware):
    """Глобальный middleware для обработки ошибок в хендлерах."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        try:
            return await handler(event, data)
        except Exception as e:
            logger.exception("Handler error: %s", e)


class GroupCommandMiddleware(BaseMiddleware):
    """
    Команды в группах.

    `@bot команда` и `@bot /команда` переписываются в `/команда@bot`;
    слэш-команды, адресованные не этому боту, игнорируются.
    В личных чатах сообщения проходят без изменений.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        if not isinstance(event, Message) or event.chat.type == "private" or not event.text:
            return await handler(event, data)

        bot: Bot = data["bot"]
        me = await bot.me()
        if not me.username:
            return await handler(event, data)

        text = event.text.strip()
        mention = f"@{me.username}"

        if text.startswith(mention):
            command = text[len(mention):].strip()
            if not command:
                return None
            rewritten = f"/{command.lstrip('/')}"
            name, _, args = rewritten.partition(" ")
            rewritten = f"{name}{mention}" + (f" {args}" if args else "")
            event = event.model_copy(update={
                "text": rewritten,
                "entities": [
                    MessageEntity(type="bot_command", offset=0, length=len(name) + len(mention)),
                ],
            })
            return await handler(event, data)

        if text.startswith("/") and mention not in text:
            return None

        return await handler(event, data)


def create_dispatcher() -> Dispatcher:
    """Создает и настраивает диспетчер."""
    dp = Dispatcher()

    dp.include_router(basic.router)
    dp.include_router(schedules.router)

    dp.message.outer_middleware(GroupCommandMiddleware())
    dp.message.middleware(ErrorHandlerMiddleware())

    logger.info("Dispatcher created with all routers")
    return dp


async def start_polling():
    """Запускает бота в режиме polling (для локальной разработки)."""
    bot_config.validate()

    bot = Bot(
        token=bot_config.TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )
    dp = create_dispatcher()

    logger.info("Starting bot in polling mode...")
    try:
        await dp.start_polling(bot)
    finally:
        await close_api_client()
        await bot.session.close()


# Глобальные объекты для webhook
_bot: Bot = None
_dp: Dispatcher = None


def get_bot() -> Bot:
    """Возвращает глобальный объект бота."""
    global _bot
    if _bot is None:
        bot_config.validate()
        _bot = Bot(
            token=bot_config.TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML)
        )
    return _bot


def get_dispatcher() -> Dispatcher:
    """Возвращает глобальный диспетчер."""
    global _dp
    if _dp is None:
        _dp = create_dispatcher()
    return _dp


def build_webhook_url(base_url: str) -> str:
    """Полный адрес webhook: <base>/webhook/telegram/webhook."""
    base_url = base_url.rstrip('/')
    # Remove /webhook suffix if present to avoid duplication
    if base_url.endswith('/webhook'):
        base_url = base_url[:-8]
    return f"{base_url}/webhook/telegram/webhook"


async def setup_webhook() -> None:
    """Настраивает webhook для бота."""
    if not bot_config.WEBHOOK_URL:
        logger.warning("WEBHOOK_URL not set, skipping webhook setup")
        return

    bot = get_bot()
    webhook_url = build_webhook_url(bot_config.WEBHOOK_URL)

    # Pass secret_token so Telegram sends X-Telegram-Bot-Api-Secret-Token header
    webhook_kwargs = {"url": webhook_url}
    if bot_config.WEBHOOK_SECRET:
        webhook_kwargs["secret_token"] = bot_config.WEBHOOK_SECRET
    await bot.set_webhook(**webhook_kwargs)
    logger.info(f"Webhook set to: {webhook_url}")


async def process_update(update_data: dict) -> None:
    """Обрабатывает обновление от Telegram (для webhook)."""
    bot = get_bot()
    dp = get_dispatcher()

    update = Update.model_validate(update_data, context={"bot": bot})
    await dp.feed_update(bot, update)


if __name__ == "__main__":
    # Для локального запуска в режиме polling
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO,
    )
    asyncio.run(start_polling())
