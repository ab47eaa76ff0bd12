"""
Отправка уведомлений в Telegram через aiogram.
"""
import logging
from typing import Callable, Optional, Protocol

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError, TelegramNetworkError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.exceptions import DispatchError

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """Доставка текста в чат. При неудаче бросает DispatchError."""

    async def send(self, chat_id: str, text: str) -> None: ...


def _default_bot() -> Bot:
    from telegram_bot.bot import get_bot
    return get_bot()


class NotificationSender:
    """
    Отправляет HTML-сообщения ботом.
    Сетевые ошибки повторяются несколько раз, остальные сразу превращаются в DispatchError.
    """

    def __init__(
        self,
        bot_factory: Callable[[], Bot] = _default_bot,
        attempts: int = 3,
        wait_max: float = 10.0,
    ):
        self._bot_factory = bot_factory
        self._bot: Optional[Bot] = None
        self._attempts = attempts
        self._wait_max = wait_max

    def _get_bot(self, chat_id: str) -> Bot:
        if self._bot is None:
            try:
                self._bot = self._bot_factory()
            except ValueError as e:
                raise DispatchError(chat_id, f"бот не настроен: {e}") from e
        return self._bot

    async def send(self, chat_id: str, text: str) -> None:
        """Отправляет сообщение в чат."""
        bot = self._get_bot(chat_id)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=1, max=self._wait_max),
                retry=retry_if_exception_type(TelegramNetworkError),
                reraise=True,
            ):
                with attempt:
                    await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.HTML)
        except (TelegramAPIError, RetryError) as e:
            logger.warning("Telegram rejected message to %s: %s", chat_id, e)
            raise DispatchError(chat_id, str(e)) from e
