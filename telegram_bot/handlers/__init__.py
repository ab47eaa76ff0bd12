"""
Обработчики команд бота.
"""
from telegram_bot.handlers import basic, schedules

__all__ = ["basic", "schedules"]
