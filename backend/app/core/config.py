"""
Конфигурация приложения.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Настройки приложения."""

    # Database — без дефолта, приложение не запустится без БД
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # FastAPI
    APP_TITLE: str = "Telegram Schedule Notification Service"
    DEBUG: bool = False

    # API Security — без дефолтов
    API_KEY: str = os.getenv("API_KEY", "")
    TELEGRAM_WEBHOOK_SECRET: str = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")

    # CORS — по умолчанию пустой (ничего не разрешено)
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "")

    # Telegram Bot
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_BOT_WEBHOOK_URL: str = os.getenv("TELEGRAM_BOT_WEBHOOK_URL", "")

    # Чат по умолчанию, если в расписании chat_id не указан
    TELEGRAM_DEFAULT_CHAT_ID: str = os.getenv("TELEGRAM_DEFAULT_CHAT_ID", "")

    # Фиксированное смещение локального времени, по нему считается "сегодня"
    LOCAL_UTC_OFFSET: str = os.getenv("LOCAL_UTC_OFFSET", "+09:00")

    # Ежедневная сводка
    DAILY_SUMMARY_TIME: str = os.getenv("DAILY_SUMMARY_TIME", "08:00")
    DAILY_SUMMARY_ENABLED: bool = os.getenv("DAILY_SUMMARY_ENABLED", "true").lower() in ("1", "true", "yes")


settings = Settings()
