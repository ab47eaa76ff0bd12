"""
Конфигурация Telegram бота.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BotConfig:
    """Конфигурация бота."""

    # Telegram Bot Token - никогда не коммитить в репозиторий!
    TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Webhook URL для продакшена
    WEBHOOK_URL: str = os.getenv("TELEGRAM_BOT_WEBHOOK_URL", "")

    # Webhook secret для верификации запросов от Telegram
    WEBHOOK_SECRET: str = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")

    # API ключ для авторизации запросов к бэкенду
    API_KEY: str = os.getenv("API_KEY", "")

    # URL API бэкенда
    API_BASE_URL: str = os.getenv("API_BASE_URL", "")

    # Порт для webhook
    PORT: int = int(os.getenv("PORT", 8000))

    # Смещение локального времени для вывода дат
    LOCAL_UTC_OFFSET: str = os.getenv("LOCAL_UTC_OFFSET", "+09:00")

    @classmethod
    def get_api_base_url(cls) -> str:
        """Получает URL API бэкенда."""
        if cls.API_BASE_URL:
            return cls.API_BASE_URL
        # Бот и бэкенд в одном процессе
        return f"http://localhost:{cls.PORT}"

    @classmethod
    def validate(cls) -> bool:
        """Проверяет, что все необходимые переменные окружения установлены."""
        if not cls.TOKEN:
            raise ValueError(
                "TELEGRAM_BOT_TOKEN не установлен! "
                "Пожалуйста, создайте .env файл на основе .env.example"
            )
        return True


bot_config = BotConfig()
