"""
HTTP клиент для взаимодействия с API бэкенда.
Бот не ходит в БД напрямую: списки расписаний берутся через FastAPI.
"""
import httpx
import logging
from typing import Optional
from telegram_bot.config import bot_config
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


class APIClient:
    """Клиент для работы с API бэкенда."""

    _instance = None
    _client: Optional[httpx.AsyncClient] = None

    def __new__(cls, base_url: str = None):
        """Singleton pattern для предотвращения создания множественных соединений."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, base_url: str = None):
        """Инициализация клиента."""
        if not hasattr(self, '_initialized'):
            self.base_url = base_url or bot_config.get_api_base_url()
            # Ensure URL has protocol
            if self.base_url and not self.base_url.startswith(('http://', 'https://')):
                self.base_url = 'http://' + self.base_url
            logger.info(f"API client initialized with base URL: {self.base_url}")
            self._initialized = True

    async def _get_client(self) -> httpx.AsyncClient:
        """Получает или создаёт HTTP клиент."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=30.0,
                follow_redirects=True,
                headers={"X-API-Key": bot_config.API_KEY},
            )
            logger.debug("Created new HTTP client")
        return self._client

    async def close(self):
        """Закрывает HTTP клиент."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("HTTP client closed")
            self._client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        """Выполняет HTTP запрос к API. Сетевые ошибки повторяются до трёх раз."""
        # Remove trailing slash from endpoint to avoid redirect issues
        endpoint = endpoint.rstrip('/')

        client = await self._get_client()

        try:
            url = f"/api/v1{endpoint}"
            logger.debug(f"Making {method} request to {url}")

            response = await client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
            )
            response.raise_for_status()
            return response.json()
        except httpx.TransportError as e:
            logger.error(f"Connection error to {endpoint}: {e}")
            raise
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} on {endpoint}: {e.response.text}")
            raise

    @staticmethod
    def _unwrap_items(response) -> list:
        """Извлекает items из ответа со списком."""
        if isinstance(response, dict):
            return response.get("items", [])
        return response or []

    # ===== Schedules =====
    async def get_schedules(
        self,
        schedule_type: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> list[dict]:
        """Список расписаний с фильтрами по типу и чату."""
        params = {}
        if schedule_type:
            params["type"] = schedule_type
        if chat_id:
            params["chat_id"] = chat_id
        response = await self._request("GET", "/schedules", params=params or None)
        return self._unwrap_items(response)


# Глобальный экземпляр клиента
_api_client: Optional[APIClient] = None


def get_api_client() -> APIClient:
    """Получает глобальный экземпляр API клиента."""
    global _api_client
    if _api_client is None:
        _api_client = APIClient()
    return _api_client


async def close_api_client():
    """Закрывает глобальный API клиент."""
    global _api_client
    if _api_client:
        await _api_client.close()
        _api_client = None
