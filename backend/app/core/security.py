"""
Проверка API-ключа для /api/v1.
"""
import hmac
import logging

from fastapi import Request, Security, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, api_key: str | None = Security(api_key_header)) -> str:
    # пустой API_KEY в настройках закрывает API целиком
    if not api_key or not settings.API_KEY or not hmac.compare_digest(api_key, settings.API_KEY):
        logger.warning("Invalid API key attempt: %s %s", request.method, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key
