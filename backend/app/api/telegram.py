"""
Webhook Telegram бота (aiogram 3.x) и его запуск/остановка вместе с приложением.
"""
import logging
from fastapi import APIRouter, Request, HTTPException, status
from fastapi.responses import JSONResponse

from telegram_bot.bot import setup_webhook, process_update, get_bot, get_dispatcher
from telegram_bot.config import bot_config
from telegram_bot.services.api_client import close_api_client
from app.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/telegram", tags=["telegram"])

# Флаг для отслеживания инициализации бота
_bot_initialized = False


async def start_bot() -> None:
    """Инициализация бота. Ошибки логируются и не мешают запуску API."""
    global _bot_initialized

    if not bot_config.TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN not set, bot will not be initialized")
        return

    try:
        logger.info("Initializing Telegram bot...")
        get_bot()
        get_dispatcher()

        if bot_config.WEBHOOK_URL:
            await setup_webhook()
        else:
            logger.warning("WEBHOOK_URL not set, webhook not configured")

        _bot_initialized = True
        logger.info("Telegram bot startup completed successfully")
    except Exception as e:
        logger.error(f"Error during bot startup: {e}")


async def stop_bot() -> None:
    """Завершение работы бота при остановке приложения."""
    global _bot_initialized

    await close_api_client()
    if _bot_initialized:
        try:
            logger.info("Shutting down Telegram bot...")
            await get_bot().session.close()
            logger.info("Bot shutdown completed")
        except Exception as e:
            logger.error(f"Error during bot shutdown: {e}")
        _bot_initialized = False


@router.post("/webhook")
async def telegram_webhook(request: Request) -> JSONResponse:
    """
    Endpoint для получения webhook от Telegram.

    Telegram отправляет обновления (сообщения, команды) на этот endpoint.
    """
    secret = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
    if secret != settings.TELEGRAM_WEBHOOK_SECRET:
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    try:
        update_data = await request.json()
        logger.debug(f"Received webhook data: {update_data}")

        await process_update(update_data)

        return JSONResponse(content={"status": "ok"})

    except Exception as e:
        logger.error(f"Error processing webhook: {e}")
        # Возвращаем 200 OK даже при ошибке, чтобы Telegram не повторял запрос
        return JSONResponse(
            content={"status": "error", "message": str(e)},
            status_code=status.HTTP_200_OK
        )
