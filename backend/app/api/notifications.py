"""
API endpoint для немедленной отправки уведомления.
"""
import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_dispatcher
from app.core.config import settings
from app.core.exceptions import ValidationException
from app.core.security import verify_api_key
from app.schemas.notification import SendMessageRequest, SendMessageResponse
from app.services.notification_sender import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("/send", response_model=SendMessageResponse)
async def send_notification(
    data: SendMessageRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Отправить сообщение сразу, без расписания. Ошибка доставки — 502."""
    chat_id = (data.chat_id or "").strip() or settings.TELEGRAM_DEFAULT_CHAT_ID
    if not chat_id:
        raise ValidationException("chat_id не указан, и TELEGRAM_DEFAULT_CHAT_ID не настроен")

    await dispatcher.send(chat_id, data.message)
    logger.info("[SEND NOW] Message sent to chat_id: %s", chat_id)
    return SendMessageResponse(success=True, chat_id=chat_id)
