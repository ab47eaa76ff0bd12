"""
Pydantic схемы для мгновенной отправки уведомлений.
"""
from typing import Optional

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Сообщение для немедленной отправки (HTML-разметка Telegram)."""
    message: str = Field(min_length=1)
    chat_id: Optional[str] = Field(default=None, max_length=50)


class SendMessageResponse(BaseModel):
    """Результат отправки."""
    success: bool
    chat_id: str
