"""
Пользовательская иерархия исключений приложения.
"""


class AppException(Exception):
    def __init__(self, status_code: int, detail: str, error_code: str | None = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code


class NotFoundException(AppException):
    def __init__(self, resource: str, identifier):
        super().__init__(404, f"{resource} с id {identifier} не найдено", "NOT_FOUND")


class ValidationException(AppException):
    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(400, detail, error_code)


class MissingCronForFixed(ValidationException):
    def __init__(self):
        super().__init__(
            "Для повторяющегося (fixed) расписания требуется cron-выражение",
            "MISSING_CRON_FOR_FIXED",
        )


class InvalidCronExpression(ValidationException):
    def __init__(self, cron: str):
        super().__init__(f"Некорректное cron-выражение: {cron!r}", "INVALID_CRON")


class MissingTimestampForManualOrEvent(ValidationException):
    def __init__(self, schedule_type: str):
        super().__init__(
            f"Для расписания типа {schedule_type} требуется scheduled_at",
            "MISSING_SCHEDULED_AT",
        )


class PastScheduledTime(ValidationException):
    def __init__(self, detail: str = "Время разового уведомления должно быть в будущем"):
        super().__init__(detail, "PAST_SCHEDULED_TIME")


class DispatchError(AppException):
    """Не удалось доставить сообщение в Telegram."""

    def __init__(self, chat_id: str, reason: str):
        super().__init__(502, f"Не удалось отправить сообщение в чат {chat_id}: {reason}", "DISPATCH_FAILED")
        self.chat_id = chat_id


class PersistenceError(AppException):
    def __init__(self, detail: str):
        super().__init__(500, detail, "PERSISTENCE_ERROR")
