"""
Главный файл FastAPI приложения.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, get_db
from app.core.exceptions import AppException
from app.core.utils import LOCAL_TZ
from app.api import api_router
from app.api.telegram import router as telegram_router, start_bot, stop_bot
from app.services.daily_summary import DailySummaryService
from app.services.notification_sender import NotificationSender
from app.services.schedule_service import ScheduleService
from app.services.schedule_storage import ScheduleStorage

# Настройка логирования
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Старт: восстановить живые задачи из БД до приёма запросов. Стоп: снять их."""
    logger.info("Application startup")
    storage = ScheduleStorage(SessionLocal)
    dispatcher = NotificationSender()
    service = ScheduleService(
        storage,
        dispatcher,
        default_chat_id=settings.TELEGRAM_DEFAULT_CHAT_ID,
        tz=LOCAL_TZ,
    )
    app.state.dispatcher = dispatcher
    app.state.schedule_service = service

    await service.restore_on_start()
    if settings.DAILY_SUMMARY_ENABLED:
        summary = DailySummaryService(storage, dispatcher, settings.TELEGRAM_DEFAULT_CHAT_ID, tz=LOCAL_TZ)
        service.start_daily_summary(summary, at=settings.DAILY_SUMMARY_TIME)
    await start_bot()

    yield

    logger.info("Application shutdown")
    service.shutdown()
    await service.drain()
    await stop_bot()


app = FastAPI(
    title=settings.APP_TITLE,
    description="API для отправки уведомлений в Telegram по расписанию",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
    )


# CORS middleware — разрешённые домены из переменной окружения
origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health check endpoint
@app.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    """Health check endpoint with database verification."""
    service = getattr(request.app.state, "schedule_service", None)
    live_jobs = len(service.live_job_ids()) if service else 0
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected", "live_jobs": live_jobs}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": str(e), "live_jobs": live_jobs},
        )

# Подключаем webhook endpoint напрямую (без префикса /api/v1)
app.include_router(telegram_router, prefix="/webhook")

# Подключаем API роутер
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
