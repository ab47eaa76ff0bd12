"""
Тестовая инфраструктура: фикстуры для SQLite in-memory, планировщика и FastAPI TestClient.
"""
import asyncio
import os

# Отключаем Telegram бота при тестах — должно быть ДО импорта app/telegram_bot
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_BOT_WEBHOOK_URL"] = ""
os.environ["API_KEY"] = "test-api-key"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_DEFAULT_CHAT_ID"] = "-100500"
os.environ["LOCAL_UTC_OFFSET"] = "+09:00"
os.environ["DAILY_SUMMARY_ENABLED"] = "false"

# Принудительно обнуляем config бота (мог быть уже загружен с реальным TOKEN)
import telegram_bot.config
telegram_bot.config.bot_config.TOKEN = ""
telegram_bot.config.bot_config.WEBHOOK_URL = ""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app.api.deps import get_dispatcher
from app.core.database import Base, SessionLocal, get_db
from app.core.utils import LOCAL_TZ
from app.main import app as fastapi_app
from app.services.schedule_service import ScheduleService
from app.services.schedule_storage import ScheduleStorage

import app.models.schedule  # noqa: F401

DEFAULT_CHAT_ID = "-100500"

# SQLite in-memory с StaticPool — одна БД для всех connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


class FakeSleep:
    """
    Подмена asyncio.sleep для планировщика.
    Первые `ticks` вызовов возвращаются сразу, следующие висят до отмены задачи.
    """

    def __init__(self, ticks: int = 0):
        self.ticks = ticks
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if len(self.calls) > self.ticks:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


async def wait_until(predicate, attempts: int = 200) -> None:
    """Отдаёт управление event loop, пока predicate() не станет истинным."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached")


@pytest.fixture(autouse=True)
def setup_database():
    """Создаёт все таблицы перед каждым тестом и удаляет после."""
    # lifespan приложения работает через SessionLocal — направляем его в тестовую БД
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Session:
    """Фикстура тестовой сессии БД."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage() -> ScheduleStorage:
    return ScheduleStorage(TestingSessionLocal)


@pytest.fixture
def dispatcher() -> AsyncMock:
    """Диспетчер-заглушка: send всегда успешен."""
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest_asyncio.fixture
async def service(storage, dispatcher, fake_sleep):
    """Планировщик на тестовой БД; живые задачи снимаются после теста."""
    svc = ScheduleService(storage, dispatcher, DEFAULT_CHAT_ID, tz=LOCAL_TZ, sleep=fake_sleep)
    yield svc
    svc.shutdown()
    await svc.drain(timeout=1.0)


def _override_get_db(db_session: Session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    return override_get_db


@pytest.fixture
def client_no_auth(db_session: Session, dispatcher) -> TestClient:
    """FastAPI TestClient БЕЗ API-ключа (для тестов безопасности)."""
    fastapi_app.dependency_overrides[get_db] = _override_get_db(db_session)
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(db_session: Session, dispatcher) -> TestClient:
    """FastAPI TestClient с подменённой БД, диспетчером-заглушкой и API-ключом."""
    fastapi_app.dependency_overrides[get_db] = _override_get_db(db_session)
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(
        fastapi_app,
        raise_server_exceptions=False,
        headers={"X-API-Key": "test-api-key"},
    ) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


# --- Вспомогательные функции для создания тестовых данных ---

def create_fixed(c: TestClient, name: str = "Планёрка", cron: str = "0 9 * * 1-5", **extra) -> dict:
    """Создаёт повторяющееся расписание через API."""
    data = {"type": "fixed", "name": name, "message": f"<b>{name}</b>", "cron": cron, **extra}
    resp = c.post("/api/v1/schedules", json=data)
    assert resp.status_code == 201, resp.text
    return resp.json()


def create_manual(c: TestClient, scheduled_at: str, name: str = "Созвон", **extra) -> dict:
    """Создаёт разовое расписание через API."""
    data = {"type": "manual", "name": name, "message": name, "scheduled_at": scheduled_at, **extra}
    resp = c.post("/api/v1/schedules", json=data)
    assert resp.status_code == 201, resp.text
    return resp.json()
