# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "test_api_key")

from src.common.constants import Accuracy, PermissionStatus
from src.core.tracking.exceptions import ConstraintViolation, RecordNotFound
from src.core.tracking.models import WRITABLE_FIELDS, Coordinate, LocationRecord


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Тестовая конфигурация",
        "PROJECT_NAME": "driver_tracking_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "TRACKING_SERVICE_HOST": "127.0.0.1",
        "TRACKING_SERVICE_PORT": 9092,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "GOOGLE_MAPS_API_KEY": "test_api_key",
        "GEOCODING_LANGUAGE": "ru",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "driver_tracking_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "DB_COMMAND_TIMEOUT": 30,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "taxi_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "taxi.test",
        "RABBITMQ_PREFETCH_COUNT": 5,
        "SUPABASE_URL": "https://example.supabase.co",
        "SUPABASE_ANON_KEY": "anon_key",
        "SUPABASE_SERVICE_ROLE_KEY": "",
        "LOCATIONS_TABLE": "live_locations",
        "PLATFORM": "web",
        "STORE_BACKEND": "postgrest",
        "FALLBACK_LATITUDE": 48.1351,
        "FALLBACK_LONGITUDE": 11.582,
        "DEFAULT_ACCURACY_METERS": 15.0,
        "ACQUISITION_TIMEOUT_MS": 3000,
        "STORE_CALL_TIMEOUT": 2.0,
        "STORE_RETRY_ATTEMPTS": 3,
        "LOCATION_UPDATE_INTERVAL": 5,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.hgetall = AsyncMock(return_value={})
    redis.publish = AsyncMock(return_value=1)
    redis.pubsub = MagicMock()
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.subscribe = AsyncMock(return_value=None)
    event_bus.unsubscribe = MagicMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ТЕСТОВЫЕ ДВОЙНИКИ
# =============================================================================

class InMemoryLocationStore:
    """Хранилище записей в памяти с уникальным driver_id."""

    def __init__(self) -> None:
        self.rows: dict[str, LocationRecord] = {}
        self.calls: list[str] = []
        self.upsert_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.find_error: Optional[Exception] = None
        self._next_id = 1

    @property
    def write_calls(self) -> list[str]:
        return [name for name in self.calls if name in ("upsert", "update")]

    async def find(self, driver_id: str) -> Optional[LocationRecord]:
        self.calls.append("find")
        if self.find_error is not None:
            raise self.find_error
        return self.rows.get(driver_id)

    async def upsert(self, record: LocationRecord) -> LocationRecord:
        self.calls.append("upsert")
        if self.upsert_error is not None:
            raise self.upsert_error
        existing = self.rows.get(record.driver_id)
        row_id = existing.id if existing is not None else self._take_id()
        stored = record.model_copy(update={"id": row_id})
        self.rows[record.driver_id] = stored
        return stored

    async def update(self, driver_id: str, fields: dict[str, Any]) -> LocationRecord:
        self.calls.append("update")
        if self.update_error is not None:
            raise self.update_error
        existing = self.rows.get(driver_id)
        if existing is None:
            raise RecordNotFound(f"Нет записи водителя {driver_id}")
        values = {name: value for name, value in fields.items() if name in WRITABLE_FIELDS}
        stored = existing.model_copy(update=values)
        self.rows[driver_id] = stored
        return stored

    def insert(self, record: LocationRecord) -> None:
        """Вставка напрямую; повторный driver_id нарушает уникальность."""
        if record.driver_id in self.rows:
            raise ConstraintViolation(record.driver_id)
        self.rows[record.driver_id] = record.model_copy(update={"id": self._take_id()})

    def _take_id(self) -> int:
        row_id = self._next_id
        self._next_id += 1
        return row_id


class FakeGeolocationSource:
    """Источник координат с заданным результатом."""

    def __init__(self, result: Coordinate | Exception) -> None:
        self.result = result
        self.calls: list[tuple[Accuracy, int]] = []

    async def get_current_position(self, accuracy: Accuracy, timeout_ms: int) -> Coordinate:
        self.calls.append((accuracy, timeout_ms))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakePermissionSource:
    """Источник разрешения с фиксированными ответами."""

    def __init__(
        self,
        status: PermissionStatus = PermissionStatus.GRANTED,
        request_result: PermissionStatus = PermissionStatus.GRANTED,
    ) -> None:
        self.status = status
        self.request_result = request_result
        self.request_calls = 0

    async def get_status(self) -> PermissionStatus:
        return self.status

    async def request_access(self) -> PermissionStatus:
        self.request_calls += 1
        self.status = self.request_result
        return self.request_result


class FakeSession:
    """TrackingSession, которая помнит вызов remove()."""

    def __init__(self) -> None:
        self.removed = 0

    @property
    def active(self) -> bool:
        return self.removed == 0

    def remove(self) -> None:
        self.removed += 1


class FakePositionStream:
    """Поток координат: запоминает открытые сессии и их обработчики."""

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.handlers: list[Any] = []
        self.watched: list[str] = []

    async def watch(self, driver_id: str, on_position: Any) -> FakeSession:
        session = FakeSession()
        self.watched.append(driver_id)
        self.sessions.append(session)
        self.handlers.append(on_position)
        return session


@pytest.fixture
def memory_store() -> InMemoryLocationStore:
    """Хранилище записей в памяти."""
    return InMemoryLocationStore()


@pytest.fixture
def position_stream() -> FakePositionStream:
    """Поток координат для контроллера."""
    return FakePositionStream()


@pytest.fixture
def permission_source() -> FakePermissionSource:
    """Источник разрешения (выдано)."""
    return FakePermissionSource()


@pytest.fixture
def make_permission_source():
    """Фабрика источников разрешения."""
    return FakePermissionSource


@pytest.fixture
def sensor_coordinate() -> Coordinate:
    """Координата с датчика."""
    return Coordinate(latitude=50.4547, longitude=30.5238, accuracy=8.0, heading=90.0, speed=12.5)


@pytest.fixture
def make_geolocation():
    """Фабрика источников координат."""
    return FakeGeolocationSource


@pytest.fixture
def sample_location_row() -> dict[str, Any]:
    """Строка таблицы live_locations."""
    return {
        "id": 7,
        "user_id": "driver-42",
        "latitude": 50.4501,
        "longitude": 30.5234,
        "heading": None,
        "speed": None,
        "accuracy": 12.0,
        "updated_at": datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc),
    }
