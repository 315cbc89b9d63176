# tests/services/test_location_tracking.py
"""
Тесты для сервиса сессий отслеживания и его HTTP API.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.common.constants import DriverStatus, PermissionState, Platform, StoreBackend, TrackingState
from src.config.loader import Settings, SupabaseSettings, TrackingSettings
from src.core.tracking import (
    DeviceGeolocationSource,
    DriverAvailability,
    EventBusAvailabilityFeed,
    PostgresLocationStore,
    PostgrestLocationStore,
)
from src.infra.event_bus import EventTypes
from src.services.location_tracking.app import app
from src.services.location_tracking.dependencies import set_tracking_service
from src.services.location_tracking.service import TrackingService


def make_settings(**tracking: Any) -> Settings:
    values = {
        "PLATFORM": Platform.WEB,
        "STORE_BACKEND": StoreBackend.POSTGRES,
        "FALLBACK_LATITUDE": 48.1351,
        "FALLBACK_LONGITUDE": 11.582,
        "STORE_RETRY_DELAY": 0,
        "RESOLVE_ADDRESS": False,
    }
    values.update(tracking)
    return Settings(
        tracking=TrackingSettings(**values),
        supabase=SupabaseSettings(SUPABASE_URL="https://example.supabase.co", SUPABASE_SERVICE_ROLE_KEY="key"),
    )


@pytest.fixture
def service(mock_redis, memory_store, position_stream) -> TrackingService:
    """Сервис на веб-платформе с хранилищем в памяти."""
    tracking_service = TrackingService(make_settings(), redis_client=mock_redis, store=memory_store)
    tracking_service._stream = position_stream
    return tracking_service


async def wait_for_state(controller: Any, state: TrackingState) -> None:
    for _ in range(100):
        if controller.state == state:
            return
        await asyncio.sleep(0.01)


# =============================================================================
# TRACKING SERVICE
# =============================================================================

class TestBuildStore:
    """Тесты для выбора хранилища."""

    def test_postgres_store(self, mock_redis, mock_db) -> None:
        service = TrackingService(make_settings(), redis_client=mock_redis, db=mock_db)

        assert isinstance(service.store, PostgresLocationStore)

    def test_postgres_requires_db(self, mock_redis) -> None:
        with pytest.raises(RuntimeError, match="DatabaseManager"):
            TrackingService(make_settings(), redis_client=mock_redis)

    @pytest.mark.asyncio
    async def test_postgrest_store(self, mock_redis) -> None:
        """STORE_BACKEND=postgrest не требует пула PostgreSQL."""
        service = TrackingService(make_settings(STORE_BACKEND=StoreBackend.POSTGREST), redis_client=mock_redis)

        assert isinstance(service.store, PostgrestLocationStore)
        await service.close_all()


class TestSessions:
    """Тесты для открытия и закрытия сессий."""

    @pytest.mark.asyncio
    async def test_open_session_idempotent(self, service: TrackingService) -> None:
        """Повторное открытие возвращает тот же контроллер."""
        first = await service.open_session("driver-42")
        second = await service.open_session("driver-42")

        assert first is second
        assert first.state == TrackingState.IDLE
        assert first.permission == PermissionState.GRANTED
        assert list(service.sessions) == ["driver-42"]

    @pytest.mark.asyncio
    async def test_availability_reconciles_and_tracks(self, service, memory_store, position_stream) -> None:
        """Выход на линию создаёт запись (резервная точка) и запускает отслеживание."""
        # Arrange
        controller = await service.open_session("driver-42")

        # Act
        pushed = await service.push_availability(
            DriverAvailability(driver_id="driver-42", status=DriverStatus.ONLINE),
            "driver-42",
        )
        await wait_for_state(controller, TrackingState.TRACKING)

        # Assert
        assert pushed is True
        assert controller.state == TrackingState.TRACKING
        record = memory_store.rows["driver-42"]
        assert (record.latitude, record.longitude) == (48.1351, 11.582)
        assert position_stream.watched == ["driver-42"]

    @pytest.mark.asyncio
    async def test_push_without_session(self, service: TrackingService) -> None:
        pushed = await service.push_availability(
            DriverAvailability(driver_id="nobody", status=DriverStatus.ONLINE),
            "nobody",
        )

        assert pushed is False

    @pytest.mark.asyncio
    async def test_close_session(self, service, position_stream) -> None:
        """Закрытие сессии снимает подписку на координаты."""
        controller = await service.open_session("driver-42")
        await service.push_availability(
            DriverAvailability(driver_id="driver-42", status=DriverStatus.BUSY),
            "driver-42",
        )
        await wait_for_state(controller, TrackingState.TRACKING)

        assert await service.close_session("driver-42") is True
        assert await service.close_session("driver-42") is False
        assert service.get("driver-42") is None
        assert position_stream.sessions[0].removed == 1

    @pytest.mark.asyncio
    async def test_event_bus_feed(self, mock_redis, memory_store, mock_event_bus) -> None:
        """С шиной событий сессия подписывается на события статуса водителя."""
        service = TrackingService(
            make_settings(),
            redis_client=mock_redis,
            store=memory_store,
            event_bus=mock_event_bus,
        )

        await service.open_session("driver-42")
        feed = service._feeds["driver-42"]
        await service.close_all()

        assert isinstance(feed, EventBusAvailabilityFeed)
        subscribed = [call.args[0] for call in mock_event_bus.subscribe.await_args_list]
        assert EventTypes.DRIVER_ONLINE in subscribed
        assert mock_event_bus.unsubscribe.call_count == len(subscribed)

    @pytest.mark.asyncio
    async def test_native_platform_sources(self, mock_redis, memory_store) -> None:
        """На нативной платформе координаты берутся из Redis, согласие не задано."""
        service = TrackingService(make_settings(PLATFORM=Platform.NATIVE), redis_client=mock_redis, store=memory_store)

        controller = await service.open_session("driver-42")

        assert isinstance(controller._reconciler._geolocation, DeviceGeolocationSource)
        assert controller.permission == PermissionState.UNKNOWN
        mock_redis.get.assert_awaited_with("permission:location:driver-42")


# =============================================================================
# HTTP API
# =============================================================================

class TestApi:
    """Тесты для HTTP API сервиса."""

    @pytest.fixture
    def installed(self, service: TrackingService):
        set_tracking_service(service)
        yield service
        set_tracking_service(None)

    @staticmethod
    def client() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    @pytest.mark.asyncio
    async def test_service_not_initialized(self) -> None:
        set_tracking_service(None)

        async with self.client() as client:
            response = await client.get("/api/v1/tracking/driver-42")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_unknown_session(self, installed) -> None:
        async with self.client() as client:
            response = await client.post("/api/v1/tracking/driver-42/start")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, installed, memory_store) -> None:
        """Открытие сессии, доступность, создание записи и остановка."""
        async with self.client() as client:
            # Arrange
            opened = await client.post("/api/v1/tracking/driver-42/session")

            # Act
            pushed = await client.post(
                "/api/v1/tracking/driver-42/availability",
                json={"status": "online"},
            )
            await wait_for_state(installed.get("driver-42"), TrackingState.TRACKING)
            snapshot = await client.get("/api/v1/tracking/driver-42")
            record = await client.post("/api/v1/tracking/driver-42/record")
            stopped = await client.post("/api/v1/tracking/driver-42/stop")
            closed = await client.delete("/api/v1/tracking/driver-42/session")

        # Assert
        assert opened.status_code == 200
        assert opened.json()["state"] == "idle"
        assert pushed.status_code == 200
        assert snapshot.json()["state"] == "tracking"
        assert snapshot.json()["is_tracking"] is True
        assert record.json()["success"] is True
        assert record.json()["outcome"] == "existing"
        assert stopped.json()["snapshot"]["state"] == "idle"
        assert closed.json() == {"status": "closed", "driver_id": "driver-42"}
        assert "driver-42" in memory_store.rows

    @pytest.mark.asyncio
    async def test_permission_and_refresh(self, installed) -> None:
        """На веб-платформе разрешение выдано; без Google Maps обновление пустое."""
        async with self.client() as client:
            await client.post("/api/v1/tracking/driver-42/session")
            permission = await client.post("/api/v1/tracking/driver-42/permission")
            refresh = await client.post("/api/v1/tracking/driver-42/refresh")

        assert permission.json()["granted"] is True
        assert permission.json()["snapshot"]["permission"] == "granted"
        assert refresh.json() == {"location": None, "address": None}

    @pytest.mark.asyncio
    async def test_health_degraded_without_redis(self, installed) -> None:
        """Без подключения к Redis сервис деградирован."""
        redis_client = AsyncMock()
        redis_client.health_check = AsyncMock(return_value=False)
        event_bus = AsyncMock()
        event_bus.health_check = AsyncMock(return_value=True)

        with patch("src.infra.redis_client.get_redis", return_value=redis_client), \
                patch("src.infra.event_bus.get_event_bus", return_value=event_bus):
            async with self.client() as client:
                response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["service"] == "location_tracking"
        assert body["status"] == "degraded"
        assert body["dependencies"]["redis"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_health_degraded_without_postgres(self, mock_redis, mock_db, memory_store) -> None:
        """Недоступный пул PostgreSQL при хранилище postgres делает сервис деградированным."""
        # Arrange
        mock_db.health_check = AsyncMock(return_value=False)
        set_tracking_service(TrackingService(make_settings(), redis_client=mock_redis, db=mock_db, store=memory_store))
        redis_client = AsyncMock()
        redis_client.health_check = AsyncMock(return_value=True)
        event_bus = AsyncMock()
        event_bus.health_check = AsyncMock(return_value=True)

        # Act
        try:
            with patch("src.infra.redis_client.get_redis", return_value=redis_client), \
                    patch("src.infra.event_bus.get_event_bus", return_value=event_bus):
                async with self.client() as client:
                    response = await client.get("/health")
        finally:
            set_tracking_service(None)

        # Assert
        body = response.json()
        assert body["status"] == "degraded"
        assert body["dependencies"]["postgres"] == "unhealthy"
        assert body["dependencies"]["redis"] == "healthy"
        mock_db.health_check.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_postgrest_skips_postgres(self, mock_redis) -> None:
        """При хранилище postgrest пул PostgreSQL не проверяется."""
        service = TrackingService(make_settings(STORE_BACKEND=StoreBackend.POSTGREST), redis_client=mock_redis)
        set_tracking_service(service)
        redis_client = AsyncMock()
        redis_client.health_check = AsyncMock(return_value=True)
        event_bus = AsyncMock()
        event_bus.health_check = AsyncMock(return_value=True)

        try:
            with patch("src.infra.redis_client.get_redis", return_value=redis_client), \
                    patch("src.infra.event_bus.get_event_bus", return_value=event_bus):
                async with self.client() as client:
                    response = await client.get("/health")
        finally:
            set_tracking_service(None)
            await service.close_all()

        assert response.json()["status"] == "healthy"
        assert "postgres" not in response.json()["dependencies"]
