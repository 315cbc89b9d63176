# src/services/location_tracking/service.py
"""
Реестр сессий отслеживания: один контроллер на водителя.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from src.common.constants import Platform, StoreBackend, TypeMsg
from src.common.logger import log_info, log_warning
from src.core.geo import GeoService
from src.core.tracking import (
    DeviceGeolocationSource,
    DriverAvailability,
    DriverLocks,
    EventBusAvailabilityFeed,
    InMemoryAvailabilityFeed,
    PermissionGate,
    PostgresLocationStore,
    PostgrestLocationStore,
    RecordReconciler,
    RedisConsentPermissionSource,
    RedisPositionStream,
    StaticPermissionSource,
    TrackingController,
    WebGeolocationSource,
)
from src.core.tracking.interfaces import RecordStore

if TYPE_CHECKING:
    from src.config.loader import Settings
    from src.infra.database import DatabaseManager
    from src.infra.event_bus import EventBus
    from src.infra.redis_client import RedisClient


class TrackingService:
    """
    Сессии отслеживания водителей.

    Хранилище, геосервис и блокировки сверки общие для всех сессий;
    источники координат, разрешения и поток доступности у каждой сессии свои.
    """

    def __init__(
        self,
        settings: "Settings",
        *,
        redis_client: "RedisClient",
        db: "DatabaseManager | None" = None,
        event_bus: "EventBus | None" = None,
        geo_service: GeoService | None = None,
        store: RecordStore | None = None,
    ) -> None:
        self._settings = settings
        self._tracking = settings.tracking
        self._redis = redis_client
        self._event_bus = event_bus
        self._geo = geo_service
        self._db = db if self._tracking.STORE_BACKEND == StoreBackend.POSTGRES else None
        self._store = store or self._build_store(db)
        self._stream = RedisPositionStream(redis_client)
        self._locks = DriverLocks()
        self._sessions: dict[str, TrackingController] = {}
        self._feeds: dict[str, InMemoryAvailabilityFeed] = {}

    def _build_store(self, db: "DatabaseManager | None") -> RecordStore:
        if self._tracking.STORE_BACKEND == StoreBackend.POSTGREST:
            supabase = self._settings.supabase
            return PostgrestLocationStore(
                supabase.SUPABASE_URL,
                supabase.api_key,
                table=supabase.LOCATIONS_TABLE,
                timeout=self._tracking.STORE_CALL_TIMEOUT,
            )
        if db is None:
            raise RuntimeError("Для хранилища postgres нужен DatabaseManager")
        return PostgresLocationStore(db, table=self._settings.supabase.LOCATIONS_TABLE)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def sessions(self) -> dict[str, TrackingController]:
        return dict(self._sessions)

    def get(self, driver_id: str) -> Optional[TrackingController]:
        return self._sessions.get(driver_id)

    async def store_health_check(self) -> Optional[bool]:
        """Здоровье пула PostgreSQL; None, если записи хранятся не в postgres."""
        if self._db is None:
            return None
        return await self._db.health_check()

    # =========================================================================
    # СЕССИИ
    # =========================================================================

    def _build_controller(self, driver_id: str) -> tuple[TrackingController, InMemoryAvailabilityFeed]:
        tracking = self._tracking
        web = tracking.PLATFORM == Platform.WEB

        web_geolocation = None
        if self._geo is not None and self._geo.is_configured:
            web_geolocation = WebGeolocationSource(self._geo)

        if web:
            geolocation = web_geolocation
            permission_source = StaticPermissionSource()
        else:
            geolocation = DeviceGeolocationSource(
                self._redis,
                driver_id,
                max_fix_age=tracking.FIX_MAX_AGE_SECONDS,
                poll_interval=tracking.FIX_POLL_INTERVAL,
            )
            permission_source = RedisConsentPermissionSource(
                self._redis,
                driver_id,
                event_bus=self._event_bus,
                prompt_timeout=tracking.PERMISSION_PROMPT_TIMEOUT,
                poll_interval=tracking.FIX_POLL_INTERVAL,
            )

        if self._event_bus is not None:
            feed: InMemoryAvailabilityFeed = EventBusAvailabilityFeed(self._event_bus, driver_id)
        else:
            feed = InMemoryAvailabilityFeed()

        reconciler = RecordReconciler.from_settings(self._store, geolocation, tracking, locks=self._locks)
        controller = TrackingController(
            feed,
            reconciler,
            PermissionGate(permission_source, platform=tracking.PLATFORM),
            self._stream,
            geo_service=self._geo,
            web_geolocation=web_geolocation,
            event_bus=self._event_bus,
            location_update_interval=tracking.LOCATION_UPDATE_INTERVAL,
            resolve_address=tracking.RESOLVE_ADDRESS,
            request_permission_on_start=tracking.REQUEST_PERMISSION_ON_START,
        )
        return controller, feed

    async def open_session(self, driver_id: str) -> TrackingController:
        """Создаёт и запускает контроллер водителя (повторный вызов возвращает существующий)."""
        existing = self._sessions.get(driver_id)
        if existing is not None:
            return existing

        controller, feed = self._build_controller(driver_id)
        self._sessions[driver_id] = controller
        self._feeds[driver_id] = feed

        if isinstance(feed, EventBusAvailabilityFeed):
            await feed.connect()
        await controller.start()

        await log_info(f"Сессия отслеживания водителя {driver_id} открыта", type_msg=TypeMsg.INFO)
        return controller

    async def close_session(self, driver_id: str) -> bool:
        controller = self._sessions.pop(driver_id, None)
        feed = self._feeds.pop(driver_id, None)
        if controller is None:
            return False

        controller.dispose()
        if isinstance(feed, EventBusAvailabilityFeed):
            feed.close()
        self._locks.discard(driver_id)

        await log_info(f"Сессия отслеживания водителя {driver_id} закрыта", type_msg=TypeMsg.INFO)
        return True

    async def push_availability(self, availability: DriverAvailability, driver_id: str) -> bool:
        """Передаёт значение доступности в поток сессии (ручной режим и тесты)."""
        feed = self._feeds.get(driver_id)
        if feed is None:
            await log_warning(f"Нет сессии отслеживания водителя {driver_id}")
            return False
        await feed.push(availability)
        return True

    async def close_all(self) -> None:
        for driver_id in list(self._sessions):
            await self.close_session(driver_id)
        if isinstance(self._store, PostgrestLocationStore):
            await self._store.close()
