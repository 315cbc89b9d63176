# src/core/tracking/controller.py
"""
Контроллер жизненного цикла отслеживания водителя.

Состояния: idle -> awaiting_record -> tracking.
Переходы запускаются изменениями доступности водителя: активный водитель
получает сверку записи о местоположении и затем одну подписку на поток
координат; offline или отсутствие водителя снимают подписку.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, Optional

from src.common.constants import Accuracy, DriverStatus, PermissionState, TrackingState, TypeMsg
from src.common.logger import get_logger, log_error, log_info, log_warning
from src.core.tracking.interfaces import (
    AvailabilityFeed,
    GeolocationSource,
    PositionStream,
    TrackingSession,
)
from src.core.tracking.models import Coordinate, DriverAvailability, ReconcileResult, TrackingSnapshot
from src.core.tracking.permission import PermissionGate
from src.core.tracking.reconciler import RecordReconciler
from src.infra.event_bus import DomainEvent, EventTypes

if TYPE_CHECKING:
    from src.core.geo import GeoService
    from src.infra.event_bus import EventBus


logger = get_logger("tracking")

StateListener = Callable[[TrackingSnapshot], None]


class TrackingController:
    """
    Контроллер отслеживания для одной сессии водителя.

    Единственный подписчик потока доступности и единственный владелец
    TrackingSession. Не рассчитан на конкурентные вызовы: операции
    выполняются в одном event loop.
    """

    def __init__(
        self,
        feed: AvailabilityFeed,
        reconciler: RecordReconciler,
        permission_gate: PermissionGate,
        position_stream: PositionStream,
        *,
        geo_service: "GeoService | None" = None,
        web_geolocation: GeolocationSource | None = None,
        event_bus: "EventBus | None" = None,
        location_update_interval: float = 10.0,
        resolve_address: bool = True,
        request_permission_on_start: bool = False,
    ) -> None:
        self._feed = feed
        self._reconciler = reconciler
        self._permission = permission_gate
        self._stream = position_stream
        self._geo = geo_service
        self._web_geolocation = web_geolocation
        self._event_bus = event_bus
        self._location_update_interval = location_update_interval
        self._resolve_address = resolve_address
        self._request_permission_on_start = request_permission_on_start

        self._state = TrackingState.IDLE
        self._driver_id: Optional[str] = None
        self._session: Optional[TrackingSession] = None
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: list[StateListener] = []
        self._background: set[asyncio.Task] = set()
        self._last_persisted_at: Optional[float] = None

        self.current_location: Optional[Coordinate] = None
        self.current_address: Optional[str] = None
        self.last_reconcile: Optional[ReconcileResult] = None

    # =========================================================================
    # НАБЛЮДАЕМОЕ СОСТОЯНИЕ
    # =========================================================================

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def driver_id(self) -> Optional[str]:
        return self._driver_id

    @property
    def is_tracking(self) -> bool:
        return self._session is not None

    @property
    def permission(self) -> PermissionState:
        return self._permission.state

    def snapshot(self) -> TrackingSnapshot:
        return TrackingSnapshot(
            driver_id=self._driver_id,
            state=self._state,
            is_tracking=self.is_tracking,
            permission=self.permission,
            current_location=self.current_location,
            current_address=self.current_address,
        )

    def add_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Ошибка в слушателе состояния отслеживания: {e}")

    def _set_state(self, state: TrackingState) -> None:
        if self._state == state:
            return
        logger.debug(f"Отслеживание {self._driver_id}: {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self) -> None:
        """Подписывается на поток доступности и проверяет разрешение."""
        if self._unsubscribe is not None:
            return

        self._unsubscribe = self._feed.subscribe(self.handle_availability)
        await log_info("Инициализация сервиса отслеживания", type_msg=TypeMsg.DEBUG)

        if self._request_permission_on_start:
            await self._permission.ensure()
        else:
            await self._permission.check()

        latest = self._feed.latest
        if latest is not None:
            await self.handle_availability(latest)

    def dispose(self) -> None:
        """Отписывается от потока доступности и останавливает отслеживание."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.stop_location_tracking()
        self._listeners.clear()

    async def handle_availability(self, availability: DriverAvailability) -> None:
        """Обработчик потока доступности. Исключения наружу не выходят."""
        try:
            await self._handle_availability(availability)
        except Exception as e:
            await log_error(f"Ошибка обработки доступности водителя {availability.driver_id}: {e}", exc_info=True)

    async def _handle_availability(self, availability: DriverAvailability) -> None:
        if availability.is_inactive:
            await log_info(
                f"Водитель {availability.driver_id or '-'} неактивен, отслеживание остановлено",
                type_msg=TypeMsg.DEBUG,
            )
            self.stop_location_tracking()
            self._driver_id = availability.driver_id
            self._notify()
            return

        if availability.status == DriverStatus.UNKNOWN:
            return

        if availability.driver_id == self._driver_id and self._state != TrackingState.IDLE:
            return

        if self._driver_id is not None and availability.driver_id != self._driver_id:
            self.stop_location_tracking()

        self._driver_id = availability.driver_id
        await log_info(
            f"Водитель {self._driver_id} активен ({availability.status.value}), проверяем запись о местоположении",
            type_msg=TypeMsg.INFO,
        )
        await self._activate()

    async def _activate(self) -> bool:
        driver_id = self._driver_id
        if driver_id is None:
            return False

        self._generation += 1
        generation = self._generation
        self._set_state(TrackingState.AWAITING_RECORD)

        result = await self._reconciler.reconcile(driver_id)
        self.last_reconcile = result

        if generation != self._generation:
            await log_info(
                f"Сверка водителя {driver_id} завершилась после смены состояния, подписка не открывается",
                type_msg=TypeMsg.DEBUG,
            )
            return False

        if not result.success:
            await log_error(f"Запись о местоположении водителя {driver_id} не создана, отслеживание не запущено")
            self._set_state(TrackingState.IDLE)
            return False

        return await self._open_session(generation)

    # =========================================================================
    # ОПЕРАЦИИ
    # =========================================================================

    async def request_location_permission(self) -> bool:
        """Запрашивает разрешение на геолокацию."""
        granted = await self._permission.request()
        self._notify()
        return granted

    async def force_create_location_record(self) -> bool:
        """Сверка записи текущего водителя без запуска отслеживания."""
        if self._driver_id is None:
            await log_warning("Нет водителя для создания записи о местоположении")
            return False

        result = await self._reconciler.reconcile(self._driver_id)
        self.last_reconcile = result
        return result.success

    async def start_location_tracking(self) -> bool:
        """
        Открывает подписку на поток координат текущего водителя.

        Returns:
            True если подписка открыта (или уже была открыта)
        """
        if self._driver_id is None:
            await log_warning("Нет водителя для запуска отслеживания")
            return False

        if self._session is not None:
            return True

        self._generation += 1
        return await self._open_session(self._generation)

    async def _open_session(self, generation: int) -> bool:
        driver_id = self._driver_id
        if driver_id is None:
            return False

        if not self._permission.is_granted and not await self._permission.request():
            await log_warning(f"Нет разрешения на геолокацию, отслеживание водителя {driver_id} не запущено")
            if generation == self._generation:
                self._set_state(TrackingState.IDLE)
            return False

        if generation != self._generation:
            return False

        try:
            session = await self._stream.watch(driver_id, self._on_position)
        except Exception as e:
            await log_error(f"Не удалось подписаться на координаты водителя {driver_id}: {e}")
            if generation == self._generation:
                self._set_state(TrackingState.IDLE)
            return False

        # Пока открывалась подписка, водитель мог уйти offline
        if generation != self._generation or self._session is not None:
            session.remove()
            return self._session is not None

        self._session = session
        self._last_persisted_at = None
        self._set_state(TrackingState.TRACKING)
        await log_info(f"Отслеживание водителя {driver_id} запущено", type_msg=TypeMsg.INFO)
        self._publish(EventTypes.TRACKING_STARTED, driver_id)
        return True

    def stop_location_tracking(self) -> None:
        """Снимает подписку немедленно. Незавершённая сверка не отменяется."""
        self._generation += 1
        session, self._session = self._session, None

        if session is not None:
            session.remove()
            logger.info(f"Отслеживание водителя {self._driver_id} остановлено")
            self._publish(EventTypes.TRACKING_STOPPED, self._driver_id)
        else:
            logger.debug("Нет активной подписки для остановки")

        self._set_state(TrackingState.IDLE)

    async def update_location_with_google_maps(self) -> Optional[Coordinate]:
        """Разовое обновление координаты через Google Geolocation API."""
        if self._driver_id is None:
            await log_warning("Нет водителя для обновления местоположения")
            return None
        if self._web_geolocation is None:
            await log_warning("Google Maps геолокация не настроена")
            return None

        try:
            coordinate = await self._web_geolocation.get_current_position(Accuracy.BALANCED, 10000)
        except Exception as e:
            await log_error(f"Ошибка обновления местоположения через Google Maps: {e}")
            return None

        self.current_location = coordinate
        await self._reconciler.record_position(self._driver_id, coordinate)
        await self._update_address(coordinate)
        self._notify()
        return coordinate

    # =========================================================================
    # ПОТОК КООРДИНАТ
    # =========================================================================

    async def _on_position(self, coordinate: Coordinate) -> None:
        driver_id = self._driver_id
        if self._session is None or driver_id is None:
            return

        self.current_location = coordinate

        now = asyncio.get_running_loop().time()
        due = (
            self._last_persisted_at is None
            or now - self._last_persisted_at >= self._location_update_interval
        )
        if due:
            self._last_persisted_at = now
            await self._reconciler.record_position(driver_id, coordinate)
            await self._update_address(coordinate)

        self._notify()

    async def _update_address(self, coordinate: Coordinate) -> None:
        if not self._resolve_address or self._geo is None or not self._geo.is_configured:
            return
        address = await self._geo.reverse_geocode(coordinate.latitude, coordinate.longitude)
        if address:
            self.current_address = address

    def _publish(self, event_type: str, driver_id: Optional[str]) -> None:
        if self._event_bus is None or driver_id is None:
            return

        event = DomainEvent(event_type=event_type, payload={"driver_id": driver_id})
        try:
            task = asyncio.get_running_loop().create_task(self._event_bus.publish(event))
        except RuntimeError:
            logger.warning(f"Нет event loop, событие {event_type} не опубликовано")
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)
