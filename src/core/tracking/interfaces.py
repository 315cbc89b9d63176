# src/core/tracking/interfaces.py
"""
Контракты внешних зависимостей контроллера отслеживания.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from src.common.constants import Accuracy, PermissionStatus
from src.core.tracking.models import Coordinate, DriverAvailability, LocationRecord


PositionHandler = Callable[[Coordinate], Awaitable[None]]
AvailabilityHandler = Callable[[DriverAvailability], Awaitable[None]]


class RecordStore(Protocol):
    """Таблица записей о местоположении с уникальным driver_id."""

    async def find(self, driver_id: str) -> Optional[LocationRecord]:
        """Точечный поиск. Raises: TransportFailure."""
        ...

    async def upsert(self, record: LocationRecord) -> LocationRecord:
        """Вставка или обновление по driver_id. Raises: ConstraintViolation, TransportFailure."""
        ...

    async def update(self, driver_id: str, fields: dict[str, Any]) -> LocationRecord:
        """Частичное обновление. Raises: RecordNotFound, TransportFailure."""
        ...


class GeolocationSource(Protocol):
    """Источник текущей координаты."""

    async def get_current_position(self, accuracy: Accuracy, timeout_ms: int) -> Coordinate:
        """Raises: AcquisitionTimeout, AcquisitionError, PermissionDenied."""
        ...


class PermissionSource(Protocol):
    """Источник разрешения на геолокацию."""

    async def get_status(self) -> PermissionStatus:
        ...

    async def request_access(self) -> PermissionStatus:
        ...


class TrackingSession(Protocol):
    """Живая подписка на поток координат."""

    @property
    def active(self) -> bool:
        ...

    def remove(self) -> None:
        """Отписывается немедленно."""
        ...


class PositionStream(Protocol):
    """Непрерывный поток координат водителя."""

    async def watch(self, driver_id: str, on_position: PositionHandler) -> TrackingSession:
        ...


class AvailabilityFeed(Protocol):
    """Поток доступности водителя с единственным подписчиком."""

    @property
    def latest(self) -> Optional[DriverAvailability]:
        ...

    def subscribe(self, handler: AvailabilityHandler) -> Callable[[], None]:
        """Возвращает функцию отписки."""
        ...
