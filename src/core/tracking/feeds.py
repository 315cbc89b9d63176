# src/core/tracking/feeds.py
"""
Потоки доступности водителя и координат.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import ValidationError

from src.common.constants import DriverStatus, TypeMsg
from src.common.logger import get_logger, log_error, log_info, log_warning
from src.core.tracking.interfaces import AvailabilityHandler, PositionHandler
from src.core.tracking.models import Coordinate, DriverAvailability

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

    from src.infra.event_bus import DomainEvent, EventBus
    from src.infra.redis_client import RedisClient


logger = get_logger("tracking.feeds")

LOCATION_CHANNEL = "location:driver:{driver_id}"


# =============================================================================
# ДОСТУПНОСТЬ
# =============================================================================

class InMemoryAvailabilityFeed:
    """Поток доступности, значения в который кладёт вызывающий код."""

    def __init__(self, initial: Optional[DriverAvailability] = None) -> None:
        self._latest = initial
        self._handler: Optional[AvailabilityHandler] = None

    @property
    def latest(self) -> Optional[DriverAvailability]:
        return self._latest

    def subscribe(self, handler: AvailabilityHandler) -> Callable[[], None]:
        if self._handler is not None:
            raise RuntimeError("У потока доступности уже есть подписчик")
        self._handler = handler

        def unsubscribe() -> None:
            if self._handler is handler:
                self._handler = None

        return unsubscribe

    async def push(self, availability: DriverAvailability) -> None:
        """Публикует новое значение и дожидается его обработки."""
        self._latest = availability
        if self._handler is not None:
            await self._handler(availability)


class EventBusAvailabilityFeed(InMemoryAvailabilityFeed):
    """
    Поток доступности из событий водителя в RabbitMQ.

    driver.online/offline/busy задают статус, driver.status_changed берёт
    статус из payload, driver.logged_out означает, что водителя больше нет.
    """

    def __init__(self, event_bus: "EventBus", driver_id: str) -> None:
        super().__init__()
        self._event_bus = event_bus
        self._driver_id = driver_id
        self._connected = False

    def _event_map(self) -> dict[str, Optional[DriverStatus]]:
        from src.infra.event_bus import EventTypes

        return {
            EventTypes.DRIVER_ONLINE: DriverStatus.ONLINE,
            EventTypes.DRIVER_OFFLINE: DriverStatus.OFFLINE,
            EventTypes.DRIVER_BUSY: DriverStatus.BUSY,
            EventTypes.DRIVER_STATUS_CHANGED: None,
            EventTypes.DRIVER_LOGGED_OUT: None,
        }

    async def connect(self) -> None:
        """Подписывается на события статуса водителя."""
        if self._connected:
            return
        for event_type in self._event_map():
            await self._event_bus.subscribe(event_type, self._on_event)
        self._connected = True

    def close(self) -> None:
        """Снимает обработчики с шины."""
        if not self._connected:
            return
        for event_type in self._event_map():
            self._event_bus.unsubscribe(event_type, self._on_event)
        self._connected = False

    def to_availability(self, event: "DomainEvent") -> Optional[DriverAvailability]:
        """Переводит событие в значение доступности; чужие и непонятные события дают None."""
        from src.infra.event_bus import EventTypes

        payload = event.payload or {}
        if str(payload.get("driver_id", payload.get("user_id", ""))) != self._driver_id:
            return None

        if event.event_type == EventTypes.DRIVER_LOGGED_OUT:
            return DriverAvailability(driver_id=None, status=DriverStatus.UNKNOWN)

        if event.event_type == EventTypes.DRIVER_STATUS_CHANGED:
            try:
                status = DriverStatus(payload.get("status"))
            except ValueError:
                return None
        else:
            status = self._event_map().get(event.event_type)
            if status is None:
                return None

        return DriverAvailability(driver_id=self._driver_id, status=status)

    async def _on_event(self, event: "DomainEvent") -> None:
        availability = self.to_availability(event)
        if availability is None:
            return
        await log_info(
            f"Доступность водителя {self._driver_id}: {availability.status.value}",
            type_msg=TypeMsg.DEBUG,
        )
        await self.push(availability)


# =============================================================================
# ПОТОК КООРДИНАТ
# =============================================================================

def parse_position(raw: Any) -> Optional[Coordinate]:
    """Разбирает сообщение канала location:driver:<id>. Некорректное сообщение даёт None."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        lat = data.get("lat", data.get("latitude"))
        lon = data.get("lon", data.get("lng", data.get("longitude")))
        fields: dict[str, Any] = {
            "latitude": lat,
            "longitude": lon,
            "accuracy": data.get("accuracy"),
            "heading": data.get("heading"),
            "speed": data.get("speed"),
        }
        if data.get("timestamp"):
            fields["timestamp"] = datetime.fromisoformat(str(data["timestamp"]).replace("Z", "+00:00"))
        return Coordinate(**fields)
    except (ValidationError, ValueError):
        return None


class RedisTrackingSession:
    """Подписка на канал координат одного водителя."""

    def __init__(self, pubsub: "PubSub", channel: str, handler: PositionHandler) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._handler = handler
        self._task: Optional[asyncio.Task] = None
        self._removed = False

    @property
    def active(self) -> bool:
        return not self._removed and self._task is not None and not self._task.done()

    async def open(self) -> None:
        await self._pubsub.subscribe(self._channel)
        self._task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        try:
            while not self._removed:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue

                coordinate = parse_position(message.get("data"))
                if coordinate is None:
                    await log_warning(f"Некорректное сообщение в {self._channel}: {message.get('data')!r}")
                    continue

                if self._removed:
                    break
                try:
                    await self._handler(coordinate)
                except Exception as e:
                    await log_error(f"Ошибка обработки координаты из {self._channel}: {e}")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            await log_error(f"Поток координат {self._channel} прерван: {e}")
        finally:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning(f"Ошибка закрытия подписки {self._channel}: {e}")

    def remove(self) -> None:
        """Отписывается: после вызова обработчик больше не вызывается."""
        if self._removed:
            return
        self._removed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class RedisPositionStream:
    """Поток координат из Redis Pub/Sub, куда пишет сервис приёма геолокации."""

    def __init__(self, redis_client: "RedisClient") -> None:
        self._redis = redis_client

    async def watch(self, driver_id: str, on_position: PositionHandler) -> RedisTrackingSession:
        channel = LOCATION_CHANNEL.format(driver_id=driver_id)
        session = RedisTrackingSession(self._redis.pubsub(), channel, on_position)
        await session.open()
        await log_info(f"Подписка на координаты: {channel}", type_msg=TypeMsg.DEBUG)
        return session
