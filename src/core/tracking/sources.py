# src/core/tracking/sources.py
"""
Источники координат и разрешения на геолокацию.

Нативная платформа: последние фиксы устройства приходят через сервис приёма
геолокации и лежат в Redis (driver:last_seen:<id>), согласие водителя хранится
под ключом permission:location:<id>.
Веб-платформа: Google Geolocation API.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import httpx

from src.common.constants import Accuracy, PermissionStatus, TypeMsg
from src.common.logger import log_info, log_warning
from src.core.tracking.exceptions import AcquisitionError, AcquisitionTimeout, PermissionDenied
from src.core.tracking.models import Coordinate, utc_now

if TYPE_CHECKING:
    from src.core.geo import GeoService
    from src.infra.event_bus import EventBus
    from src.infra.redis_client import RedisClient


# Допустимая погрешность фикса для каждого уровня точности (метры)
ACCURACY_THRESHOLDS: dict[Accuracy, Optional[float]] = {
    Accuracy.HIGH: 50.0,
    Accuracy.BALANCED: 200.0,
    Accuracy.LOW: None,
}

LAST_SEEN_KEY = "driver:last_seen:{driver_id}"
PERMISSION_KEY = "permission:location:{driver_id}"


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# ГЕОЛОКАЦИЯ
# =============================================================================

class DeviceGeolocationSource:
    """
    Координата с устройства водителя.

    Опрашивает хеш driver:last_seen:<id> до появления свежего фикса нужной
    точности. Если точного фикса нет, к концу таймаута возвращается лучший
    из свежих; если свежих нет совсем, AcquisitionTimeout.
    """

    def __init__(
        self,
        redis_client: "RedisClient",
        driver_id: str,
        max_fix_age: float = 60.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._redis = redis_client
        self._driver_id = driver_id
        self._max_fix_age = max_fix_age
        self._poll_interval = poll_interval

    async def _read_fix(self) -> Optional[Coordinate]:
        data = await self._redis.hgetall(LAST_SEEN_KEY.format(driver_id=self._driver_id), raw=True)
        if not data:
            return None

        lat = _parse_float(data.get("lat"))
        lon = _parse_float(data.get("lon", data.get("lng")))
        timestamp = _parse_timestamp(data.get("timestamp"))
        if lat is None or lon is None or timestamp is None:
            return None

        if (utc_now() - timestamp).total_seconds() > self._max_fix_age:
            return None

        try:
            return Coordinate(
                latitude=lat,
                longitude=lon,
                accuracy=_parse_float(data.get("accuracy")),
                heading=_parse_float(data.get("heading")),
                speed=_parse_float(data.get("speed")),
                timestamp=timestamp,
            )
        except ValueError:
            return None

    async def get_current_position(self, accuracy: Accuracy, timeout_ms: int) -> Coordinate:
        threshold = ACCURACY_THRESHOLDS.get(accuracy)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        candidate: Optional[Coordinate] = None

        while True:
            fix = await self._read_fix()
            if fix is not None:
                if threshold is None or (fix.accuracy is not None and fix.accuracy <= threshold):
                    return fix
                if candidate is None or (fix.accuracy or float("inf")) < (candidate.accuracy or float("inf")):
                    candidate = fix

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval, remaining))

        if candidate is not None:
            await log_info(
                f"Точный фикс водителя {self._driver_id} не получен, используем {candidate.accuracy} м",
                type_msg=TypeMsg.DEBUG,
            )
            return candidate

        raise AcquisitionTimeout(f"нет свежего фикса устройства за {timeout_ms} мс")


class WebGeolocationSource:
    """Координата через Google Geolocation API (по IP и сетям)."""

    def __init__(self, geo_service: "GeoService") -> None:
        self._geo = geo_service

    async def get_current_position(self, accuracy: Accuracy, timeout_ms: int) -> Coordinate:
        try:
            location = await asyncio.wait_for(self._geo.geolocate(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise AcquisitionTimeout(f"Geolocation API не ответил за {timeout_ms} мс") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 403:
                raise PermissionDenied("Geolocation API отклонил запрос") from e
            raise AcquisitionError(f"Geolocation API: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, RuntimeError) as e:
            raise AcquisitionError(str(e)) from e

        return Coordinate(
            latitude=location.latitude,
            longitude=location.longitude,
            accuracy=location.accuracy,
        )


# =============================================================================
# РАЗРЕШЕНИЕ
# =============================================================================

class StaticPermissionSource:
    """Разрешение, выданное заранее (веб и сервисные аккаунты)."""

    def __init__(self, status: PermissionStatus = PermissionStatus.GRANTED) -> None:
        self._status = status

    async def get_status(self) -> PermissionStatus:
        return self._status

    async def request_access(self) -> PermissionStatus:
        return self._status


class RedisConsentPermissionSource:
    """
    Согласие водителя на геолокацию.

    Значение ключа permission:location:<id> выставляет клиент водителя:
    "granted" или "denied". Запрос отправляет уведомление через шину
    событий и ждёт ответа не дольше prompt_timeout секунд.
    """

    def __init__(
        self,
        redis_client: "RedisClient",
        driver_id: str,
        event_bus: "EventBus | None" = None,
        prompt_timeout: float = 30.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._redis = redis_client
        self._driver_id = driver_id
        self._event_bus = event_bus
        self._prompt_timeout = prompt_timeout
        self._poll_interval = poll_interval

    @property
    def key(self) -> str:
        return PERMISSION_KEY.format(driver_id=self._driver_id)

    async def get_status(self) -> PermissionStatus:
        value = await self._redis.get(self.key)
        if value == PermissionStatus.GRANTED.value:
            return PermissionStatus.GRANTED
        if value == PermissionStatus.DENIED.value:
            return PermissionStatus.DENIED
        return PermissionStatus.UNDETERMINED

    async def request_access(self) -> PermissionStatus:
        if await self.get_status() == PermissionStatus.GRANTED:
            return PermissionStatus.GRANTED

        # Старый отказ не должен засчитаться как ответ на новый запрос
        await self._redis.delete(self.key)

        if self._event_bus is not None:
            from src.infra.event_bus import DomainEvent, EventTypes

            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.NOTIFICATION_SEND,
                payload={
                    "user_id": self._driver_id,
                    "kind": "location_permission_request",
                },
            ))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._prompt_timeout
        while loop.time() < deadline:
            status = await self.get_status()
            if status != PermissionStatus.UNDETERMINED:
                return status
            await asyncio.sleep(self._poll_interval)

        # Без ответа считаем отказом и сохраняем его до следующего запроса
        await log_warning(f"Водитель {self._driver_id} не ответил на запрос геолокации")
        await self._redis.set(self.key, PermissionStatus.DENIED.value)
        return PermissionStatus.DENIED
