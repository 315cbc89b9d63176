# src/core/geo/service.py
"""
Geo-сервис для работы с Google Maps API.
Определение местоположения без GPS (Geolocation API) и обратное геокодирование.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info


@dataclass
class Location:
    """Геолокация."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: str = ""


class GeoService:
    """
    Сервис для работы с геоданными через Google Maps API.

    Реализует:
    - Определение местоположения по IP/сетям (веб-платформа)
    - Обратное геокодирование (координаты -> адрес)
    """

    GEOLOCATION_URL = "https://www.googleapis.com/geolocation/v1/geolocate"
    GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(
        self,
        api_key: str | None = None,
        language: str = "ru",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            api_key: API ключ Google Maps (берётся из конфига если None)
            language: Язык для ответов
            client: HTTP клиент (для тестов)
        """
        if api_key is None:
            from src.config import settings
            api_key = settings.google_maps.GOOGLE_MAPS_API_KEY
            language = settings.google_maps.GEOCODING_LANGUAGE

        self._api_key = api_key
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def geolocate(self, payload: dict[str, Any] | None = None) -> Location:
        """
        Определяет местоположение через Geolocation API.

        В отличие от остальных методов ошибки пробрасываются: вызывающий код
        сам решает, чем заменить неудачный результат.

        Args:
            payload: Тело запроса (вышки, точки Wi-Fi); по умолчанию только IP

        Returns:
            Локация с точностью в метрах

        Raises:
            RuntimeError: ключ не настроен или ответ без координат
            httpx.HTTPError: сетевая ошибка или ошибка API
        """
        if not self._api_key:
            raise RuntimeError("Google Maps API key не настроен")

        response = await self._client.post(
            self.GEOLOCATION_URL,
            params={"key": self._api_key},
            json=payload or {"considerIp": True},
        )
        response.raise_for_status()
        data = response.json()

        location = data.get("location")
        if not location:
            raise RuntimeError(f"Geolocation API не вернул координаты: {data}")

        return Location(
            latitude=location["lat"],
            longitude=location["lng"],
            accuracy=data.get("accuracy"),
        )

    async def reverse_geocode(
        self,
        latitude: float,
        longitude: float,
    ) -> Optional[str]:
        """
        Обратное геокодирование: координаты -> адрес.

        Args:
            latitude: Широта
            longitude: Долгота

        Returns:
            Адрес или None
        """
        if not self._api_key:
            await log_error("Google Maps API key не настроен")
            return None

        try:
            response = await self._client.get(
                self.GEOCODING_URL,
                params={
                    "latlng": f"{latitude},{longitude}",
                    "key": self._api_key,
                    "language": self._language,
                },
            )

            data = response.json()

            if data.get("status") != "OK" or not data.get("results"):
                await log_info(
                    f"Адрес не найден для ({latitude}, {longitude}): {data.get('status')}",
                    type_msg=TypeMsg.DEBUG,
                )
                return None

            return data["results"][0].get("formatted_address")
        except Exception as e:
            await log_error(f"Ошибка обратного геокодирования: {e}")
            return None
