# tests/core/test_geo_service.py
"""
Тесты для Geo-сервиса.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from src.core.geo.service import GeoService, Location


def make_service(handler: Any, api_key: str = "test_api_key") -> GeoService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeoService(api_key=api_key, language="uk", client=client)


class TestLocation:
    """Тесты для dataclass Location."""

    def test_location_defaults(self) -> None:
        loc = Location(latitude=50.45, longitude=30.52)

        assert loc.address == ""
        assert loc.accuracy is None


class TestGeolocate:
    """Тесты для geolocate()."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Ответ Geolocation API переводится в Location."""
        # Arrange
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"location": {"lat": 50.4501, "lng": 30.5234}, "accuracy": 1500.0})

        # Act
        location = await make_service(handler).geolocate()

        # Assert
        assert location.latitude == 50.4501
        assert location.longitude == 30.5234
        assert location.accuracy == 1500.0
        assert requests[0].method == "POST"
        assert requests[0].url.params["key"] == "test_api_key"
        assert json.loads(requests[0].content) == {"considerIp": True}

    @pytest.mark.asyncio
    async def test_no_api_key(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json={}), api_key="")

        assert service.is_configured is False
        with pytest.raises(RuntimeError, match="не настроен"):
            await service.geolocate()

    @pytest.mark.asyncio
    async def test_http_error_raised(self) -> None:
        """Ошибки API пробрасываются вызывающему коду."""
        service = make_service(lambda request: httpx.Response(403, json={"error": {"code": 403}}))

        with pytest.raises(httpx.HTTPStatusError):
            await service.geolocate()

    @pytest.mark.asyncio
    async def test_response_without_location(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json={"accuracy": 10}))

        with pytest.raises(RuntimeError, match="не вернул координаты"):
            await service.geolocate()


class TestReverseGeocode:
    """Тесты для reverse_geocode()."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Возвращается первый formatted_address."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "status": "OK",
                "results": [
                    {"formatted_address": "вулиця Хрещатик, 1, Київ"},
                    {"formatted_address": "Київ"},
                ],
            })

        address = await make_service(handler).reverse_geocode(50.4501, 30.5234)

        assert address == "вулиця Хрещатик, 1, Київ"
        assert requests[0].url.params["latlng"] == "50.4501,30.5234"
        assert requests[0].url.params["language"] == "uk"

    @pytest.mark.asyncio
    async def test_zero_results(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))

        assert await service.reverse_geocode(0.0, 0.0) is None

    @pytest.mark.asyncio
    async def test_network_error_returns_none(self) -> None:
        """Сетевая ошибка не пробрасывается."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        assert await make_service(handler).reverse_geocode(50.45, 30.52) is None

    @pytest.mark.asyncio
    async def test_no_api_key(self) -> None:
        service = make_service(lambda request: httpx.Response(200, json={}), api_key="")

        assert await service.reverse_geocode(50.45, 30.52) is None
