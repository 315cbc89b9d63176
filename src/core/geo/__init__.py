# src/core/geo/__init__.py
"""
Geo-сервис.
Работа с Google Maps API: геолокация и обратное геокодирование.
"""

from src.core.geo.service import GeoService, Location

__all__ = [
    "GeoService",
    "Location",
]
