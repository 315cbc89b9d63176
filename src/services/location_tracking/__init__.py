# src/services/location_tracking/__init__.py
"""
Location Tracking Service.

Функционал:
- Сессия отслеживания на водителя (TrackingController)
- Сверка записи о местоположении при выходе на линию
- Подписка на поток координат из сервиса приёма геолокации
"""

from src.services.location_tracking.service import TrackingService

__all__ = ["TrackingService"]
