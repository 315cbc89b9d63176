# src/core/__init__.py
"""
Доменный слой (Core Domain).
Логика отслеживания, независимая от способа запуска сервиса.
"""

from src.core.geo import GeoService
from src.core.tracking import RecordReconciler, TrackingController

__all__ = [
    "GeoService",
    "RecordReconciler",
    "TrackingController",
]
