# src/core/tracking/exceptions.py
"""
Ошибки отслеживания и сверки записи о местоположении.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Базовая ошибка домена отслеживания."""


class PermissionDenied(TrackingError):
    """Нет разрешения на геолокацию."""


class AcquisitionError(TrackingError):
    """Не удалось получить координату."""


class AcquisitionTimeout(AcquisitionError):
    """Координата не получена за отведённое время."""


class StoreError(TrackingError):
    """Ошибка хранилища записей."""


class ConstraintViolation(StoreError):
    """Нарушено ограничение уникальности (гонка двух записей)."""


class TransportFailure(StoreError):
    """Хранилище недоступно или не ответило вовремя."""


class RecordNotFound(StoreError):
    """Обновлять нечего: записи водителя нет."""


class VerificationMismatch(TrackingError):
    """После записи запись не читается обратно."""
