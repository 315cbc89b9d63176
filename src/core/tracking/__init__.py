# src/core/tracking/__init__.py
"""
Отслеживание местоположения водителя.

Содержит:
- Сверку записи о местоположении (RecordReconciler)
- Контроллер жизненного цикла отслеживания (TrackingController)
- Разрешение на геолокацию (PermissionGate)
- Адаптеры хранилищ, источников координат и потоков
"""

from src.core.tracking.controller import TrackingController
from src.core.tracking.exceptions import (
    AcquisitionError,
    AcquisitionTimeout,
    ConstraintViolation,
    PermissionDenied,
    RecordNotFound,
    StoreError,
    TrackingError,
    TransportFailure,
    VerificationMismatch,
)
from src.core.tracking.feeds import (
    EventBusAvailabilityFeed,
    InMemoryAvailabilityFeed,
    RedisPositionStream,
    RedisTrackingSession,
)
from src.core.tracking.models import (
    Coordinate,
    CoordinateSource,
    DriverAvailability,
    LocationRecord,
    ReconcileOutcome,
    ReconcileResult,
    TrackingSnapshot,
    WritePath,
)
from src.core.tracking.permission import PermissionGate
from src.core.tracking.postgrest import PostgrestLocationStore
from src.core.tracking.reconciler import DriverLocks, RecordReconciler
from src.core.tracking.repository import PostgresLocationStore
from src.core.tracking.sources import (
    DeviceGeolocationSource,
    RedisConsentPermissionSource,
    StaticPermissionSource,
    WebGeolocationSource,
)

__all__ = [
    "TrackingController",
    "RecordReconciler",
    "DriverLocks",
    "PermissionGate",
    # Модели
    "Coordinate",
    "CoordinateSource",
    "DriverAvailability",
    "LocationRecord",
    "ReconcileOutcome",
    "ReconcileResult",
    "TrackingSnapshot",
    "WritePath",
    # Адаптеры
    "PostgresLocationStore",
    "PostgrestLocationStore",
    "DeviceGeolocationSource",
    "WebGeolocationSource",
    "StaticPermissionSource",
    "RedisConsentPermissionSource",
    "InMemoryAvailabilityFeed",
    "EventBusAvailabilityFeed",
    "RedisPositionStream",
    "RedisTrackingSession",
    # Ошибки
    "TrackingError",
    "PermissionDenied",
    "AcquisitionError",
    "AcquisitionTimeout",
    "StoreError",
    "ConstraintViolation",
    "TransportFailure",
    "RecordNotFound",
    "VerificationMismatch",
]
