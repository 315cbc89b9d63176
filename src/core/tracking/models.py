# src/core/tracking/models.py
"""
Модели данных отслеживания водителей.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from src.common.constants import DriverStatus, PermissionState, TrackingState


# Точность по умолчанию, если источник её не сообщил (метры)
DEFAULT_ACCURACY_METERS = 10.0

# Колонки, которые разрешено обновлять в записи о местоположении
WRITABLE_FIELDS = ("latitude", "longitude", "heading", "speed", "accuracy", "updated_at")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DriverAvailability(BaseModel):
    """Значение из потока доступности водителя."""

    driver_id: Optional[str] = Field(None, description="ID водителя, None если водителя нет")
    status: DriverStatus = Field(DriverStatus.UNKNOWN, description="Статус водителя")

    @property
    def is_active(self) -> bool:
        """Водитель есть и он на линии."""
        return self.driver_id is not None and self.status.is_active

    @property
    def is_inactive(self) -> bool:
        """Водителя нет или он offline (unknown не считается ни тем, ни другим)."""
        return self.driver_id is None or self.status == DriverStatus.OFFLINE


class Coordinate(BaseModel):
    """Координата от источника геолокации."""

    latitude: float = Field(..., ge=-90, le=90, description="Широта")
    longitude: float = Field(..., ge=-180, le=180, description="Долгота")
    accuracy: Optional[float] = Field(None, ge=0, description="Точность, метры")
    heading: Optional[float] = Field(None, description="Курс, градусы")
    speed: Optional[float] = Field(None, description="Скорость")
    timestamp: datetime = Field(default_factory=utc_now, description="Время фикса")


class LocationRecord(BaseModel):
    """Последнее известное местоположение водителя (одна запись на водителя)."""

    id: Optional[int] = Field(None, description="ID строки в хранилище")
    driver_id: str = Field(..., description="ID водителя (уникальный ключ)")
    latitude: float = Field(..., ge=-90, le=90, description="Широта")
    longitude: float = Field(..., ge=-180, le=180, description="Долгота")
    heading: Optional[float] = Field(None, description="Курс")
    speed: Optional[float] = Field(None, description="Скорость")
    accuracy: float = Field(DEFAULT_ACCURACY_METERS, ge=0, description="Точность, метры")
    updated_at: datetime = Field(default_factory=utc_now, description="Время последней записи")

    class Config:
        from_attributes = True

    @classmethod
    def from_coordinate(
        cls,
        driver_id: str,
        coordinate: Coordinate,
        default_accuracy: float = DEFAULT_ACCURACY_METERS,
    ) -> LocationRecord:
        """Строит запись из координаты; updated_at всегда текущее время."""
        return cls(
            driver_id=driver_id,
            latitude=coordinate.latitude,
            longitude=coordinate.longitude,
            heading=coordinate.heading,
            speed=coordinate.speed,
            accuracy=coordinate.accuracy if coordinate.accuracy is not None else default_accuracy,
            updated_at=utc_now(),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LocationRecord:
        """Строит запись из строки таблицы live_locations (колонка user_id)."""
        updated_at = row.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
        return cls(
            id=row.get("id"),
            driver_id=str(row["user_id"]),
            latitude=row["latitude"],
            longitude=row["longitude"],
            heading=row.get("heading"),
            speed=row.get("speed"),
            accuracy=row.get("accuracy") if row.get("accuracy") is not None else DEFAULT_ACCURACY_METERS,
            updated_at=updated_at or utc_now(),
        )

    def write_fields(self) -> dict[str, Any]:
        """Поля для частичного обновления (без ключа)."""
        return {name: getattr(self, name) for name in WRITABLE_FIELDS}

    def to_row(self) -> dict[str, Any]:
        """Строка для таблицы live_locations."""
        return {"user_id": self.driver_id, **self.write_fields()}


class CoordinateSource(str, Enum):
    """Откуда взята координата записи."""
    SENSOR = "sensor"
    FALLBACK = "fallback"


class WritePath(str, Enum):
    """Каким запросом запись попала в хранилище."""
    UPSERT = "upsert"
    UPDATE = "update"


class ReconcileOutcome(str, Enum):
    """Результат сверки записи о местоположении."""
    EXISTING = "existing"
    CREATED = "created"
    UPDATED = "updated"
    UNVERIFIED = "unverified"
    FAILED = "failed"


class ReconcileResult(BaseModel):
    """Итог одной сверки."""

    driver_id: str
    outcome: ReconcileOutcome
    record: Optional[LocationRecord] = None
    coordinate_source: Optional[CoordinateSource] = None
    write_path: Optional[WritePath] = None

    @property
    def success(self) -> bool:
        """Неуспех только при полном провале записи."""
        return self.outcome != ReconcileOutcome.FAILED


class TrackingSnapshot(BaseModel):
    """Наблюдаемое состояние контроллера."""

    driver_id: Optional[str] = None
    state: TrackingState = TrackingState.IDLE
    is_tracking: bool = False
    permission: PermissionState = PermissionState.UNKNOWN
    current_location: Optional[Coordinate] = None
    current_address: Optional[str] = None
