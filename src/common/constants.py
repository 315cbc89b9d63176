# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class DriverStatus(str, Enum):
    """Статусы водителя."""
    UNKNOWN = "unknown"
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"

    @property
    def is_active(self) -> bool:
        """Водитель на линии (online или busy)."""
        return self in (DriverStatus.ONLINE, DriverStatus.BUSY)


class PermissionState(str, Enum):
    """Состояние разрешения на геолокацию (внутри контроллера)."""
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class PermissionStatus(str, Enum):
    """Ответ источника разрешений."""
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class TrackingState(str, Enum):
    """Состояния контроллера отслеживания."""
    IDLE = "idle"
    AWAITING_RECORD = "awaiting_record"
    TRACKING = "tracking"


class Accuracy(str, Enum):
    """Желаемая точность определения координат."""
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"


class Platform(str, Enum):
    """Платформа, на которой работает клиент водителя."""
    NATIVE = "native"
    WEB = "web"


class StoreBackend(str, Enum):
    """Хранилище записей о местоположении."""
    POSTGRES = "postgres"
    POSTGREST = "postgrest"
