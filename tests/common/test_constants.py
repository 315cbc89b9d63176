# tests/common/test_constants.py
"""
Тесты для модуля констант.
"""

import pytest

from src.common.constants import (
    Accuracy,
    DriverStatus,
    PermissionState,
    PermissionStatus,
    Platform,
    StoreBackend,
    TrackingState,
    TypeMsg,
)


class TestTypeMsg:
    """Тесты для enum TypeMsg."""

    def test_type_msg_values(self) -> None:
        """Проверяет значения типов сообщений."""
        assert TypeMsg.DEBUG.value == "debug"
        assert TypeMsg.INFO.value == "info"
        assert TypeMsg.WARNING.value == "warning"
        assert TypeMsg.ERROR.value == "error"
        assert TypeMsg.CRITICAL.value == "critical"

    def test_type_msg_is_str_enum(self) -> None:
        assert isinstance(TypeMsg.DEBUG, str)
        assert TypeMsg.INFO == "info"


class TestDriverStatus:
    """Тесты для enum DriverStatus."""

    @pytest.mark.parametrize(
        ("status", "active"),
        [
            (DriverStatus.ONLINE, True),
            (DriverStatus.BUSY, True),
            (DriverStatus.OFFLINE, False),
            (DriverStatus.UNKNOWN, False),
        ],
    )
    def test_is_active(self, status: DriverStatus, active: bool) -> None:
        """На линии считаются только online и busy."""
        assert status.is_active is active

    def test_from_value(self) -> None:
        assert DriverStatus("busy") is DriverStatus.BUSY


class TestTrackingEnums:
    """Тесты для перечислений отслеживания."""

    def test_tracking_states(self) -> None:
        assert [s.value for s in TrackingState] == ["idle", "awaiting_record", "tracking"]

    def test_permission_values(self) -> None:
        """Состояние контроллера и ответ источника различаются."""
        assert {s.value for s in PermissionState} == {"unknown", "granted", "denied"}
        assert PermissionStatus.UNDETERMINED.value == "undetermined"

    def test_configuration_enums(self) -> None:
        assert Accuracy("high") is Accuracy.HIGH
        assert Platform("web") is Platform.WEB
        assert StoreBackend("postgrest") is StoreBackend.POSTGREST
