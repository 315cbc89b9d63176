# tests/common/test_logger.py
"""
Unit тесты для модуля логирования (src/common/logger.py).
"""

import json
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest

from src.common.logger import (
    DEFAULT_LOGGER_NAME,
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    _get_caller_info,
    _loggers,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
    setup_logging,
)
from src.common.constants import TypeMsg


def make_record(level: int = logging.INFO, msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        """Тест форматирования базовой записи."""
        result = json.loads(JsonFormatter().format(make_record()))

        assert result["level"] == "INFO"
        assert result["message"] == "Test message"
        assert result["function"] == "test_function"
        assert result["line"] == 10

    def test_format_with_extra_data(self) -> None:
        """Тест форматирования записи с дополнительными данными."""
        record = make_record(logging.WARNING, "Warning message")
        record.extra_data = {"driver_id": "driver-42", "state": "tracking"}

        result = json.loads(JsonFormatter().format(record))

        assert result["extra"] == {"driver_id": "driver-42", "state": "tracking"}

    def test_format_with_exception(self) -> None:
        """Тест форматирования записи с исключением."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        result = JsonFormatter().format(make_record(logging.ERROR, "Error occurred", exc_info))

        assert '"exception"' in result
        assert "Test exception" in result


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_format_basic_record(self) -> None:
        result = ColoredFormatter().format(make_record())

        assert "INFO" in result
        assert "Test message" in result
        assert "\033[" in result  # ANSI код присутствует

    def test_format_with_caller_info(self) -> None:
        """Тест форматирования с информацией о вызывающей функции."""
        record = make_record(logging.DEBUG, "Debug message")
        record.extra_data = {
            "caller_function": "reconcile",
            "caller_module": "src.core.tracking.reconciler",
            "caller_file": "reconciler.py",
            "caller_line": 42,
        }

        result = ColoredFormatter().format(record)

        assert "src.core.tracking.reconciler.reconcile()" in result
        assert "reconciler.py:42" in result


class TestDateBasedRotatingFileHandler:
    """Тесты для ротации файлов логов."""

    def test_rollover_creates_archive(self, tmp_path: Path) -> None:
        """При превышении размера файл переименовывается с датой."""
        # Arrange
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=50, logger_name="tracking")
        handler.setFormatter(logging.Formatter("%(message)s"))

        # Act
        for _ in range(5):
            handler.emit(make_record(msg="x" * 40))
        handler.close()

        # Assert
        files = sorted(p.name for p in tmp_path.iterdir())
        assert "tracking.log" in files
        assert any(name.startswith("tracking_") for name in files)

    def test_no_rollover_without_limit(self, tmp_path: Path) -> None:
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=0, logger_name="tracking")

        assert handler.shouldRollover(make_record()) is False
        handler.close()


class TestGetLogger:
    """Тесты для get_logger."""

    def setup_method(self) -> None:
        """Очистка кэша логгеров перед каждым тестом."""
        _loggers.clear()
        for logger in logging.Logger.manager.loggerDict.values():
            if isinstance(logger, logging.Logger) and logger.name.startswith("test_"):
                logger.handlers.clear()

    def test_get_logger_creates_new_logger(self) -> None:
        """Тест создания нового логгера."""
        logger = get_logger("test_logger")

        assert logger.name == "test_logger"
        assert len(logger.handlers) >= 1
        assert logger.propagate is False

    def test_get_logger_returns_cached_logger(self) -> None:
        assert get_logger("test_logger") is get_logger("test_logger")

    @patch("src.config.settings")
    def test_get_logger_uses_settings(self, mock_settings: Mock) -> None:
        """Тест использования настроек из конфига."""
        mock_settings.logging.LOG_LEVEL = "WARNING"
        mock_settings.logging.LOG_FORMAT = "json"
        mock_settings.logging.LOG_TO_FILE = False

        logger = get_logger("test_with_settings")

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_get_logger_handles_missing_settings(self) -> None:
        """Тест работы при отсутствии настроек."""
        # settings импортируется внутри функции, поэтому патчим модуль src.config
        with patch.dict("sys.modules", {"src.config": None}):
            logger = get_logger("test_no_settings")

            assert logger.level == logging.DEBUG


class TestSetupLogging:
    """Тесты для setup_logging."""

    def test_setup_logging_initializes_system(self) -> None:
        """Основной логгер создан, шумные библиотеки приглушены."""
        with patch("src.common.logger._LOGGING_INITIALIZED", False):
            _loggers.clear()
            setup_logging()

        assert DEFAULT_LOGGER_NAME in _loggers
        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("aio_pika").level == logging.WARNING


class TestGetCallerInfo:
    """Тесты для _get_caller_info."""

    def test_get_caller_info_returns_dict(self) -> None:
        def caller():
            return _get_caller_info()

        info = caller()

        assert isinstance(info, dict)


class TestLogFunctions:
    """Тесты для асинхронных функций логирования."""

    def setup_method(self) -> None:
        _loggers.clear()

    @pytest.mark.asyncio
    async def test_log_info_basic(self) -> None:
        """Тест базового логирования INFO."""
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message")

            mock_info.assert_called_once()
            assert "Test message" in mock_info.call_args[0]

    @pytest.mark.asyncio
    async def test_log_info_with_type_msg(self) -> None:
        """Тест логирования с разными типами сообщений."""
        with patch.object(logging.Logger, "debug") as mock_debug:
            await log_info("Debug message", type_msg=TypeMsg.DEBUG)
            mock_debug.assert_called_once()

        with patch.object(logging.Logger, "warning") as mock_warning:
            await log_info("Warning message", type_msg=TypeMsg.WARNING)
            mock_warning.assert_called_once()

        with patch.object(logging.Logger, "critical") as mock_critical:
            await log_info("Critical message", type_msg=TypeMsg.CRITICAL)
            mock_critical.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_info_with_extra(self) -> None:
        """extra попадает в extra_data вместе с информацией о вызове."""
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message", extra={"driver_id": "driver-42"})

            extra = mock_info.call_args[1]["extra"]["extra_data"]
            assert extra["driver_id"] == "driver-42"

    @pytest.mark.asyncio
    async def test_shortcuts(self) -> None:
        with patch.object(logging.Logger, "debug") as mock_debug:
            await log_debug("Debug message")
            mock_debug.assert_called_once()

        with patch.object(logging.Logger, "warning") as mock_warning:
            await log_warning("Warning message")
            mock_warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_error_with_exc_info(self) -> None:
        """Тест логирования ошибки с трейсбеком."""
        with patch.object(logging.Logger, "error") as mock_error:
            await log_error("Error message", exc_info=True)

            mock_error.assert_called_once()
            assert mock_error.call_args[1].get("exc_info") is True

    @pytest.mark.asyncio
    async def test_log_info_with_custom_logger_name(self) -> None:
        """Тест логирования с пользовательским именем логгера."""
        with patch("src.common.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            await log_info("Test message", logger_name="tracking")

            mock_get_logger.assert_called_once_with("tracking")
            mock_logger.info.assert_called_once()
