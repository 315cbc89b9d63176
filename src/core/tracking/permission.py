# src/core/tracking/permission.py
"""
Разрешение на геолокацию.
"""

from __future__ import annotations

from src.common.constants import Platform, PermissionState, PermissionStatus, TypeMsg
from src.common.logger import log_error, log_info
from src.core.tracking.interfaces import PermissionSource


class PermissionGate:
    """
    Хранит и запрашивает разрешение на геолокацию.

    Никогда не бросает исключений: любая ошибка источника означает denied.
    На веб-платформе разрешение считается выданным.
    """

    def __init__(self, source: PermissionSource, platform: Platform = Platform.NATIVE) -> None:
        self._source = source
        self._platform = platform
        self.state = PermissionState.UNKNOWN

    @property
    def is_granted(self) -> bool:
        return self.state == PermissionState.GRANTED

    async def check(self) -> PermissionState:
        """Проверяет текущее разрешение без запроса у пользователя."""
        if self._platform == Platform.WEB:
            self.state = PermissionState.GRANTED
            await log_info("Веб-платформа: разрешение на геолокацию считается выданным", type_msg=TypeMsg.DEBUG)
            return self.state

        try:
            status = await self._source.get_status()
        except Exception as e:
            await log_error(f"Ошибка проверки разрешения на геолокацию: {e}")
            self.state = PermissionState.DENIED
            return self.state

        if status == PermissionStatus.GRANTED:
            self.state = PermissionState.GRANTED
        elif status == PermissionStatus.DENIED:
            self.state = PermissionState.DENIED
        else:
            # Пользователя ещё не спрашивали
            self.state = PermissionState.UNKNOWN

        await log_info(f"Разрешение на геолокацию: {status.value}", type_msg=TypeMsg.DEBUG)
        return self.state

    async def request(self) -> bool:
        """
        Запрашивает разрешение, если оно ещё не выдано.

        Returns:
            True если геолокацией можно пользоваться
        """
        if self.state == PermissionState.GRANTED:
            return True

        if self._platform == Platform.WEB:
            self.state = PermissionState.GRANTED
            return True

        try:
            status = await self._source.request_access()
        except Exception as e:
            await log_error(f"Ошибка запроса разрешения на геолокацию: {e}")
            self.state = PermissionState.DENIED
            return False

        granted = status == PermissionStatus.GRANTED
        self.state = PermissionState.GRANTED if granted else PermissionState.DENIED

        if granted:
            await log_info("Разрешение на геолокацию получено", type_msg=TypeMsg.INFO)
        else:
            await log_info("Разрешение на геолокацию отклонено", type_msg=TypeMsg.WARNING)

        return granted

    async def ensure(self) -> bool:
        """Проверяет и при необходимости запрашивает разрешение."""
        if await self.check() == PermissionState.GRANTED:
            return True
        return await self.request()
