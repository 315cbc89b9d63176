# src/core/tracking/reconciler.py
"""
Сверка записи о местоположении водителя.

Гарантирует, что в хранилище есть ровно одна актуальная запись на водителя:
проверка существования -> координата (с резервной точкой) -> upsert,
при ошибке update -> контрольное чтение.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from src.common.constants import Accuracy, TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.exceptions import (
    AcquisitionTimeout,
    RecordNotFound,
    TransportFailure,
    VerificationMismatch,
)
from src.core.tracking.interfaces import GeolocationSource, RecordStore
from src.core.tracking.models import (
    DEFAULT_ACCURACY_METERS,
    Coordinate,
    CoordinateSource,
    LocationRecord,
    ReconcileOutcome,
    ReconcileResult,
    WritePath,
)

if TYPE_CHECKING:
    from src.config.loader import TrackingSettings

T = TypeVar("T")

# Запас сверх таймаута геолокации на ответ источника
ACQUISITION_GRACE_SECONDS = 1.0


class DriverLocks:
    """Блокировки по driver_id: одна сверка на водителя за раз."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, driver_id: str) -> asyncio.Lock:
        lock = self._locks.get(driver_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[driver_id] = lock
        return lock

    def discard(self, driver_id: str) -> None:
        """Удаляет свободную блокировку (после закрытия сессии водителя)."""
        lock = self._locks.get(driver_id)
        if lock is not None and not lock.locked():
            del self._locks[driver_id]


class RecordReconciler:
    """
    Сверка записи о местоположении.

    Каждый вызов хранилища ограничен таймаутом и повторяется при
    TransportFailure (store_retry_attempts попыток всего).
    ConstraintViolation и RecordNotFound не повторяются.
    """

    def __init__(
        self,
        store: RecordStore,
        geolocation: GeolocationSource | None,
        *,
        fallback_latitude: float,
        fallback_longitude: float,
        default_accuracy: float = DEFAULT_ACCURACY_METERS,
        acquisition_timeout_ms: int = 10000,
        store_call_timeout: float = 10.0,
        store_retry_attempts: int = 2,
        store_retry_delay: float = 0.5,
        locks: DriverLocks | None = None,
    ) -> None:
        self._store = store
        self._geolocation = geolocation
        self._fallback = Coordinate(
            latitude=fallback_latitude,
            longitude=fallback_longitude,
            accuracy=default_accuracy,
        )
        self._default_accuracy = default_accuracy
        self._acquisition_timeout_ms = acquisition_timeout_ms
        self._store_call_timeout = store_call_timeout
        self._store_retry_attempts = max(1, store_retry_attempts)
        self._store_retry_delay = store_retry_delay
        self._locks = locks or DriverLocks()

    @classmethod
    def from_settings(
        cls,
        store: RecordStore,
        geolocation: GeolocationSource | None,
        tracking: "TrackingSettings",
        locks: DriverLocks | None = None,
    ) -> RecordReconciler:
        """Создаёт сверщик с параметрами из секции tracking."""
        return cls(
            store,
            geolocation,
            fallback_latitude=tracking.FALLBACK_LATITUDE,
            fallback_longitude=tracking.FALLBACK_LONGITUDE,
            default_accuracy=tracking.DEFAULT_ACCURACY_METERS,
            acquisition_timeout_ms=tracking.ACQUISITION_TIMEOUT_MS,
            store_call_timeout=tracking.STORE_CALL_TIMEOUT,
            store_retry_attempts=tracking.STORE_RETRY_ATTEMPTS,
            store_retry_delay=tracking.STORE_RETRY_DELAY,
            locks=locks,
        )

    @property
    def fallback_coordinate(self) -> Coordinate:
        return self._fallback

    # =========================================================================
    # СВЕРКА
    # =========================================================================

    async def ensure_record(self, driver_id: str) -> bool:
        """Сверка, сведённая к успех/неуспех."""
        result = await self.reconcile(driver_id)
        return result.success

    async def reconcile(self, driver_id: str) -> ReconcileResult:
        """
        Гарантирует наличие записи о местоположении водителя.

        Returns:
            ReconcileResult; success == False только если не удались и upsert, и update
        """
        async with self._locks.get(driver_id):
            await log_info(f"Сверка записи о местоположении водителя {driver_id}", type_msg=TypeMsg.DEBUG)

            # 1. Запись уже есть: ничего не пишем
            existing = await self._find_existing(driver_id)
            if existing is not None:
                await log_info(
                    f"Запись водителя {driver_id} уже существует: "
                    f"{existing.latitude}, {existing.longitude} ({existing.updated_at.isoformat()})",
                    type_msg=TypeMsg.DEBUG,
                )
                return ReconcileResult(
                    driver_id=driver_id,
                    outcome=ReconcileOutcome.EXISTING,
                    record=existing,
                )

            # 2. Координата с датчика или резервная точка
            coordinate, source = await self.acquire_coordinate()
            record = LocationRecord.from_coordinate(driver_id, coordinate, self._default_accuracy)

            # 3. upsert, при ошибке update
            written, write_path = await self._write(record)
            if written is None:
                await log_error(f"Не удалось создать запись о местоположении водителя {driver_id}")
                return ReconcileResult(
                    driver_id=driver_id,
                    outcome=ReconcileOutcome.FAILED,
                    coordinate_source=source,
                )

            # 4. Контрольное чтение
            outcome = ReconcileOutcome.CREATED if write_path == WritePath.UPSERT else ReconcileOutcome.UPDATED
            try:
                verified = await self._verify(driver_id)
            except VerificationMismatch as e:
                await log_warning(f"Запись водителя {driver_id} не подтверждена: {e}")
                return ReconcileResult(
                    driver_id=driver_id,
                    outcome=ReconcileOutcome.UNVERIFIED,
                    record=written,
                    coordinate_source=source,
                    write_path=write_path,
                )

            await log_info(
                f"Запись водителя {driver_id} подтверждена: {verified.latitude}, {verified.longitude}",
                type_msg=TypeMsg.INFO,
            )
            return ReconcileResult(
                driver_id=driver_id,
                outcome=outcome,
                record=verified,
                coordinate_source=source,
                write_path=write_path,
            )

    async def acquire_coordinate(self) -> tuple[Coordinate, CoordinateSource]:
        """Координата с основного источника; при любой ошибке резервная точка."""
        if self._geolocation is None:
            return self._fallback, CoordinateSource.FALLBACK

        # Источник сам соблюдает таймаут и к дедлайну отдаёт лучший фикс;
        # внешний предел с запасом только против зависшего источника
        timeout = self._acquisition_timeout_ms / 1000 + ACQUISITION_GRACE_SECONDS
        try:
            coordinate = await asyncio.wait_for(
                self._geolocation.get_current_position(Accuracy.HIGH, self._acquisition_timeout_ms),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await log_warning(f"Координата не получена за {timeout:.1f} с, используется резервная точка")
            return self._fallback, CoordinateSource.FALLBACK
        except AcquisitionTimeout as e:
            await log_warning(f"Таймаут геолокации ({e}), используется резервная точка")
            return self._fallback, CoordinateSource.FALLBACK
        except Exception as e:
            await log_warning(f"Ошибка геолокации ({e}), используется резервная точка")
            return self._fallback, CoordinateSource.FALLBACK

        return coordinate, CoordinateSource.SENSOR

    async def record_position(self, driver_id: str, coordinate: Coordinate) -> bool:
        """
        Сохраняет координату из потока отслеживания.
        Обычный update; если записи вдруг нет, upsert. Не бросает исключений.
        """
        record = LocationRecord.from_coordinate(driver_id, coordinate, self._default_accuracy)
        async with self._locks.get(driver_id):
            try:
                await self._call_store("update", lambda: self._store.update(driver_id, record.write_fields()))
                return True
            except RecordNotFound:
                await log_warning(f"Запись водителя {driver_id} пропала, создаём заново")
            except Exception as e:
                await log_error(f"Ошибка сохранения координаты водителя {driver_id}: {e}")
                return False

            try:
                await self._call_store("upsert", lambda: self._store.upsert(record))
                return True
            except Exception as e:
                await log_error(f"Ошибка повторного создания записи водителя {driver_id}: {e}")
                return False

    # =========================================================================
    # ШАГИ
    # =========================================================================

    async def _find_existing(self, driver_id: str) -> Optional[LocationRecord]:
        try:
            return await self._call_store("find", lambda: self._store.find(driver_id))
        except Exception as e:
            # Запись идемпотентна, поэтому просто идём дальше
            await log_warning(f"Ошибка проверки записи водителя {driver_id}: {e}")
            return None

    async def _write(self, record: LocationRecord) -> tuple[Optional[LocationRecord], Optional[WritePath]]:
        try:
            written = await self._call_store("upsert", lambda: self._store.upsert(record))
            await log_info(f"Запись водителя {record.driver_id} создана (upsert)", type_msg=TypeMsg.DEBUG)
            return written, WritePath.UPSERT
        except Exception as e:
            await log_warning(f"upsert записи водителя {record.driver_id} не удался, пробуем update: {e}")

        try:
            written = await self._call_store(
                "update",
                lambda: self._store.update(record.driver_id, record.write_fields()),
            )
            await log_info(f"Запись водителя {record.driver_id} обновлена (update)", type_msg=TypeMsg.DEBUG)
            return written, WritePath.UPDATE
        except Exception as e:
            await log_error(f"update записи водителя {record.driver_id} не удался: {e}")
            return None, None

    async def _verify(self, driver_id: str) -> LocationRecord:
        try:
            record = await self._call_store("find", lambda: self._store.find(driver_id))
        except Exception as e:
            raise VerificationMismatch(f"ошибка чтения: {e}") from e
        if record is None:
            raise VerificationMismatch("запись не найдена после записи")
        return record

    async def _call_store(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Вызов хранилища с таймаутом и повтором при TransportFailure."""
        last_error: TransportFailure | None = None

        for attempt in range(1, self._store_retry_attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self._store_call_timeout)
            except asyncio.TimeoutError:
                last_error = TransportFailure(f"{operation}: нет ответа за {self._store_call_timeout} с")
            except TransportFailure as e:
                last_error = e

            if attempt < self._store_retry_attempts:
                await log_warning(
                    f"Хранилище недоступно ({operation}, попытка {attempt}/{self._store_retry_attempts}): {last_error}",
                )
                await asyncio.sleep(self._store_retry_delay * attempt)

        raise last_error  # type: ignore[misc]
