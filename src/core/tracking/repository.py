# src/core/tracking/repository.py
"""
Хранилище записей о местоположении в PostgreSQL.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Optional

import asyncpg

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.tracking.exceptions import ConstraintViolation, RecordNotFound, TransportFailure
from src.core.tracking.models import WRITABLE_FIELDS, LocationRecord, utc_now
from src.infra.database import CONNECTION_ERRORS, DatabaseManager

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMNS = "id, user_id, latitude, longitude, heading, speed, accuracy, updated_at"


class PostgresLocationStore:
    """
    Таблица live_locations: одна строка на водителя (UNIQUE user_id).

    Ошибки asyncpg переводятся в ошибки хранилища:
    нарушение ограничения -> ConstraintViolation,
    сеть и таймауты -> TransportFailure.
    """

    def __init__(self, db: DatabaseManager, table: str = "live_locations") -> None:
        """
        Инициализация хранилища.

        Args:
            db: Менеджер базы данных (Dependency Injection)
            table: Имя таблицы записей
        """
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Недопустимое имя таблицы: {table}")
        self._db = db
        self._table = table

    async def find(self, driver_id: str) -> Optional[LocationRecord]:
        try:
            row = await self._db.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM {self._table}
                WHERE user_id = $1
                LIMIT 1
                """,
                driver_id,
            )
        except Exception as e:
            raise self._translate(e, "find") from e

        if row is None:
            return None
        return LocationRecord.from_row(dict(row))

    async def upsert(self, record: LocationRecord) -> LocationRecord:
        try:
            row = await self._db.fetchrow(
                f"""
                INSERT INTO {self._table} (user_id, latitude, longitude, heading, speed, accuracy, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (user_id) DO UPDATE SET
                    latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    heading = EXCLUDED.heading,
                    speed = EXCLUDED.speed,
                    accuracy = EXCLUDED.accuracy,
                    updated_at = EXCLUDED.updated_at
                RETURNING {_COLUMNS}
                """,
                record.driver_id,
                record.latitude,
                record.longitude,
                record.heading,
                record.speed,
                record.accuracy,
                record.updated_at,
            )
        except Exception as e:
            raise self._translate(e, "upsert") from e

        if row is None:
            raise TransportFailure(f"upsert: пустой ответ для водителя {record.driver_id}")

        await log_info(f"live_locations: upsert водителя {record.driver_id}", type_msg=TypeMsg.DEBUG)
        return LocationRecord.from_row(dict(row))

    async def update(self, driver_id: str, fields: dict[str, Any]) -> LocationRecord:
        values = {name: value for name, value in fields.items() if name in WRITABLE_FIELDS}
        if values.get("updated_at") is None:
            values["updated_at"] = utc_now()

        assignments = ", ".join(f"{name} = ${index}" for index, name in enumerate(values, start=2))

        try:
            row = await self._db.fetchrow(
                f"""
                UPDATE {self._table}
                SET {assignments}
                WHERE user_id = $1
                RETURNING {_COLUMNS}
                """,
                driver_id,
                *values.values(),
            )
        except Exception as e:
            raise self._translate(e, "update") from e

        if row is None:
            raise RecordNotFound(f"Нет записи водителя {driver_id}")
        return LocationRecord.from_row(dict(row))

    @staticmethod
    def _translate(error: Exception, operation: str) -> Exception:
        if isinstance(error, asyncpg.IntegrityConstraintViolationError):
            return ConstraintViolation(f"{operation}: {error}")
        if isinstance(error, CONNECTION_ERRORS) or isinstance(error, asyncio.TimeoutError):
            return TransportFailure(f"{operation}: {error}")
        if isinstance(error, asyncpg.PostgresError):
            return TransportFailure(f"{operation}: {error}")
        if isinstance(error, RuntimeError):
            # Пул не инициализирован
            return TransportFailure(f"{operation}: {error}")
        return error
