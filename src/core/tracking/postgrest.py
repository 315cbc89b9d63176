# src/core/tracking/postgrest.py
"""
Хранилище записей о местоположении через Supabase PostgREST.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.tracking.exceptions import ConstraintViolation, RecordNotFound, TransportFailure
from src.core.tracking.models import WRITABLE_FIELDS, LocationRecord, utc_now

# Код PostgreSQL для unique_violation
UNIQUE_VIOLATION = "23505"


class PostgrestLocationStore:
    """Таблица записей о местоположении в Supabase (REST API)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "live_locations",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """
        Инициализация хранилища.

        Args:
            base_url: URL проекта Supabase
            api_key: Ключ API (service role или anon)
            table: Имя таблицы
            client: HTTP клиент (для тестов)
            timeout: Таймаут запроса в секундах
        """
        self._url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        operation: str,
        *,
        params: dict[str, str],
        json: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await self._client.request(method, self._url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise TransportFailure(f"{operation}: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            code = body.get("code") if isinstance(body, dict) else None
            message = body.get("message") if isinstance(body, dict) else None
            if response.status_code == 409 or code == UNIQUE_VIOLATION:
                raise ConstraintViolation(f"{operation}: {message or response.text}")
            raise TransportFailure(f"{operation}: HTTP {response.status_code} {message or response.text}")

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def find(self, driver_id: str) -> Optional[LocationRecord]:
        rows = await self._request(
            "GET",
            "find",
            params={"select": "*", "user_id": f"eq.{driver_id}", "limit": "1"},
        )
        if not rows:
            return None
        return LocationRecord.from_row(rows[0])

    async def upsert(self, record: LocationRecord) -> LocationRecord:
        rows = await self._request(
            "POST",
            "upsert",
            params={"on_conflict": "user_id"},
            json={"user_id": record.driver_id, **record.model_dump(mode="json", include=set(WRITABLE_FIELDS))},
            prefer="resolution=merge-duplicates,return=representation",
        )
        await log_info(f"{self._url}: upsert водителя {record.driver_id}", type_msg=TypeMsg.DEBUG)
        if not rows:
            raise TransportFailure(f"upsert: пустой ответ для водителя {record.driver_id}")
        return LocationRecord.from_row(rows[0])

    async def update(self, driver_id: str, fields: dict[str, Any]) -> LocationRecord:
        values = {name: value for name, value in fields.items() if name in WRITABLE_FIELDS}
        if values.get("updated_at") is None:
            values["updated_at"] = utc_now()
        payload = {
            name: value.isoformat() if hasattr(value, "isoformat") else value
            for name, value in values.items()
        }

        rows = await self._request(
            "PATCH",
            "update",
            params={"user_id": f"eq.{driver_id}"},
            json=payload,
            prefer="return=representation",
        )
        if not rows:
            raise RecordNotFound(f"Нет записи водителя {driver_id}")
        return LocationRecord.from_row(rows[0])
