# src/services/location_tracking/app.py
"""
FastAPI приложение сервиса отслеживания водителей.

Endpoints:
- POST /api/v1/tracking/{driver_id}/session - открыть сессию отслеживания
- DELETE /api/v1/tracking/{driver_id}/session - закрыть сессию
- GET /api/v1/tracking/{driver_id} - состояние отслеживания
- POST /api/v1/tracking/{driver_id}/permission - запросить разрешение на геолокацию
- POST /api/v1/tracking/{driver_id}/start - запустить отслеживание
- POST /api/v1/tracking/{driver_id}/stop - остановить отслеживание
- POST /api/v1/tracking/{driver_id}/record - создать запись о местоположении
- POST /api/v1/tracking/{driver_id}/refresh - обновить координату через Google Maps
- POST /api/v1/tracking/{driver_id}/availability - передать доступность водителя
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from pydantic import BaseModel

from src.common.constants import DriverStatus, StoreBackend, TypeMsg
from src.common.logger import log_info, log_warning, setup_logging
from src.core.geo import GeoService
from src.core.tracking import Coordinate, DriverAvailability, TrackingController, TrackingSnapshot
from src.services.location_tracking.dependencies import (
    get_controller,
    get_tracking_service,
    set_tracking_service,
)
from src.services.location_tracking.service import TrackingService
from src.shared.models.common import HealthStatus

SERVICE_NAME = "location_tracking"
VERSION = "0.1.0"

_started_at = time.monotonic()


# === MODELS ===

class AvailabilityRequest(BaseModel):
    """Доступность водителя, переданная вручную."""
    status: DriverStatus
    present: bool = True


class PermissionResponse(BaseModel):
    granted: bool
    snapshot: TrackingSnapshot


class OperationResponse(BaseModel):
    success: bool
    snapshot: TrackingSnapshot


class RecordResponse(BaseModel):
    success: bool
    outcome: Optional[str] = None
    coordinate_source: Optional[str] = None


class RefreshResponse(BaseModel):
    location: Optional[Coordinate] = None
    address: Optional[str] = None


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    from src.config import settings
    from src.infra.database import close_db, get_db, init_db
    from src.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
    from src.infra.redis_client import close_redis, get_redis, init_redis

    setup_logging()
    await log_info("Запуск Location Tracking Service...", type_msg=TypeMsg.INFO)

    db = None
    if settings.tracking.STORE_BACKEND == StoreBackend.POSTGRES:
        await init_db()
        db = get_db()

    await init_redis()

    event_bus = None
    try:
        await init_event_bus()
        event_bus = get_event_bus()
    except Exception as e:
        await log_warning(f"RabbitMQ недоступен, доступность водителей только через API: {e}")

    geo_service = GeoService()
    service = TrackingService(
        settings,
        redis_client=get_redis(),
        db=db,
        event_bus=event_bus,
        geo_service=geo_service,
    )
    set_tracking_service(service)

    yield

    await log_info("Остановка Location Tracking Service...", type_msg=TypeMsg.INFO)
    await service.close_all()
    set_tracking_service(None)
    await geo_service.close()
    if event_bus is not None:
        await close_event_bus()
    await close_redis()
    if db is not None:
        await close_db()


# === APP ===

app = FastAPI(
    title="Location Tracking Service",
    description="Сверка записи о местоположении и отслеживание водителей.",
    version=VERSION,
    lifespan=lifespan,
)


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(service: TrackingService = Depends(get_tracking_service)) -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.infra.event_bus import get_event_bus
    from src.infra.redis_client import get_redis

    dependencies = {
        "redis": "healthy" if await get_redis().health_check() else "unhealthy",
        "rabbitmq": "healthy" if await get_event_bus().health_check() else "unavailable",
    }
    store_healthy = await service.store_health_check()
    if store_healthy is not None:
        dependencies["postgres"] = "healthy" if store_healthy else "unhealthy"

    required = [name for name in ("redis", "postgres") if name in dependencies]
    status_value = "healthy" if all(dependencies[name] == "healthy" for name in required) else "degraded"

    return HealthStatus(
        service=SERVICE_NAME,
        status=status_value,
        version=VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dependencies=dependencies,
    )


# === SESSION ENDPOINTS ===

@app.post(
    "/api/v1/tracking/{driver_id}/session",
    response_model=TrackingSnapshot,
    tags=["Tracking"],
    summary="Открыть сессию отслеживания",
)
async def open_session(
    driver_id: str,
    service: TrackingService = Depends(get_tracking_service),
) -> TrackingSnapshot:
    controller = await service.open_session(driver_id)
    return controller.snapshot()


@app.delete(
    "/api/v1/tracking/{driver_id}/session",
    tags=["Tracking"],
    summary="Закрыть сессию отслеживания",
)
async def close_session(
    driver_id: str,
    service: TrackingService = Depends(get_tracking_service),
) -> dict[str, str]:
    if not await service.close_session(driver_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tracking session not found")
    return {"status": "closed", "driver_id": driver_id}


@app.get("/api/v1/tracking/{driver_id}", response_model=TrackingSnapshot, tags=["Tracking"])
async def get_snapshot(controller: TrackingController = Depends(get_controller)) -> TrackingSnapshot:
    return controller.snapshot()


# === OPERATIONS ===

@app.post("/api/v1/tracking/{driver_id}/permission", response_model=PermissionResponse, tags=["Tracking"])
async def request_permission(controller: TrackingController = Depends(get_controller)) -> PermissionResponse:
    granted = await controller.request_location_permission()
    return PermissionResponse(granted=granted, snapshot=controller.snapshot())


@app.post("/api/v1/tracking/{driver_id}/start", response_model=OperationResponse, tags=["Tracking"])
async def start_tracking(controller: TrackingController = Depends(get_controller)) -> OperationResponse:
    success = await controller.start_location_tracking()
    return OperationResponse(success=success, snapshot=controller.snapshot())


@app.post("/api/v1/tracking/{driver_id}/stop", response_model=OperationResponse, tags=["Tracking"])
async def stop_tracking(controller: TrackingController = Depends(get_controller)) -> OperationResponse:
    controller.stop_location_tracking()
    return OperationResponse(success=True, snapshot=controller.snapshot())


@app.post("/api/v1/tracking/{driver_id}/record", response_model=RecordResponse, tags=["Tracking"])
async def force_record(controller: TrackingController = Depends(get_controller)) -> RecordResponse:
    success = await controller.force_create_location_record()
    result = controller.last_reconcile
    return RecordResponse(
        success=success,
        outcome=result.outcome.value if result else None,
        coordinate_source=result.coordinate_source.value if result and result.coordinate_source else None,
    )


@app.post("/api/v1/tracking/{driver_id}/refresh", response_model=RefreshResponse, tags=["Tracking"])
async def refresh_location(controller: TrackingController = Depends(get_controller)) -> RefreshResponse:
    location = await controller.update_location_with_google_maps()
    return RefreshResponse(location=location, address=controller.current_address)


@app.post("/api/v1/tracking/{driver_id}/availability", response_model=TrackingSnapshot, tags=["Tracking"])
async def push_availability(
    driver_id: str,
    request: AvailabilityRequest,
    service: TrackingService = Depends(get_tracking_service),
) -> TrackingSnapshot:
    availability = DriverAvailability(
        driver_id=driver_id if request.present else None,
        status=request.status,
    )
    if not await service.push_availability(availability, driver_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tracking session not found")
    return get_controller(driver_id).snapshot()
