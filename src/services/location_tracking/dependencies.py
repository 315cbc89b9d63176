# src/services/location_tracking/dependencies.py
from fastapi import HTTPException, status

from src.core.tracking import TrackingController
from src.services.location_tracking.service import TrackingService

_service: TrackingService | None = None


def set_tracking_service(service: TrackingService | None) -> None:
    global _service
    _service = service


def get_tracking_service() -> TrackingService:
    if _service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized")
    return _service


def get_controller(driver_id: str) -> TrackingController:
    controller = get_tracking_service().get(driver_id)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tracking session not found")
    return controller
