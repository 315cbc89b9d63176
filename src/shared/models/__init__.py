# src/shared/models/__init__.py
"""
Общие Pydantic-модели сервисов.
"""

from src.shared.models.common import HealthStatus

__all__ = ["HealthStatus"]
