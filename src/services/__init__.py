# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- location_tracking: сессии отслеживания водителей (FastAPI)
"""

__all__: list[str] = []
