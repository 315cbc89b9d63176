# src/shared/__init__.py
"""
Общий код сервисов.

Модули:
- models: общие Pydantic-модели (статус здоровья)
"""

__all__: list[str] = []
