"""ClickUp integration: API client, ticket mirror and inbound events."""

from .api import ClickUpAPI, ClickUpError
from .events import ClickUpEventHandler
from .service import ClickUpSync, WriteResult

__all__ = [
    "ClickUpAPI",
    "ClickUpError",
    "ClickUpEventHandler",
    "ClickUpSync",
    "WriteResult",
]
