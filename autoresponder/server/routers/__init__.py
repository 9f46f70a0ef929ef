"""
FastAPI routers for the admin API.

Provides modular route organization:
- system: Status, stats, connect/disconnect
- config: Configuration read and hot reload
- chats: Transcript inspection
"""

from autoresponder.server.routers.chats import router as chats_router
from autoresponder.server.routers.config import router as config_router
from autoresponder.server.routers.system import router as system_router

__all__ = [
    "system_router",
    "config_router",
    "chats_router",
]
