"""
FastAPI dependency injection utilities.

Provides dependencies for:
- Config access
- Responder manager access
- Log broadcaster access
"""

from typing import Annotated

from fastapi import Depends, Request

from autoresponder.config.schema import Config
from autoresponder.server.logstream import LogBroadcaster
from autoresponder.server.manager import ResponderManager


def get_manager(request: Request) -> ResponderManager:
    """Get the responder manager from app state."""
    return request.app.state.manager


def get_config(request: Request) -> Config:
    """Get the live config; it is replaced on every reload."""
    return request.app.state.manager.config


def get_broadcaster(request: Request) -> LogBroadcaster:
    return request.app.state.broadcaster


# Type aliases for dependency injection
ManagerDep = Annotated[ResponderManager, Depends(get_manager)]
ConfigDep = Annotated[Config, Depends(get_config)]
BroadcasterDep = Annotated[LogBroadcaster, Depends(get_broadcaster)]
