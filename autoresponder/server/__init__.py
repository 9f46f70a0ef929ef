"""
Admin server module.

Provides a FastAPI-based admin server with:
- REST API endpoints for status, stats, config and chat transcripts
- WebSocket stream of logs and connection events
- Responder lifecycle management with hot-reload
"""

from autoresponder.server.manager import ResponderManager, ResponderState

__all__ = ["ResponderManager", "ResponderState"]
