"""
System routes for the admin API.

Provides:
- /api/system/status - Responder and transport state
- /api/system/stats - Pipeline counters, breakers, limiter, dispatcher and notifications
- /api/system/connect - Connect the WhatsApp transport
- /api/system/disconnect - Log the WhatsApp transport out
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from autoresponder.server.dependencies import ConfigDep, ManagerDep

router = APIRouter()


class ConnectionResponse(BaseModel):
    """Response from connect/disconnect."""
    success: bool
    state: str
    message: str


@router.get("/status")
async def get_status(manager: ManagerDep, config: ConfigDep):
    """
    Get system status.

    Returns:
        - state: Responder lifecycle state
        - transport: Connection state, phone number, pending QR
        - services: AI services in failover order
        - media: Which media collaborators are available
    """
    status = manager.get_status()
    status["ephemeral_message_handling"] = config.responder.ephemeral_message_handling
    status["audio_responses"] = config.responder.audio_responses
    status["reject_calls"] = config.whatsapp.reject_calls
    return JSONResponse(status)


@router.get("/stats")
async def get_stats(manager: ManagerDep):
    """Get message and error counters, breaker states and queue stats."""
    return JSONResponse(manager.get_stats())


@router.post("/connect", response_model=ConnectionResponse)
async def connect(manager: ManagerDep):
    """Connect the transport; resets the reconnect budget."""
    await manager.connect()
    return ConnectionResponse(
        success=True,
        state=manager.transport.state.value,
        message="Connecting",
    )


@router.post("/disconnect", response_model=ConnectionResponse)
async def disconnect(manager: ManagerDep):
    """Log the transport out; in-flight deliveries are cancelled."""
    await manager.disconnect()
    return ConnectionResponse(
        success=True,
        state=manager.transport.state.value,
        message="Logged out",
    )
