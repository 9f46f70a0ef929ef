"""
Chat transcript routes for the admin API.

Provides:
- GET /api/chats - Chats with a transcript
- GET /api/chats/{chat_id}/history - A chat's rolling transcript
- DELETE /api/chats/{chat_id}/history - Clear a chat's transcript
"""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from autoresponder.server.dependencies import ManagerDep

router = APIRouter()


@router.get("")
async def list_chats(manager: ManagerDep):
    """List chats with a transcript."""
    chats = manager.pipeline_state.history.list_chats()
    return JSONResponse({"chats": chats, "count": len(chats)})


@router.get("/{chat_id}/history")
async def get_history(chat_id: str, manager: ManagerDep):
    """Get a chat's transcript, oldest first."""
    history = manager.pipeline_state.history
    if chat_id not in history:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown chat: {chat_id}")
    return JSONResponse({
        "chat_id": chat_id,
        "messages": history.to_messages(chat_id),
    })


@router.delete("/{chat_id}/history")
async def clear_history(chat_id: str, manager: ManagerDep):
    """Clear a chat's transcript."""
    history = manager.pipeline_state.history
    if chat_id not in history:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown chat: {chat_id}")
    history.clear(chat_id)
    return JSONResponse({"success": True, "chat_id": chat_id})
