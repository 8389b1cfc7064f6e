"""
WebSocket endpoint for realtime events.

Clients connect to /api/v1/ws?token=<access token> and receive JSON
messages shaped {"event": "...", "data": {...}}.
"""
import logging
from typing import Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from campusmarket.core.security import user_id_from_token
from campusmarket.services.realtime import realtime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    user_id = user_id_from_token(token) if token else None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await realtime.connect(user_id, websocket)
        while True:
            # Incoming frames are only keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        realtime.disconnect(user_id, websocket)
