"""
WebSocket endpoint for realtime updates.

Clients send ``{"action": "subscribe" | "unsubscribe", "topic": ...}`` and
receive ``{"type": ..., "payload": ...}`` messages for their topics.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from mikromon.realtime.hub import BroadcastHub
from mikromon.realtime.messages import connection_established
from mikromon.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    hub: BroadcastHub = websocket.app.state.runtime.hub

    await websocket.accept()
    await hub.register(websocket)
    try:
        await websocket.send_text(connection_established().to_json())
        while True:
            raw = await websocket.receive_text()
            await hub.handle_client_message(websocket, raw)
    except WebSocketDisconnect:
        logger.debug("WebSocket closed by client")
    finally:
        await hub.unregister(websocket)
