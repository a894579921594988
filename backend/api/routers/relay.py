"""
Relay hub WebSocket endpoint.

One connection per participant. Frames are JSON text {"event", "data"}; the
hub does the routing, this module only owns the transport loop.
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from backend.core.hub import ERROR, RelayHub, frame, get_hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Relay"])


@router.websocket("/ws")
async def relay_socket(websocket: WebSocket, hub: RelayHub = Depends(get_hub)):
    await websocket.accept()
    logger.info("Relay connection opened")
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                await websocket.send_json(frame(ERROR, {
                    "kind": "invalid-input",
                    "detail": "Frame is not valid JSON",
                }))
                continue
            await hub.dispatch(websocket, message)
    except WebSocketDisconnect:
        logger.info("Relay connection closed")
    finally:
        await hub.disconnect(websocket)
