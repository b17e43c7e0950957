import json
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.errors import RelayNotInitializedError
from app.core.logger import get_logger
from app.relay.api.dependencies import get_chat_relay
from app.relay.entity.events import ServerEvent, frame

relay_router = APIRouter(tags=["Relay"])
logger = get_logger("RelayRouter")


@relay_router.websocket("/ws/rooms")
async def room_websocket(websocket: WebSocket):
    """WebSocket endpoint for room chat. One connection is one session."""
    await websocket.accept()

    try:
        relay = get_chat_relay(websocket)
    except RelayNotInitializedError as e:
        logger.error(str(e))
        await websocket.send_json(frame(ServerEvent.ERROR, {"message": "Service is starting up. Please retry in a few seconds."}))
        await websocket.close(code=1013, reason="Relay not ready")
        return

    session_id = str(uuid.uuid4())
    relay.connect(session_id, websocket.send_json)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await relay.membership.send_to(session_id, ServerEvent.ERROR, {"message": "Invalid JSON frame"})
                continue
            await relay.handle_frame(session_id, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket closed by client: {session_id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}", exc_info=True)
    finally:
        await relay.disconnect(session_id)
