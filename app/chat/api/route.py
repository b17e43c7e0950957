from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.chat.api.dto import BaseResponse, RoomHistoryResponse, RoomStatsResponse
from app.chat.service.service import IHistoryStore
from app.core.auth import require_user
from app.core.errors import ChatError, StoreUnavailable
from app.core.logger import get_logger

chat_router = APIRouter(prefix="/chat", tags=["Chat"], dependencies=[Depends(require_user)])
logger = get_logger("ChatRouter")


def get_history_store(request: Request) -> Optional[IHistoryStore]:
    """Dependency to get the history store from app.state."""
    return getattr(request.app.state, "history_store", None)


def _require_store(store: Optional[IHistoryStore]) -> IHistoryStore:
    if store is None:
        raise HTTPException(status_code=503, detail="History store not available")
    return store


def _room_id(room_id: str) -> str:
    room_id = room_id.strip()
    if not room_id:
        raise HTTPException(status_code=400, detail="Room id is required")
    return room_id


@chat_router.get("/rooms/{room_id}/history", response_model=BaseResponse)
async def get_room_history(room_id: str, store: Optional[IHistoryStore] = Depends(get_history_store)):
    """Full ordered history of a room; an unknown room gets an empty log."""
    store = _require_store(store)
    room_id = _room_id(room_id)
    try:
        log = await store.get_or_create(room_id)
    except StoreUnavailable as e:
        logger.error(f"Error loading history for room {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Failed to load chat history")

    data = RoomHistoryResponse(
        roomId=log.room_id,
        messages=[m.to_wire() for m in log.messages],
        totalMessages=log.total_messages,
    )
    return BaseResponse(status=True, message="Chat history fetched successfully", data=data.model_dump())


@chat_router.delete("/rooms/{room_id}/history", response_model=BaseResponse)
async def clear_room_history(room_id: str, store: Optional[IHistoryStore] = Depends(get_history_store)):
    """Drop every message of a room, keeping the room itself."""
    store = _require_store(store)
    room_id = _room_id(room_id)
    try:
        cleared = await store.clear(room_id)
    except StoreUnavailable as e:
        logger.error(f"Error clearing history for room {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Failed to clear chat history")

    if not cleared:
        raise HTTPException(status_code=404, detail="Chat history not found")

    logger.info(f"Cleared chat history for room {room_id}")
    return BaseResponse(status=True, message="Chat history cleared successfully", data={"roomId": room_id})


@chat_router.get("/rooms/{room_id}/stats", response_model=BaseResponse)
async def get_room_stats(room_id: str, store: Optional[IHistoryStore] = Depends(get_history_store)):
    store = _require_store(store)
    room_id = _room_id(room_id)
    try:
        stats = await store.stats(room_id)
    except ChatError as e:
        logger.error(f"Error loading stats for room {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Failed to get chat statistics")

    data = RoomStatsResponse(roomId=room_id, stats=stats.to_wire())
    return BaseResponse(status=True, message="Chat statistics fetched successfully", data=data.model_dump())
