from typing import List, Optional

from pydantic import BaseModel


class BaseResponse(BaseModel):
    status: bool
    message: str
    data: dict | None = None


class RoomHistoryResponse(BaseModel):
    roomId: str
    messages: List[dict]
    totalMessages: int


class RoomStatsResponse(BaseModel):
    roomId: str
    stats: dict


class ProviderInfo(BaseModel):
    name: str
    latency_ms: Optional[int]
    status: str
