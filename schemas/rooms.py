from pydantic import BaseModel
from typing import Dict, List, Optional

from room_types import RoomType


class RoomStatsResponse(BaseModel):
    stats: Dict[str, int]
    total_rooms: int

class RoomTypeInfo(BaseModel):
    room_type: RoomType
    label: str
    duration: int
    min_votes_to_start: int

class RoomTypesResponse(BaseModel):
    room_types: List[RoomTypeInfo]
    capacity: int

class RoomDetailsResponse(BaseModel):
    room_id: int
    room_type: RoomType
    label: str
    created_at: str
    capacity: int
    member_count: int
    queue: List[str]
    has_started: bool
    current_speaker: Optional[str]
    start_votes: int
    start_votes_needed: int
    skip_votes: int
    skip_votes_needed: int
    is_full: bool
