from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict


class RoomType(str, Enum):
    CONFERENCE = "conference"
    STAGE = "stage"
    CONCERT = "concert"
    CLASSROOM = "classroom"
    CASUAL = "casual"


class RoomConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: int  # seconds per turn
    label: str
    min_votes_to_start: int


ROOM_CONFIGS: Dict[RoomType, RoomConfig] = {
    RoomType.CONFERENCE: RoomConfig(duration=15 * 60, label="💼 Conference", min_votes_to_start=2),
    RoomType.STAGE: RoomConfig(duration=12 * 60, label="🎭 Theater Stage", min_votes_to_start=2),
    RoomType.CONCERT: RoomConfig(duration=6 * 60, label="🎸 Concert", min_votes_to_start=2),
    RoomType.CLASSROOM: RoomConfig(duration=9 * 60, label="🎓 Classroom", min_votes_to_start=2),
    RoomType.CASUAL: RoomConfig(duration=3 * 60, label="☕ Coffee Shop", min_votes_to_start=2),
}

DEFAULT_ROOM_TYPE = RoomType.CONFERENCE
