from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from room_types import DEFAULT_ROOM_TYPE, RoomType


class InboundEvent(str, Enum):
    JOIN_ROOM = "join-room"
    VOTE_TO_START = "vote-to-start"
    VOTE_SKIP = "vote-skip"
    TIME_EXPIRED = "time-expired"
    LEAVE_ROOM = "leave-room"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class OutboundEvent(str, Enum):
    ROOM_STATS = "room-stats"
    ROOM_JOINED = "room-joined"
    USER_JOINED = "user-joined"
    QUEUE_UPDATED = "queue-updated"
    START_VOTES_UPDATED = "start-votes-updated"
    ROOM_STARTED = "room-started"
    SPEAKER_CHANGED = "speaker-changed"
    SKIP_VOTES_UPDATED = "skip-votes-updated"
    USER_LEFT = "user-left"
    ERROR = "error"


SIGNAL_EVENTS = {InboundEvent.OFFER, InboundEvent.ANSWER, InboundEvent.ICE_CANDIDATE}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientMessage(BaseModel):
    event: str
    data: Any = None


class JoinRoomRequest(CamelModel):
    room_type: RoomType = DEFAULT_ROOM_TYPE


class SignalRequest(BaseModel):
    # negotiation payloads are relayed untouched, only the recipient is read
    model_config = ConfigDict(extra="allow")

    to: str


class RoomJoinedPayload(CamelModel):
    room_id: int
    room_type: RoomType
    queue: List[str]
    has_started: bool
    duration: int


class StartVotesPayload(CamelModel):
    votes: int
    needed: int
    has_started: bool = False


class SkipVotesPayload(CamelModel):
    votes: int
    needed: int


class SpeakerPayload(CamelModel):
    speaker_id: Optional[str]


class ErrorPayload(BaseModel):
    message: str


def envelope(event: Union[OutboundEvent, InboundEvent, str], data: Any = None) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    name = event.value if isinstance(event, Enum) else event
    return {"event": name, "data": data}
