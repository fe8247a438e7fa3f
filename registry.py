import asyncio
import itertools
from typing import Any, Callable, Dict, Iterator, Optional

from constants import AUTO_START_SECONDS, ROOM_CAPACITY
from logging_config import get_logger
from room import Room
from room_types import RoomType

logger = get_logger(__name__)


class RoomRegistry:
    """Process-wide table of active rooms.

    Rooms are created on demand when every existing room of the requested
    type is full, and dropped the moment their last member leaves.
    ``lock`` serialises membership changes so that create-or-join and
    room destruction look atomic to concurrent joiners.
    """

    def __init__(self, capacity: int = ROOM_CAPACITY, auto_start_seconds: float = AUTO_START_SECONDS):
        self.capacity = capacity
        self.auto_start_seconds = auto_start_seconds
        self.lock = asyncio.Lock()
        self._rooms: Dict[int, Room] = {}
        self._ids = itertools.count(1)
        logger.info(f"Initializing RoomRegistry with capacity {capacity}, auto-start after {auto_start_seconds}s")

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __contains__(self, room_id: int) -> bool:
        return room_id in self._rooms

    def get(self, room_id: int) -> Optional[Room]:
        return self._rooms.get(room_id)

    def find_or_create(
        self,
        room_type: RoomType,
        scheduler: Any = None,
        on_deadline: Optional[Callable[[Room, int], None]] = None,
    ) -> Room:
        room_type = RoomType(room_type)
        for room in self._rooms.values():
            if room.room_type == room_type and not room.is_full(self.capacity):
                logger.debug(f"Routing join for {room_type.value} to existing room {room.id} ({room.member_count}/{self.capacity})")
                return room

        room = Room(
            next(self._ids),
            room_type,
            scheduler=scheduler,
            on_deadline=on_deadline,
            auto_start_seconds=self.auto_start_seconds,
        )
        self._rooms[room.id] = room
        logger.info(f"Room {room.id} created for type {room_type.value} (active rooms: {len(self._rooms)})")
        return room

    def remove(self, room_id: int) -> None:
        room = self._rooms.pop(room_id, None)
        if room is None:
            logger.debug(f"Room {room_id} already removed")
            return
        room.close()
        logger.info(f"Room {room_id} removed (active rooms: {len(self._rooms)})")

    def stats(self) -> Dict[str, int]:
        counts = {room_type.value: 0 for room_type in RoomType}
        for room in self._rooms.values():
            counts[room.room_type.value] += room.member_count
        return counts
