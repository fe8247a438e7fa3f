import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

from constants import AUTO_START_SECONDS
from logging_config import get_logger
from room_types import ROOM_CONFIGS, RoomConfig, RoomType

logger = get_logger(__name__)


@dataclass
class VoteTally:
    votes: int
    needed: int


@dataclass(frozen=True)
class RoomSnapshot:
    """Point-in-time copy of the state clients are shown. Take it under the room lock."""

    room_id: int
    room_type: RoomType
    queue: List[str]
    has_started: bool
    speaker: Optional[str]
    start_votes: VoteTally
    skip_votes: VoteTally

    @property
    def member_count(self) -> int:
        return len(self.queue)


@dataclass
class RoomUpdate:
    """What a single Room operation changed.

    The relay turns this into outbound events; it never compares room state
    before and after an operation itself.
    """

    room_id: int
    ignored: bool = False
    reason: Optional[str] = None
    queue_changed: bool = False
    speaker_changed: bool = False
    started: bool = False
    emptied: bool = False
    speaker: Optional[str] = None
    user_left: Optional[str] = None
    start_votes: Optional[VoteTally] = None
    skip_votes: Optional[VoteTally] = None


class Room:
    """Turn-taking state machine for one room.

    A room is either waiting (not started) or active. Members are queued in
    arrival order and the speaker pointer walks that queue. All state is
    private; callers go through the operations below, each of which returns
    a RoomUpdate.

    ``scheduler`` is anything exposing ``call_later(delay, callback, *args)``
    that returns a cancellable handle (an asyncio event loop in production).
    Without one the auto-start deadline is never armed.
    """

    def __init__(
        self,
        room_id: int,
        room_type: RoomType,
        scheduler: Any = None,
        on_deadline: Optional[Callable[["Room", int], None]] = None,
        auto_start_seconds: float = AUTO_START_SECONDS,
    ):
        self.id = room_id
        self.room_type = RoomType(room_type)
        self.config: RoomConfig = ROOM_CONFIGS[self.room_type]
        self.created_at = datetime.now()
        self.lock = asyncio.Lock()

        self._users: set = set()
        self._queue: List[str] = []
        self._speaker_index = 0
        self._has_started = False
        self._start_votes: set = set()
        self._skip_votes: set = set()
        self._turn = 0

        self._scheduler = scheduler
        self._on_deadline = on_deadline
        self._auto_start_seconds = auto_start_seconds
        self._deadline = None
        self._deadline_generation = 0

    def __repr__(self) -> str:
        return f"Room(id={self.id}, type={self.room_type.value}, members={len(self._users)}, started={self._has_started})"

    # Read-only views

    @property
    def has_started(self) -> bool:
        return self._has_started

    @property
    def queue(self) -> List[str]:
        return list(self._queue)

    @property
    def member_ids(self) -> List[str]:
        return list(self._queue)

    @property
    def member_count(self) -> int:
        return len(self._users)

    @property
    def current_speaker_index(self) -> int:
        return self._speaker_index

    @property
    def start_votes(self) -> frozenset:
        return frozenset(self._start_votes)

    @property
    def skip_votes(self) -> frozenset:
        return frozenset(self._skip_votes)

    @property
    def turn(self) -> int:
        """Increments every time a new turn begins."""
        return self._turn

    @property
    def start_votes_needed(self) -> int:
        return self.config.min_votes_to_start

    @property
    def auto_start_pending(self) -> bool:
        return self._deadline is not None

    def has_user(self, user_id: str) -> bool:
        return user_id in self._users

    def is_empty(self) -> bool:
        return not self._users

    def is_full(self, capacity: int) -> bool:
        return len(self._users) >= capacity

    def current_speaker(self) -> Optional[str]:
        if not self._queue:
            return None
        return self._queue[self._speaker_index]

    def skip_votes_needed(self) -> int:
        return math.ceil(len(self._users) / 2)

    def start_tally(self) -> VoteTally:
        return VoteTally(votes=len(self._start_votes), needed=self.start_votes_needed)

    def skip_tally(self) -> VoteTally:
        return VoteTally(votes=len(self._skip_votes), needed=self.skip_votes_needed())

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room_id=self.id,
            room_type=self.room_type,
            queue=self.queue,
            has_started=self._has_started,
            speaker=self.current_speaker() if self._has_started else None,
            start_votes=self.start_tally(),
            skip_votes=self.skip_tally(),
        )

    # Membership

    def add_user(self, user_id: str) -> RoomUpdate:
        if user_id in self._users:
            return self._ignored("already-member")

        self._users.add(user_id)
        self._queue.append(user_id)
        update = RoomUpdate(room_id=self.id, queue_changed=True)

        if len(self._queue) == 1 and not self._has_started:
            self._arm_auto_start()

        update.speaker = self.current_speaker()
        logger.debug(f"Room {self.id}: {user_id} queued at position {len(self._queue) - 1}")
        return update

    def remove_user(self, user_id: str) -> RoomUpdate:
        if user_id not in self._users:
            return self._ignored("not-a-member")

        speaker_before = self.current_speaker()
        self._users.remove(user_id)
        self._start_votes.discard(user_id)
        self._skip_votes.discard(user_id)

        position = self._queue.index(user_id)
        del self._queue[position]
        if position < self._speaker_index:
            self._speaker_index -= 1
        if self._speaker_index >= len(self._queue):
            self._speaker_index = 0

        update = RoomUpdate(room_id=self.id, queue_changed=True, user_left=user_id)
        if not self._queue:
            self._cancel_auto_start()
            update.emptied = not self._users
        elif self._has_started and self.current_speaker() != speaker_before:
            self._begin_turn()
            update.speaker_changed = True

        update.speaker = self.current_speaker()
        logger.debug(f"Room {self.id}: {user_id} removed from position {position}, speaker index now {self._speaker_index}")
        return update

    # Start vote

    def vote_to_start(self, user_id: str) -> RoomUpdate:
        if self._has_started:
            return self._ignored("already-started")
        if user_id not in self._users:
            return self._ignored("not-a-member")

        self._start_votes.add(user_id)
        tally = self.start_tally()
        logger.debug(f"Room {self.id}: start votes {tally.votes}/{tally.needed}")

        if tally.votes >= tally.needed:
            update = self.force_start()
            update.start_votes = tally
            return update
        return RoomUpdate(room_id=self.id, start_votes=tally)

    def force_start(self) -> RoomUpdate:
        if self._has_started:
            return self._ignored("already-started")

        self._has_started = True
        self._start_votes.clear()
        self._cancel_auto_start()

        update = RoomUpdate(room_id=self.id, started=True)
        if self._queue:
            self._begin_turn()
            update.speaker_changed = True
            update.speaker = self.current_speaker()

        logger.info(f"Room {self.id} ({self.room_type.value}) started, first speaker: {update.speaker}")
        return update

    def fire_auto_start(self, generation: int) -> RoomUpdate:
        """Body of the auto-start deadline; only the latest armed deadline may act."""
        if generation != self._deadline_generation:
            return self._ignored("stale-deadline")
        self._deadline = None
        if not self._users:
            return self._ignored("empty")
        if self._has_started:
            return self._ignored("already-started")
        logger.info(f"Room {self.id}: auto-start deadline elapsed")
        return self.force_start()

    # Skip vote and rotation

    def vote_skip(self, user_id: str) -> RoomUpdate:
        """Cast a skip vote against the current speaker.

        The reported tally is taken after the vote is applied, so when the
        threshold is reached the rotation has already cleared it to zero.
        """
        if not self._has_started:
            return self._ignored("not-started")
        if user_id not in self._users:
            return self._ignored("not-a-member")

        self._skip_votes.add(user_id)
        needed = self.skip_votes_needed()
        logger.debug(f"Room {self.id}: skip votes {len(self._skip_votes)}/{needed}")

        update = RoomUpdate(room_id=self.id)
        if len(self._skip_votes) >= needed:
            logger.info(f"Room {self.id}: speaker {self.current_speaker()} skipped by vote")
            self._advance()
            update.speaker_changed = True
            update.queue_changed = True
            update.speaker = self.current_speaker()

        update.skip_votes = VoteTally(votes=len(self._skip_votes), needed=needed)
        return update

    def next_speaker(self) -> RoomUpdate:
        if not self._queue:
            return self._ignored("empty-queue")
        self._advance()
        return RoomUpdate(
            room_id=self.id,
            speaker_changed=True,
            queue_changed=True,
            speaker=self.current_speaker(),
        )

    def report_time_expired(self, user_id: str) -> RoomUpdate:
        """Turn timeout as reported by the speaking client itself."""
        if not self._has_started:
            return self._ignored("not-started")
        if user_id != self.current_speaker():
            return self._ignored("not-speaker")
        logger.info(f"Room {self.id}: time expired for speaker {user_id}")
        return self.next_speaker()

    def close(self) -> None:
        self._cancel_auto_start()

    # Internals

    def _ignored(self, reason: str) -> RoomUpdate:
        logger.debug(f"Room {self.id}: operation ignored ({reason})")
        return RoomUpdate(room_id=self.id, ignored=True, reason=reason)

    def _advance(self) -> None:
        self._speaker_index = (self._speaker_index + 1) % len(self._queue)
        self._begin_turn()

    def _begin_turn(self) -> None:
        self._skip_votes.clear()
        self._turn += 1

    def _arm_auto_start(self) -> None:
        self._cancel_auto_start()
        if self._scheduler is None:
            return
        generation = self._deadline_generation
        self._deadline = self._scheduler.call_later(self._auto_start_seconds, self._deadline_elapsed, generation)
        logger.debug(f"Room {self.id}: auto-start armed for {self._auto_start_seconds}s (generation {generation})")

    def _cancel_auto_start(self) -> None:
        # bumping the generation also invalidates a callback that already fired but has not run yet
        self._deadline_generation += 1
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _deadline_elapsed(self, generation: int) -> None:
        if self._on_deadline is not None:
            self._on_deadline(self, generation)
        else:
            self.fire_auto_start(generation)
