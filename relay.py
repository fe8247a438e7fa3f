import asyncio
from typing import Any, Optional, Set

from pydantic import ValidationError

from connections import ConnectionManager, SendCallable
from logging_config import get_logger
from registry import RoomRegistry
from room import Room, RoomUpdate
from schemas.events import (
    SIGNAL_EVENTS,
    ClientMessage,
    ErrorPayload,
    InboundEvent,
    JoinRoomRequest,
    OutboundEvent,
    RoomJoinedPayload,
    SignalRequest,
    SkipVotesPayload,
    SpeakerPayload,
    StartVotesPayload,
    envelope,
)

logger = get_logger(__name__)


class SignalingRelay:
    """Dispatches client events to rooms and broadcasts what changed.

    State mutations happen under the registry lock (membership) or the
    room lock (votes, timeouts, auto-start). Outbound messages are built
    from values captured while the lock is held and sent after it is
    released; a failed send never rolls anything back.
    """

    def __init__(self, registry: Optional[RoomRegistry] = None, connections: Optional[ConnectionManager] = None):
        self.registry = registry if registry is not None else RoomRegistry()
        self.connections = connections if connections is not None else ConnectionManager()
        self._background_tasks: Set[asyncio.Task] = set()
        self._handlers = {
            InboundEvent.JOIN_ROOM: self.join_room,
            InboundEvent.VOTE_TO_START: self.vote_to_start,
            InboundEvent.VOTE_SKIP: self.vote_skip,
            InboundEvent.TIME_EXPIRED: self.time_expired,
            InboundEvent.LEAVE_ROOM: self.leave_room,
        }

    # ============================================================
    # CONNECTION LIFECYCLE
    # ============================================================

    async def connect(self, connection_id: str, send: SendCallable) -> None:
        self.connections.register(connection_id, send)
        await self.connections.send(connection_id, envelope(OutboundEvent.ROOM_STATS, self.registry.stats()))

    async def disconnect(self, connection_id: str) -> None:
        """Abrupt disconnect: same transition as an explicit leave, then forget the connection.

        The cleanup runs as its own task and completes even if the caller is
        cancelled (server shutdown, a cancelled handler), so the remaining
        members are always told.
        """
        self.connections.mark_closing(connection_id)
        await asyncio.shield(self._spawn(self._release(connection_id)))

    async def _release(self, connection_id: str) -> None:
        await self.leave_room(connection_id)
        self.connections.unregister(connection_id)

    # ============================================================
    # DISPATCH
    # ============================================================

    async def handle_message(self, connection_id: str, payload: Any) -> None:
        try:
            message = ClientMessage.model_validate(payload)
        except ValidationError as e:
            logger.debug(f"Malformed frame from {connection_id}: {e}")
            await self._send_error(connection_id, "Malformed message")
            return

        try:
            event = InboundEvent(message.event)
        except ValueError:
            logger.debug(f"Unknown event {message.event!r} from {connection_id}")
            await self._send_error(connection_id, f"Unknown event: {message.event}")
            return

        logger.debug(f"Received {event.value} from {connection_id}")
        try:
            if event in SIGNAL_EVENTS:
                await self.relay_signal(event, connection_id, message.data)
            else:
                await self._handlers[event](connection_id, message.data)
        except ValidationError as e:
            logger.debug(f"Invalid {event.value} payload from {connection_id}: {e}")
            await self._send_error(connection_id, f"Invalid payload for {event.value}")

    # ============================================================
    # MEMBERSHIP
    # ============================================================

    async def join_room(self, connection_id: str, data: Any = None) -> None:
        request = JoinRoomRequest.model_validate(data or {})

        if self.connections.room_of(connection_id) is not None:
            await self.leave_room(connection_id)

        async with self.registry.lock:
            room = self.registry.find_or_create(
                request.room_type,
                scheduler=asyncio.get_running_loop(),
                on_deadline=self._schedule_auto_start,
            )
            async with room.lock:
                update = room.add_user(connection_id)
                self.connections.assign(connection_id, room.id)
                snapshot = room.snapshot()
            stats = self.registry.stats()

        members = snapshot.queue
        joined = RoomJoinedPayload(
            room_id=snapshot.room_id,
            room_type=snapshot.room_type,
            queue=snapshot.queue,
            has_started=snapshot.has_started,
            duration=room.config.duration,
        )
        logger.info(f"User {connection_id} joined room {room.id} ({room.room_type.value}, {len(members)} members)")
        others = [member for member in members if member != connection_id]

        await self.connections.broadcast(others, envelope(OutboundEvent.USER_JOINED, connection_id))
        await self.connections.send(connection_id, envelope(OutboundEvent.ROOM_JOINED, joined))
        if update.queue_changed:
            await self.connections.broadcast(members, envelope(OutboundEvent.QUEUE_UPDATED, snapshot.queue))
        await self.connections.broadcast_all(envelope(OutboundEvent.ROOM_STATS, stats))

        if snapshot.has_started:
            if snapshot.speaker is not None:
                await self.connections.send(connection_id, envelope(OutboundEvent.SPEAKER_CHANGED, SpeakerPayload(speaker_id=snapshot.speaker)))
        else:
            await self.connections.broadcast(
                members,
                envelope(OutboundEvent.START_VOTES_UPDATED, StartVotesPayload(votes=snapshot.start_votes.votes, needed=snapshot.start_votes.needed)),
            )

        await self.connections.send(
            connection_id,
            envelope(OutboundEvent.SKIP_VOTES_UPDATED, SkipVotesPayload(votes=snapshot.skip_votes.votes, needed=snapshot.skip_votes.needed)),
        )

    async def leave_room(self, connection_id: str, data: Any = None) -> None:
        async with self.registry.lock:
            room_id = self.connections.release(connection_id)
            if room_id is None:
                return
            room = self.registry.get(room_id)
            if room is None:
                logger.warning(f"Connection {connection_id} pointed at missing room {room_id}")
                return
            async with room.lock:
                update = room.remove_user(connection_id)
                members = room.member_ids
                queue = room.queue
            if update.emptied:
                self.registry.remove(room.id)
            stats = self.registry.stats()

        if update.ignored:
            return
        logger.info(f"User {connection_id} left room {room_id} ({len(members)} remaining)")

        if members:
            await self.connections.broadcast(members, envelope(OutboundEvent.USER_LEFT, connection_id))
            if update.queue_changed:
                await self.connections.broadcast(members, envelope(OutboundEvent.QUEUE_UPDATED, queue))
            if update.speaker_changed:
                await self.connections.broadcast(members, envelope(OutboundEvent.SPEAKER_CHANGED, SpeakerPayload(speaker_id=update.speaker)))
        await self.connections.broadcast_all(envelope(OutboundEvent.ROOM_STATS, stats))

    # ============================================================
    # VOTING AND TURNS
    # ============================================================

    async def vote_to_start(self, connection_id: str, data: Any = None) -> None:
        room = self._room_for(connection_id)
        if room is None:
            return
        async with room.lock:
            update = room.vote_to_start(connection_id)
            members = room.member_ids
        if update.ignored:
            return

        if update.started:
            await self.connections.broadcast(members, envelope(OutboundEvent.ROOM_STARTED, SpeakerPayload(speaker_id=update.speaker)))
        else:
            tally = update.start_votes
            await self.connections.broadcast(
                members,
                envelope(OutboundEvent.START_VOTES_UPDATED, StartVotesPayload(votes=tally.votes, needed=tally.needed)),
            )

    async def vote_skip(self, connection_id: str, data: Any = None) -> None:
        room = self._room_for(connection_id)
        if room is None:
            return
        async with room.lock:
            update = room.vote_skip(connection_id)
            members = room.member_ids
            queue = room.queue
        if update.ignored:
            return

        tally = update.skip_votes
        await self.connections.broadcast(
            members,
            envelope(OutboundEvent.SKIP_VOTES_UPDATED, SkipVotesPayload(votes=tally.votes, needed=tally.needed)),
        )
        if update.speaker_changed:
            await self._announce_rotation(members, queue, update)

    async def time_expired(self, connection_id: str, data: Any = None) -> None:
        room = self._room_for(connection_id)
        if room is None:
            return
        async with room.lock:
            update = room.report_time_expired(connection_id)
            members = room.member_ids
            queue = room.queue
        if update.ignored:
            logger.debug(f"Ignoring time-expired from {connection_id} in room {room.id}: {update.reason}")
            return
        await self._announce_rotation(members, queue, update)

    # ============================================================
    # WEBRTC NEGOTIATION PASS-THROUGH
    # ============================================================

    async def relay_signal(self, event: InboundEvent, connection_id: str, data: Any = None) -> None:
        request = SignalRequest.model_validate(data if data is not None else {})
        if request.to not in self.connections:
            logger.debug(f"Dropping {event.value} from {connection_id}: recipient {request.to} is not connected")
            return
        payload = {"from": connection_id, **request.model_dump(exclude={"to"})}
        await self.connections.send(request.to, envelope(event, payload))
        logger.debug(f"Relayed {event.value} from {connection_id} to {request.to}")

    # ============================================================
    # AUTO-START
    # ============================================================

    def _schedule_auto_start(self, room: Room, generation: int) -> None:
        # called from the loop's timer callback, hand off so the room lock can be taken
        self._spawn(self.auto_start(room, generation))

    async def auto_start(self, room: Room, generation: int) -> None:
        async with room.lock:
            update = room.fire_auto_start(generation)
            members = room.member_ids
        if update.ignored:
            logger.debug(f"Auto-start for room {room.id} skipped: {update.reason}")
            return
        await self.connections.broadcast(members, envelope(OutboundEvent.ROOM_STARTED, SpeakerPayload(speaker_id=update.speaker)))

    # ============================================================
    # HELPERS
    # ============================================================

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _room_for(self, connection_id: str) -> Optional[Room]:
        room_id = self.connections.room_of(connection_id)
        if room_id is None:
            logger.debug(f"Connection {connection_id} is not in a room")
            return None
        return self.registry.get(room_id)

    async def _announce_rotation(self, members, queue, update: RoomUpdate) -> None:
        if update.speaker is None:
            return
        await self.connections.broadcast(members, envelope(OutboundEvent.SPEAKER_CHANGED, SpeakerPayload(speaker_id=update.speaker)))
        if update.queue_changed:
            await self.connections.broadcast(members, envelope(OutboundEvent.QUEUE_UPDATED, queue))

    async def _send_error(self, connection_id: str, message: str) -> None:
        await self.connections.send(connection_id, envelope(OutboundEvent.ERROR, ErrorPayload(message=message)))
