from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import RoomDetailsResponse, RoomStatsResponse, RoomTypeInfo, RoomTypesResponse
from room_types import ROOM_CONFIGS
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/stats", response_model=RoomStatsResponse)
async def get_room_stats(request: Request):
    registry = request.app.state.relay.registry
    return RoomStatsResponse(stats=registry.stats(), total_rooms=len(registry))


@rooms_router.get("/types", response_model=RoomTypesResponse)
async def get_room_types(request: Request):
    registry = request.app.state.relay.registry
    return RoomTypesResponse(
        room_types=[
            RoomTypeInfo(
                room_type=room_type,
                label=config.label,
                duration=config.duration,
                min_votes_to_start=config.min_votes_to_start,
            )
            for room_type, config in ROOM_CONFIGS.items()
        ],
        capacity=registry.capacity,
    )


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: int, request: Request):
    """
    Get a live view of one room.

    Returns the room type, membership and capacity, the speaking queue,
    whether the room has started, the current speaker and both vote tallies.
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    registry = request.app.state.relay.registry
    room = registry.get(room_id)
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    async with room.lock:
        snapshot = room.snapshot()

    return RoomDetailsResponse(
        room_id=snapshot.room_id,
        room_type=snapshot.room_type,
        label=room.config.label,
        created_at=room.created_at.isoformat(),
        capacity=registry.capacity,
        member_count=snapshot.member_count,
        queue=snapshot.queue,
        has_started=snapshot.has_started,
        current_speaker=snapshot.speaker,
        start_votes=snapshot.start_votes.votes,
        start_votes_needed=snapshot.start_votes.needed,
        skip_votes=snapshot.skip_votes.votes,
        skip_votes_needed=snapshot.skip_votes.needed,
        is_full=snapshot.member_count >= registry.capacity,
    )
