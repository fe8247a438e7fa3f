"""RoomRegistry tests: routing joins by type and capacity, removal and stats."""

from conftest import FakeScheduler
from registry import RoomRegistry
from room_types import RoomType


def test_joins_fill_one_room_up_to_capacity(registry: RoomRegistry) -> None:
    rooms = []
    for i in range(5):
        room = registry.find_or_create(RoomType.CASUAL)
        room.add_user(f"user-{i}")
        rooms.append(room)

    assert len({room.id for room in rooms}) == 1
    assert rooms[0].member_count == 5
    assert len(registry) == 1


def test_full_room_spills_into_new_room(registry: RoomRegistry) -> None:
    first = registry.find_or_create(RoomType.CASUAL)
    for i in range(5):
        first.add_user(f"user-{i}")

    second = registry.find_or_create(RoomType.CASUAL)

    assert second.id != first.id
    assert second.id == first.id + 1
    assert second.room_type == RoomType.CASUAL
    assert len(registry) == 2


def test_room_types_never_share_rooms(registry: RoomRegistry) -> None:
    casual = registry.find_or_create(RoomType.CASUAL)
    casual.add_user("a")
    stage = registry.find_or_create(RoomType.STAGE)

    assert stage.id != casual.id
    assert registry.find_or_create(RoomType.CASUAL) is casual


def test_room_ids_are_monotonic(registry: RoomRegistry) -> None:
    ids = [registry.find_or_create(room_type).id for room_type in RoomType]

    assert ids == sorted(ids)
    assert ids[0] == 1


def test_room_type_accepts_plain_string(registry: RoomRegistry) -> None:
    room = registry.find_or_create("concert")

    assert room.room_type is RoomType.CONCERT


def test_removed_room_is_not_reused(registry: RoomRegistry) -> None:
    room = registry.find_or_create(RoomType.CLASSROOM)
    room.add_user("a")
    update = room.remove_user("a")
    assert update.emptied
    registry.remove(room.id)

    fresh = registry.find_or_create(RoomType.CLASSROOM)

    assert fresh is not room
    assert fresh.id > room.id
    assert registry.get(room.id) is None
    assert room.id not in registry


def test_remove_cancels_pending_auto_start(registry: RoomRegistry) -> None:
    scheduler = FakeScheduler()
    room = registry.find_or_create(RoomType.CASUAL, scheduler=scheduler)
    room.add_user("a")

    registry.remove(room.id)

    assert scheduler.handles[0].cancelled
    scheduler.handles[0].fire()
    assert not room.has_started


def test_remove_unknown_room_is_harmless(registry: RoomRegistry) -> None:
    registry.remove(42)

    assert len(registry) == 0


def test_stats_default_every_type_to_zero(registry: RoomRegistry) -> None:
    assert registry.stats() == {
        "conference": 0,
        "stage": 0,
        "concert": 0,
        "classroom": 0,
        "casual": 0,
    }


def test_stats_sum_members_across_rooms(registry: RoomRegistry) -> None:
    for i in range(7):
        registry.find_or_create(RoomType.CASUAL).add_user(f"casual-{i}")
    registry.find_or_create(RoomType.STAGE).add_user("stage-0")

    stats = registry.stats()

    assert stats["casual"] == 7
    assert stats["stage"] == 1
    assert stats["conference"] == 0
    assert len(registry) == 3


def test_capacity_is_configurable() -> None:
    small = RoomRegistry(capacity=2)
    room = small.find_or_create(RoomType.CASUAL)
    room.add_user("a")
    room.add_user("b")

    assert small.find_or_create(RoomType.CASUAL) is not room
