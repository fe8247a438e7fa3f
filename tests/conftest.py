"""Shared fixtures for room, registry and relay tests.

Provides:
- A fake scheduler standing in for the event loop's call_later
- A recording sender standing in for a WebSocket connection
"""

import logging
from typing import Any, Callable, List

import pytest

from registry import RoomRegistry
from relay import SignalingRelay
from room import Room
from room_types import RoomType

logger = logging.getLogger(__name__)


# ============================================================================
# Fake timer
# ============================================================================


class FakeHandle:
    """Timer handle that records cancellation instead of touching a loop."""

    def __init__(self, delay: float, callback: Callable[..., None], args: tuple) -> None:
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback regardless of cancellation, like a timer losing a race."""
        self.callback(*self.args)


class FakeScheduler:
    def __init__(self) -> None:
        self.handles: List[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> FakeHandle:
        handle = FakeHandle(delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeHandle]:
        return [handle for handle in self.handles if not handle.cancelled]


# ============================================================================
# Fake connection
# ============================================================================


class Recorder:
    """Async send callable that keeps every message it is given."""

    def __init__(self) -> None:
        self.messages: List[dict] = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    def events(self, name: str) -> List[Any]:
        return [message["data"] for message in self.messages if message["event"] == name]

    def last(self, name: str) -> Any:
        found = self.events(name)
        assert found, f"no {name} message received"
        return found[-1]

    def names(self) -> List[str]:
        return [message["event"] for message in self.messages]

    def clear(self) -> None:
        self.messages.clear()


class BrokenSender:
    async def __call__(self, message: dict) -> None:
        raise ConnectionResetError("socket closed")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def casual_room(scheduler: FakeScheduler) -> Room:
    return Room(1, RoomType.CASUAL, scheduler=scheduler)


@pytest.fixture
def registry() -> RoomRegistry:
    return RoomRegistry(capacity=5, auto_start_seconds=300)


@pytest.fixture
def relay(registry: RoomRegistry) -> SignalingRelay:
    return SignalingRelay(registry=registry)


def filled_room(room: Room, *user_ids: str) -> Room:
    for user_id in user_ids:
        room.add_user(user_id)
    return room
