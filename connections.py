import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional

from logging_config import get_logger

logger = get_logger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass
class Connection:
    connection_id: str
    send: SendCallable
    connected_at: datetime
    room_id: Optional[int] = None
    closing: bool = False


class ConnectionManager:
    """Live connections, the room each one sits in, and JSON fan-out.

    A connection belongs to at most one room at a time. Sends are
    fire-and-forget: a failing socket is logged and skipped, it never
    aborts delivery to the others.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def register(self, connection_id: str, send: SendCallable) -> Connection:
        connection = Connection(connection_id=connection_id, send=send, connected_at=datetime.now())
        self._connections[connection_id] = connection
        logger.debug(f"Registered connection {connection_id} (total: {len(self._connections)})")
        return connection

    def unregister(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.debug(f"Unregistered connection {connection_id} (remaining: {len(self._connections)})")

    def room_of(self, connection_id: str) -> Optional[int]:
        connection = self._connections.get(connection_id)
        return connection.room_id if connection else None

    def assign(self, connection_id: str, room_id: int) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.room_id = room_id

    def mark_closing(self, connection_id: str) -> None:
        """Stop delivering to a connection whose socket is already gone."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.closing = True

    def release(self, connection_id: str) -> Optional[int]:
        connection = self._connections.get(connection_id)
        if connection is None:
            return None
        room_id, connection.room_id = connection.room_id, None
        return room_id

    async def send(self, connection_id: str, message: dict) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {message.get('event')} for unknown connection {connection_id}")
            return False
        if connection.closing:
            return False
        try:
            await connection.send(message)
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.get('event')} to connection {connection_id}: {e}")
            return False

    async def broadcast(self, connection_ids: Iterable[str], message: dict) -> None:
        send_tasks = [self.send(connection_id, message) for connection_id in connection_ids]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)

    async def broadcast_all(self, message: dict) -> None:
        await self.broadcast(list(self._connections), message)
