"""
Registry of live chat connections.

One `ConnectionManager` is created per application (see `main.lifespan`)
and owns all realtime state for the process:

- presence: user id -> the user's most recent live connection
- rooms: conversation id -> connections that joined it

Both maps are only touched from handlers running on the event loop, so no
locking is needed. Nothing here is persisted; a restart starts empty.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Set
from uuid import uuid4

from fastapi import WebSocket

from marketchat.schemas.events import ServerEvent, connection_ready
from marketchat.schemas.user import UserPublic


logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    CLOSED = "closed"


class Connection:

    def __init__(self, websocket: WebSocket, user: UserPublic) -> None:
        self.id = uuid4().hex
        self.websocket = websocket
        self.user = user
        self.rooms: Set[str] = set()
        self.state = ConnectionState.CONNECTING
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> str:
        return self.user.id

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r}, state={self.state.value})"


class ConnectionManager:

    def __init__(self) -> None:
        self.presence: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[Connection]] = {}
        self.connections: Set[Connection] = set()
        self._closing: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, user: UserPublic) -> Connection:
        """Accept an authenticated socket, install presence and greet it."""
        connection = Connection(websocket, user)
        await websocket.accept()
        connection.state = ConnectionState.AUTHENTICATED
        self.connections.add(connection)

        # last writer wins; an older connection for the same user keeps its rooms
        self.presence[user.id] = connection

        logger.info(
            "User connected via WebSocket",
            extra={"user_id": user.id, "connection_id": connection.id, "connections": len(self.connections)},
        )
        await self.send(connection, connection_ready(user.id))
        return connection

    def disconnect(self, connection: Connection) -> None:
        if connection.state is ConnectionState.CLOSED:
            return
        connection.state = ConnectionState.CLOSED
        self.connections.discard(connection)

        if self.presence.get(connection.user_id) is connection:
            del self.presence[connection.user_id]

        for room in connection.rooms:
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self.rooms[room]
        connection.rooms.clear()

        logger.info(
            "User disconnected from WebSocket",
            extra={"user_id": connection.user_id, "connection_id": connection.id, "connections": len(self.connections)},
        )

    def join(self, connection: Connection, room: Optional[str]) -> None:
        if not room or connection.state is ConnectionState.CLOSED:
            return
        self.rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)
        connection.state = ConnectionState.JOINED
        logger.debug("Joined room", extra={"user_id": connection.user_id, "room": room})

    def leave(self, connection: Connection, room: Optional[str]) -> None:
        if not room or room not in connection.rooms:
            return
        connection.rooms.discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.rooms[room]
        if not connection.rooms and connection.state is ConnectionState.JOINED:
            connection.state = ConnectionState.AUTHENTICATED
        logger.debug("Left room", extra={"user_id": connection.user_id, "room": room})

    async def send(self, connection: Connection, event: ServerEvent) -> bool:
        """
        Deliver one event to one connection.

        Delivery is best effort: a failed send drops the connection from the
        registry and returns False instead of raising.
        """
        if connection.state is ConnectionState.CLOSED:
            return False
        try:
            await connection.websocket.send_json(event.to_json())
            return True
        except Exception as exc:
            logger.warning(
                "Dropping connection after failed send",
                extra={"user_id": connection.user_id, "connection_id": connection.id, "event": event.event, "error": str(exc)},
            )
            self.disconnect(connection)
            # the receive loop is still waiting on this socket; closing it ends that loop
            task = asyncio.ensure_future(self._close_quietly(connection, 1011))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
            return False

    async def broadcast(self, room: str, event: ServerEvent) -> int:
        """Send `event` to every connection joined to `room`; returns how many received it."""
        members = list(self.rooms.get(room, ()))
        if not members:
            return 0
        results = await asyncio.gather(*(self.send(connection, event) for connection in members))
        delivered = sum(1 for ok in results if ok)
        logger.debug("Broadcast", extra={"room": room, "event": event.event, "delivered": delivered})
        return delivered

    def spawn(self, connection: Connection, coro: Awaitable[None]) -> asyncio.Task:
        """Run an event handler as its own task so slow writes never block the socket loop."""
        task = asyncio.ensure_future(coro)
        connection._tasks.add(task)
        task.add_done_callback(connection._tasks.discard)
        return task

    def lookup(self, user_id: str) -> Optional[Connection]:
        return self.presence.get(user_id)

    def room_members(self, room: str) -> List[Connection]:
        return list(self.rooms.get(room, ()))

    def connection_count(self) -> int:
        return len(self.connections)

    async def close_all(self, code: int = 1001) -> None:
        for connection in list(self.connections):
            await self._close_quietly(connection, code)
            self.disconnect(connection)

    async def _close_quietly(self, connection: Connection, code: int) -> None:
        try:
            await connection.websocket.close(code=code)
        except Exception as exc:
            logger.debug("Socket close failed", extra={"connection_id": connection.id, "error": str(exc)})
