import logging
from typing import Dict, Iterable, List, Optional, Set

from fastapi import Request, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def chat_room(chat_id: int) -> str:
    return f"chat:{chat_id}"


class ConnectionManager:
    """Live session registry: which sockets belong to which user and rooms.

    Purely ephemeral. It is rebuilt as clients reconnect and is never
    consulted for authorization; persisted membership is the authority.
    """

    def __init__(self):
        self.active_connections: Dict[int, List[WebSocket]] = {}
        self.connection_users: Dict[WebSocket, int] = {}
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.connection_rooms: Dict[WebSocket, Set[str]] = {}
        self.typing_users: Dict[int, Set[int]] = {}

    async def connect(self, websocket: WebSocket, user_id: int) -> bool:
        """Register an accepted socket; returns True when the user just came online."""
        await websocket.accept()
        came_online = user_id not in self.active_connections

        self.active_connections.setdefault(user_id, []).append(websocket)
        self.connection_users[websocket] = user_id
        self.join_room(websocket, user_room(user_id))

        logger.info("Socket connected for user %s (%d open)", user_id, len(self.active_connections[user_id]))
        return came_online

    async def disconnect(self, websocket: WebSocket, user_id: int) -> bool:
        """Forget a socket; returns True when it was the user's last one."""
        for room in list(self.connection_rooms.get(websocket, ())):
            self.leave_room(websocket, room)
        self.connection_rooms.pop(websocket, None)
        self.connection_users.pop(websocket, None)

        connections = self.active_connections.get(user_id)
        if connections is None:
            return False
        if websocket in connections:
            connections.remove(websocket)
        if connections:
            return False

        del self.active_connections[user_id]
        for chat_id in list(self.typing_users):
            if user_id in self.typing_users[chat_id]:
                await self.handle_typing(chat_id, user_id, False)
        logger.info("User %s went offline", user_id)
        return True

    def join_room(self, websocket: WebSocket, room: str):
        self.rooms.setdefault(room, set()).add(websocket)
        self.connection_rooms.setdefault(websocket, set()).add(room)

    def leave_room(self, websocket: WebSocket, room: str):
        members = self.rooms.get(room)
        if members is not None:
            members.discard(websocket)
            if not members:
                del self.rooms[room]
        rooms = self.connection_rooms.get(websocket)
        if rooms is not None:
            rooms.discard(room)

    def in_room(self, websocket: WebSocket, room: str) -> bool:
        return websocket in self.rooms.get(room, ())

    def revoke_chat_access(self, chat_id: int, user_id: int):
        """Pull every socket of ``user_id`` out of the chat room."""
        room = chat_room(chat_id)
        for websocket in list(self.active_connections.get(user_id, ())):
            self.leave_room(websocket, room)
        self.typing_users.get(chat_id, set()).discard(user_id)

    async def send_json(self, websocket: WebSocket, message: dict) -> bool:
        """Best-effort send; a dead socket is unregistered and the message dropped."""
        try:
            await websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Dropping message to closed socket: %s", exc)
            user_id = self.connection_users.get(websocket)
            if user_id is not None:
                await self.disconnect(websocket, user_id)
            return False

    async def _deliver(self, targets: Iterable[WebSocket], event: str, data: dict):
        message = {"type": event, "data": data}
        for websocket in list(targets):
            await self.send_json(websocket, message)

    async def emit_to_room(self, room: str, event: str, data: dict, exclude_user_id: Optional[int] = None):
        targets = [
            websocket for websocket in self.rooms.get(room, ())
            if exclude_user_id is None or self.connection_users.get(websocket) != exclude_user_id
        ]
        await self._deliver(targets, event, data)

    async def emit_to_user(self, user_id: int, event: str, data: dict):
        await self.emit_to_room(user_room(user_id), event, data)

    async def publish_to_chat(self, chat_id: int, event: str, data: dict, member_ids: Iterable[int]):
        """Fan out to everyone in the chat room plus every member's personal room.

        A socket sitting in both receives the event once.
        """
        targets: Set[WebSocket] = set(self.rooms.get(chat_room(chat_id), ()))
        for member_id in member_ids:
            targets.update(self.rooms.get(user_room(member_id), ()))
        await self._deliver(targets, event, data)

    async def handle_typing(self, chat_id: int, user_id: int, is_typing: bool):
        typing = self.typing_users.setdefault(chat_id, set())
        if is_typing:
            typing.add(user_id)
            event = "chat:userTyping"
        else:
            typing.discard(user_id)
            event = "chat:userStoppedTyping"
        if not typing:
            del self.typing_users[chat_id]

        await self.emit_to_room(
            chat_room(chat_id), event, {"chat_id": chat_id, "user_id": user_id}, exclude_user_id=user_id
        )

    async def broadcast_user_status(self, user_id: int, status: str, friend_ids: Iterable[int]):
        for friend_id in friend_ids:
            if friend_id in self.active_connections:
                await self.emit_to_user(friend_id, "presence:update", {"user_id": user_id, "status": status})

    def get_connected_users(self) -> List[int]:
        return list(self.active_connections.keys())

    def is_user_online(self, user_id: int) -> bool:
        return user_id in self.active_connections

    async def close_all(self):
        for websocket in list(self.connection_users):
            try:
                await websocket.close(code=1001)
            except RuntimeError:
                pass
        self.active_connections.clear()
        self.connection_users.clear()
        self.rooms.clear()
        self.connection_rooms.clear()
        self.typing_users.clear()


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager
