import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.auth import decode_access_token, get_user_by_id
from studyhall.config import settings
from studyhall.database import get_db
from studyhall.exceptions import AppError, Unauthorized
from studyhall.rate_limit import posting_limiter
from studyhall.repositories.chat_repository import ChatRepository
from studyhall.repositories.friend_repository import FriendRepository
from studyhall.schemas.realtime import ChatJoin, ChatLeave, ChatSend, ChatStopTyping, ChatTyping, Ping, parse_client_event
from studyhall.services.chat_service import ChatService
from studyhall.websocket_manager import ConnectionManager, chat_room, get_connection_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _handshake_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


async def authenticate_socket(token: Optional[str], db: AsyncSession) -> int:
    if not token:
        raise Unauthorized("Token required")
    user = await get_user_by_id(db, decode_access_token(token))
    if user is None or not user.is_active:
        raise Unauthorized("User not found")
    return user.id


async def send_error(manager: ConnectionManager, websocket: WebSocket, message: str, action: Optional[str] = None):
    await manager.send_json(websocket, {"type": "error", "data": {"message": message, "action": action}})


async def receive_frame(websocket: WebSocket) -> Optional[str]:
    """Next text frame, or ``None`` for a binary one."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    return message.get("text")


async def handle_client_event(event, websocket: WebSocket, user_id: int, db: AsyncSession, manager: ConnectionManager):
    """Route one parsed frame. Operational failures become ``error`` frames."""
    try:
        if isinstance(event, ChatJoin):
            chat_id = event.data.chat_id
            if not await ChatRepository(db).is_member(chat_id, user_id):
                await send_error(manager, websocket, "You are not a member of this chat", event.action)
                return
            manager.join_room(websocket, chat_room(chat_id))
            logger.debug("User %s joined room for chat %s", user_id, chat_id)
            await manager.send_json(websocket, {"type": "chat:joined", "data": {"chat_id": chat_id}})

        elif isinstance(event, ChatLeave):
            chat_id = event.data.chat_id
            manager.leave_room(websocket, chat_room(chat_id))
            if user_id in manager.typing_users.get(chat_id, ()):
                await manager.handle_typing(chat_id, user_id, False)

        elif isinstance(event, ChatSend):
            await posting_limiter.hit(websocket, str(user_id))
            payload = event.data
            await ChatService(db, relay=manager).send_message(
                payload.chat_id, user_id, payload.content, payload.client_message_id
            )

        elif isinstance(event, (ChatTyping, ChatStopTyping)):
            # typing is only relayed from sockets that joined the room
            chat_id = event.data.chat_id
            if manager.in_room(websocket, chat_room(chat_id)):
                await manager.handle_typing(chat_id, user_id, isinstance(event, ChatTyping))

        elif isinstance(event, Ping):
            await manager.send_json(websocket, {"type": "pong", "data": {}})

    except AppError as exc:
        await send_error(manager, websocket, exc.detail, event.action)


async def _notify_friends(db: AsyncSession, manager: ConnectionManager, user_id: int, status: str):
    friend_ids = await FriendRepository(db).get_friend_ids(user_id)
    await manager.broadcast_user_status(user_id, status, friend_ids)


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.connection_manager

    async for db in get_db():
        try:
            user_id = await authenticate_socket(_handshake_token(websocket), db)
        except Unauthorized as exc:
            await websocket.close(code=1008, reason=exc.detail)
            return
        break

    if await manager.connect(websocket, user_id):
        async for db in get_db():
            await _notify_friends(db, manager, user_id, "online")
            break

    try:
        while True:
            try:
                raw = await asyncio.wait_for(receive_frame(websocket), timeout=settings.WS_IDLE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.info("Closing idle socket for user %s", user_id)
                await websocket.close(code=1000, reason="Idle timeout")
                break

            if raw is None:
                await send_error(manager, websocket, "Only text frames are supported")
                continue

            try:
                event = parse_client_event(raw)
            except ValueError as exc:
                await send_error(manager, websocket, f"Invalid frame: {exc}")
                continue

            async for db in get_db():
                try:
                    await handle_client_event(event, websocket, user_id, db, manager)
                except Exception:
                    logger.exception("Failed to handle %s from user %s", event.action, user_id)
                    await send_error(manager, websocket, "Internal error", event.action)
                break

    except WebSocketDisconnect:
        logger.debug("Socket for user %s disconnected", user_id)
    finally:
        if await manager.disconnect(websocket, user_id):
            async for db in get_db():
                await _notify_friends(db, manager, user_id, "offline")
                break


@router.get("/online-users")
async def get_online_users(manager: ConnectionManager = Depends(get_connection_manager)):
    connected_users = manager.get_connected_users()
    return {"online_users": connected_users, "count": len(connected_users)}
