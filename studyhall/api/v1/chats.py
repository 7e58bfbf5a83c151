from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.auth import get_current_active_user
from studyhall.database import get_db
from studyhall.models.user import User
from studyhall.schemas.chat import (
    AddMember,
    ChatListResponse,
    ChatResponse,
    ChatUpdate,
    CreateDirectChat,
    CreateGroupChat,
    MuteUpdate,
)
from studyhall.services.chat_service import ChatService, chat_to_response
from studyhall.websocket_manager import ConnectionManager, get_connection_manager

router = APIRouter()


def get_chat_service(
    db: AsyncSession = Depends(get_db),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> ChatService:
    return ChatService(db, relay=manager)


@router.get("", response_model=ChatListResponse)
async def get_user_chats(
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    """Chats of the current user, most recent activity first."""
    return ChatListResponse(chats=await service.list_chats(current_user.id))


@router.post("/direct", response_model=ChatResponse)
async def get_or_create_direct_chat(
    chat_data: CreateDirectChat,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    chat = await service.get_or_create_direct_chat(current_user.id, chat_data.user_id)
    return chat_to_response(chat)


@router.post("/group", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_group_chat(
    chat_data: CreateGroupChat,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    chat = await service.create_group_chat(current_user.id, chat_data.name, chat_data.member_ids)
    return chat_to_response(chat)


@router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    chat = await service.get_chat(chat_id, current_user.id)
    return chat_to_response(chat)


@router.put("/{chat_id}", response_model=ChatResponse)
async def rename_chat(
    chat_id: int,
    chat_data: ChatUpdate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    """Rename a group chat (owner or admin only)."""
    chat = await service.rename_chat(chat_id, current_user.id, chat_data.name)
    return chat_to_response(chat)


@router.post("/{chat_id}/members", response_model=ChatResponse)
async def add_member_to_chat(
    chat_id: int,
    member_data: AddMember,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    chat = await service.add_member(chat_id, current_user.id, member_data.user_id)
    return chat_to_response(chat)


@router.post("/{chat_id}/leave")
async def leave_chat(
    chat_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    await service.leave_chat(chat_id, current_user.id)
    return {"message": "Left chat successfully"}


@router.put("/{chat_id}/mute")
async def mute_chat(
    chat_id: int,
    mute_data: MuteUpdate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    membership = await service.set_muted(chat_id, current_user.id, mute_data.is_muted)
    return {"chat_id": chat_id, "is_muted": membership.is_muted}
