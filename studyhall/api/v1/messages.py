"""Message endpoints, mounted under ``/api/v1/chats/{chat_id}``."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status

from studyhall.api.v1.chats import get_chat_service
from studyhall.auth import get_current_active_user
from studyhall.config import settings
from studyhall.models.user import User
from studyhall.rate_limit import posting_limiter
from studyhall.schemas.message import (
    MarkRead,
    MessageCreate,
    MessagePage,
    MessageResponse,
    MessageUpdate,
    UnreadCount,
)
from studyhall.services.chat_service import ChatService

router = APIRouter()


@router.get("/{chat_id}/messages", response_model=MessagePage)
async def get_chat_messages(
    chat_id: int,
    limit: int = Query(settings.MESSAGES_PAGE_SIZE, ge=1, le=settings.MESSAGES_PAGE_MAX),
    before: Optional[datetime] = Query(None),
    after: Optional[datetime] = Query(None),
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    """A page of messages, oldest first; reading a page marks it read."""
    messages = await service.get_messages(chat_id, current_user.id, limit=limit, before=before, after=after)
    return MessagePage(messages=messages)


@router.post("/{chat_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: int,
    message_data: MessageCreate,
    request: Request,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    await posting_limiter.hit(request, str(current_user.id))
    return await service.send_message(
        chat_id, current_user.id, message_data.content, message_data.client_message_id
    )


@router.patch("/{chat_id}/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    chat_id: int,
    message_id: int,
    message_data: MessageUpdate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    return await service.edit_message(chat_id, message_id, current_user.id, message_data.content)


@router.delete("/{chat_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    chat_id: int,
    message_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    await service.delete_message(chat_id, message_id, current_user.id)


@router.post("/{chat_id}/read", response_model=UnreadCount)
async def mark_chat_read(
    chat_id: int,
    read_data: Optional[MarkRead] = Body(None),
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    message_id = read_data.message_id if read_data else None
    unread_count = await service.mark_read(chat_id, current_user.id, message_id)
    return UnreadCount(chat_id=chat_id, unread_count=unread_count)


@router.get("/{chat_id}/unread", response_model=UnreadCount)
async def get_unread_count(
    chat_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_active_user),
):
    return UnreadCount(chat_id=chat_id, unread_count=await service.unread_count(chat_id, current_user.id))
