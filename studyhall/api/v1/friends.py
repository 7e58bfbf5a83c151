from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.auth import get_current_active_user
from studyhall.database import get_db
from studyhall.models.user import User
from studyhall.rate_limit import friend_request_limiter
from studyhall.schemas.friend import (
    FriendList,
    FriendRequestCreate,
    FriendRequestResponse,
    PendingRequests,
    SendRequestResult,
    UserSearchResult,
)
from studyhall.services.friend_service import FriendService

router = APIRouter()


def get_friend_service(db: AsyncSession = Depends(get_db)) -> FriendService:
    return FriendService(db)


@router.get("", response_model=FriendList)
async def list_friends(
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    return await service.list_friends(current_user.id)


@router.get("/requests", response_model=PendingRequests)
async def pending_requests(
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    """Pending requests, split into received and sent."""
    return await service.pending_requests(current_user.id)


@router.get("/search", response_model=List[UserSearchResult])
async def search_users(
    q: str = Query(..., min_length=1, max_length=30),
    limit: int = Query(10, ge=1, le=50),
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    return await service.search_users(q, current_user.id, limit)


@router.post("/requests", response_model=SendRequestResult, status_code=status.HTTP_201_CREATED)
async def send_friend_request(
    request_data: FriendRequestCreate,
    request: Request,
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    await friend_request_limiter.hit(request, str(current_user.id))
    return await service.send_request(current_user.id, request_data.to_user_id, request_data.message)


@router.post("/requests/{request_id}/accept")
async def accept_friend_request(
    request_id: int,
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    friendship = await service.accept_request(request_id, current_user.id)
    return {
        "message": "Friend request accepted",
        "friendship_id": friendship.id,
        "friend_id": friendship.other(current_user.id),
    }


@router.post("/requests/{request_id}/decline", response_model=FriendRequestResponse)
async def decline_friend_request(
    request_id: int,
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    return await service.decline_request(request_id, current_user.id)


@router.delete("/requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_friend_request(
    request_id: int,
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    await service.cancel_request(request_id, current_user.id)


@router.delete("/{friend_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friend(
    friend_id: int,
    service: FriendService = Depends(get_friend_service),
    current_user: User = Depends(get_current_active_user),
):
    await service.remove_friend(current_user.id, friend_id)
