from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.auth import clear_auth_cookies, get_current_active_user
from studyhall.database import get_db
from studyhall.exceptions import NotFound
from studyhall.models.user import User
from studyhall.repositories.user_repository import UserRepository
from studyhall.schemas.user import PublicUser
from studyhall.services.account_service import AccountService
from studyhall.websocket_manager import ConnectionManager, get_connection_manager

router = APIRouter()


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_current_user(
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Delete the caller's account; their messages stay in place, anonymized."""
    user_id = current_user.id
    chat_ids = await AccountService(db).delete_account(user_id)

    for chat_id in chat_ids:
        manager.revoke_chat_access(chat_id, user_id)
    clear_auth_cookies(response)


@router.get("/{user_id}", response_model=PublicUser)
async def get_user_by_id(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    user = await UserRepository(db).get_by_id(user_id)
    if not user:
        raise NotFound("User not found")
    return user
